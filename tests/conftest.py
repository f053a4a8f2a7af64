"""
Shared test fixtures for prompt_telemetry.

Uses a file-backed SQLite database (aiosqlite) per test with table
create/drop, a filesystem blob store under tmp_path, and a recording queue
instead of the Celery broker.
"""

import json
import os
from datetime import datetime
from typing import Any
from unittest.mock import MagicMock
from uuid import uuid4

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine

os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./prompt_telemetry_test.db")
os.environ.setdefault("BLOB_BACKEND", "local")

from prompt_telemetry.db.base import Base  # noqa: E402
from prompt_telemetry.db.blob_storage import LocalBlobStore  # noqa: E402
from prompt_telemetry.db.session import build_session_factory  # noqa: E402
from prompt_telemetry.main import app  # noqa: E402
import prompt_telemetry.models  # noqa: E402,F401

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
TRACEPARENT = f"00-{TRACE_ID}-00f067aa0ba902b7-01"


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Fresh tables per test: create → yield engine → drop."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Blob store and queue
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


class RecordingQueue:
    """In-memory MessageQueue that keeps every sent message."""

    def __init__(self):
        self.messages = []

    async def send(self, message) -> None:
        self.messages.append(message)


@pytest_asyncio.fixture(scope="function")
async def recording_queue():
    return RecordingQueue()


@pytest_asyncio.fixture()
async def mock_celery(monkeypatch):
    """Capture celery send_task calls instead of hitting a broker."""
    dispatched: list[dict[str, Any]] = []

    def fake_send_task(name, args=None, kwargs=None, **kw):
        dispatched.append({"name": name, "args": args, "kwargs": kwargs, **kw})
        result = MagicMock()
        result.id = str(uuid4())
        return result

    monkeypatch.setattr(
        "prompt_telemetry.celery_app.get_celery_app",
        lambda: MagicMock(send_task=fake_send_task),
    )
    return dispatched


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def trace_extraction(session_factory, blob_store):
    from prompt_telemetry.telemetry.trace_extraction import TraceExtractionService

    return TraceExtractionService(session_factory, blob_store, retry_delay_ms=0)


@pytest_asyncio.fixture(scope="function")
async def log_processing(session_factory, blob_store):
    from prompt_telemetry.telemetry.log_processing import LogProcessingService

    return LogProcessingService(session_factory, blob_store)


# ---------------------------------------------------------------------------
# Test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def test_client(db_session):
    from prompt_telemetry.db.session import get_db

    async def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Factory fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def execution_log_factory(session_factory):
    from prompt_telemetry.models.execution_logs import ExecutionLogModel

    async def _create(
        tenant_id: int = 1,
        project_id: int = 10,
        prompt_id: int = 100,
        version: int = 1,
        is_success: bool = True,
        error_message: str | None = None,
        duration_ms: int | None = 100,
        trace_id: str | None = TRACE_ID,
        raw_trace_id: str | None = TRACEPARENT,
        provider: str | None = None,
        model: str | None = None,
        usage: str | None = None,
        log_path: str | None = None,
        created_at: datetime | None = None,
    ) -> ExecutionLogModel:
        log = ExecutionLogModel(
            tenant_id=tenant_id,
            project_id=project_id,
            prompt_id=prompt_id,
            version=version,
            is_success=is_success,
            error_message=error_message,
            duration_ms=duration_ms,
            trace_id=trace_id,
            raw_trace_id=raw_trace_id,
            provider=provider,
            model=model,
            usage=usage,
            log_path=log_path,
        )
        if created_at is not None:
            log.created_at = created_at
        async with session_factory() as session:
            session.add(log)
            await session.commit()
        return log

    return _create



@pytest_asyncio.fixture(scope="function")
async def archived_log_factory(session_factory, execution_log_factory, blob_store):
    """Execution log whose payload files are already in the blob store."""
    from prompt_telemetry.models.execution_logs import ExecutionLogModel
    from prompt_telemetry.utils import build_log_path, utcnow

    async def _create(
        files: dict[str, Any] | None = None,
        raw_files: dict[str, str] | None = None,
        **log_kwargs,
    ) -> ExecutionLogModel:
        log = await execution_log_factory(**log_kwargs)
        log_path = build_log_path(
            log.tenant_id, log.project_id, log.prompt_id, log.version, log.id, utcnow()
        )
        async with session_factory() as session:
            await session.execute(
                update(ExecutionLogModel)
                .where(ExecutionLogModel.id == log.id)
                .values(log_path=log_path)
            )
            await session.commit()
        log.log_path = log_path

        for filename, data in (files or {}).items():
            await blob_store.put(f"{log_path}/{filename}", json.dumps(data))
        for filename, body in (raw_files or {}).items():
            await blob_store.put(f"{log_path}/{filename}", body)
        return log

    return _create
