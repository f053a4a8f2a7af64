"""
Concurrency tests for trace aggregation.

A concurrent writer is simulated by touching the trace row right after the
service has captured its version, so the conditional update finds a changed
row and the attempt has to start over.
"""

import asyncio

import pytest
from sqlalchemy import func, select, update

from prompt_telemetry.models.traces import TraceModel
from prompt_telemetry.telemetry.errors import OptimisticLockError
from prompt_telemetry.telemetry.trace_extraction import TraceExtractionService
from prompt_telemetry.utils import next_version, utcnow

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"


async def _touch_trace(session_factory, expected_version):
    """Bump the row like another worker would, leaving wrong totals behind."""
    async with session_factory() as session:
        await session.execute(
            update(TraceModel)
            .where(TraceModel.trace_id == TRACE_ID)
            .values(total_logs=999, updated_at=next_version(expected_version))
        )
        await session.commit()


class RacingTraceExtraction(TraceExtractionService):
    def __init__(self, *args, conflicts: int = 0, hide_existing_once: bool = False, **kwargs):
        super().__init__(*args, **kwargs)
        self.conflicts = conflicts
        self.hide_existing_once = hide_existing_once
        self.version_reads = 0

    async def _get_trace_version(self, session, tenant_id, project_id, trace_id):
        version = await super()._get_trace_version(
            session, tenant_id, project_id, trace_id
        )
        self.version_reads += 1
        if version is not None and self.hide_existing_once:
            # pretend the row was inserted by someone else after our read
            self.hide_existing_once = False
            return None
        if version is not None and self.conflicts > 0:
            self.conflicts -= 1
            await _touch_trace(self.session_factory, version)
        return version


async def _get_trace(session_factory):
    async with session_factory() as session:
        result = await session.execute(
            select(TraceModel).where(TraceModel.trace_id == TRACE_ID)
        )
        return result.scalar_one_or_none()


async def test_conflict_is_retried_and_converges(
    session_factory, blob_store, execution_log_factory, trace_extraction
):
    await execution_log_factory()
    await trace_extraction.extract_trace(1, 10, TRACE_ID)
    await execution_log_factory()

    service = RacingTraceExtraction(
        session_factory, blob_store, conflicts=2, retry_delay_ms=0
    )
    await service.extract_trace(1, 10, TRACE_ID)

    assert service.version_reads == 3
    trace = await _get_trace(session_factory)
    assert trace.total_logs == 2


async def test_exhausted_retries_raise_lock_error(
    session_factory, blob_store, execution_log_factory, trace_extraction
):
    await execution_log_factory()
    await trace_extraction.extract_trace(1, 10, TRACE_ID)

    service = RacingTraceExtraction(
        session_factory, blob_store, conflicts=100, max_attempts=3, retry_delay_ms=0
    )
    with pytest.raises(OptimisticLockError):
        await service.extract_trace(1, 10, TRACE_ID)

    assert service.version_reads == 3
    # the last concurrent write is what remains; nothing was silently merged
    trace = await _get_trace(session_factory)
    assert trace.total_logs == 999


async def test_retry_bound_is_configurable(
    session_factory, blob_store, execution_log_factory, trace_extraction
):
    await execution_log_factory()
    await trace_extraction.extract_trace(1, 10, TRACE_ID)

    service = RacingTraceExtraction(
        session_factory, blob_store, conflicts=4, max_attempts=5, retry_delay_ms=0
    )
    await service.extract_trace(1, 10, TRACE_ID)

    assert service.version_reads == 5
    assert (await _get_trace(session_factory)).total_logs == 1


async def test_concurrent_insert_falls_through_to_update(
    session_factory, blob_store, execution_log_factory, trace_extraction
):
    await execution_log_factory()
    await trace_extraction.extract_trace(1, 10, TRACE_ID)
    await execution_log_factory()
    await execution_log_factory()

    service = RacingTraceExtraction(
        session_factory, blob_store, hide_existing_once=True, retry_delay_ms=0
    )
    await service.extract_trace(1, 10, TRACE_ID)

    # one read before the failed insert, one after it; no full retry
    assert service.version_reads == 2
    async with session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(TraceModel))
    assert count == 1
    assert (await _get_trace(session_factory)).total_logs == 3


async def test_vanished_row_restarts_as_insert(
    session_factory, blob_store, execution_log_factory, trace_extraction
):
    await execution_log_factory()
    await trace_extraction.extract_trace(1, 10, TRACE_ID)

    class DeletingTraceExtraction(TraceExtractionService):
        deleted = False

        async def _get_trace_version(self, session, tenant_id, project_id, trace_id):
            version = await super()._get_trace_version(
                session, tenant_id, project_id, trace_id
            )
            if version is not None and not self.deleted:
                self.deleted = True
                async with self.session_factory() as other:
                    await other.execute(
                        TraceModel.__table__.delete().where(
                            TraceModel.trace_id == TRACE_ID
                        )
                    )
                    await other.commit()
            return version

    service = DeletingTraceExtraction(session_factory, blob_store, retry_delay_ms=0)
    await service.extract_trace(1, 10, TRACE_ID)

    trace = await _get_trace(session_factory)
    assert trace is not None
    assert trace.total_logs == 1


async def test_parallel_extractions_converge(
    session_factory, blob_store, execution_log_factory
):
    for _ in range(3):
        await execution_log_factory()

    services = [
        TraceExtractionService(
            session_factory, blob_store, max_attempts=10, retry_delay_ms=0
        )
        for _ in range(3)
    ]
    await asyncio.gather(*(s.extract_trace(1, 10, TRACE_ID) for s in services))

    trace = await _get_trace(session_factory)
    assert trace.total_logs == 3
    async with session_factory() as session:
        count = await session.scalar(select(func.count()).select_from(TraceModel))
    assert count == 1


def test_next_version_is_strictly_increasing():
    now = utcnow()
    assert next_version(now) > now
    assert next_version(None) <= utcnow()
