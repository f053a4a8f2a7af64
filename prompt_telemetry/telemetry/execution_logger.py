"""
Per-invocation execution logging.

A logger instance accumulates payloads in memory while a prompt runs. The
terminal call (``log_success`` / ``log_error``) schedules the relational write
and returns immediately; ``finish()`` is the slow part (blob archival plus the
queue message) and is meant to run after the response has been sent, e.g. from
a FastAPI background task.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prompt_telemetry.db.blob_storage import BlobStore
from prompt_telemetry.models.execution_logs import ExecutionLogModel
from prompt_telemetry.models.pydantic_models.messages import ExecutionLogMessage
from prompt_telemetry.telemetry.errors import (
    MissingLoggingContextError,
    TelemetryError,
)
from prompt_telemetry.telemetry.message_queue import MessageQueue
from prompt_telemetry.telemetry.trace_parser import parse_trace_parent
from prompt_telemetry.utils import build_log_path, utcnow

logger = logging.getLogger(__name__)


class ExecutionContext(BaseModel):
    tenant_id: Optional[int] = None
    project_id: Optional[int] = None
    prompt_id: Optional[int] = None
    version: Optional[int] = None
    raw_trace_id: Optional[str] = None


@dataclass
class _LogRecord:
    tenant_id: int
    project_id: int
    prompt_id: int
    version: int
    log_id: int
    log_path: str
    duration_ms: int
    timestamp: str
    is_success: bool
    error_message: Optional[str] = None

    def metadata(self) -> dict:
        metadata: dict[str, Any] = {
            "tenantId": self.tenant_id,
            "projectId": self.project_id,
            "promptId": self.prompt_id,
            "version": self.version,
            "timestamp": self.timestamp,
            "durationMs": self.duration_ms,
        }
        if not self.is_success and self.error_message:
            metadata["error"] = self.error_message
        return metadata

    def message(self) -> ExecutionLogMessage:
        return ExecutionLogMessage(
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            prompt_id=self.prompt_id,
            version=self.version,
            log_id=self.log_id,
        )


def _has_payload(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (dict, list, str)) and len(value) == 0:
        return False
    return True


class ExecutionLogger:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        queue: MessageQueue,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.queue = queue
        self._context = ExecutionContext()
        self._trace_id: Optional[str] = None
        self._reset_buffers()

    def _reset_buffers(self) -> None:
        self._payloads: dict[str, Any] = {}
        self._pending: Optional[asyncio.Task] = None
        self._finalized = False

    def set_context(self, context: ExecutionContext) -> None:
        """Start a new logging session; anything buffered so far is discarded."""
        self._context = context
        parsed = parse_trace_parent(context.raw_trace_id)
        self._trace_id = parsed.trace_id if parsed else None
        if context.raw_trace_id and parsed is None:
            logger.warning(f"Ignoring malformed traceparent: {context.raw_trace_id!r}")
        self._reset_buffers()

    @property
    def trace_id(self) -> Optional[str]:
        return self._trace_id

    # Payload setters: last write wins per category

    def log_input(self, data: Any) -> None:
        self._payloads["input.json"] = data

    def log_output(self, data: Any) -> None:
        self._payloads["output.json"] = data

    def log_result(self, data: Any) -> None:
        self._payloads["result.json"] = data

    def log_response(self, data: Any) -> None:
        self._payloads["response.json"] = data

    def log_variables(self, variables: dict[str, Any]) -> None:
        self._payloads["variables.json"] = variables

    async def log_success(
        self,
        duration_ms: int,
        *,
        tenant_id: Optional[int] = None,
        project_id: Optional[int] = None,
        prompt_id: Optional[int] = None,
        version: Optional[int] = None,
    ) -> None:
        self._schedule_record(
            duration_ms=duration_ms,
            is_success=True,
            error_message=None,
            overrides=(tenant_id, project_id, prompt_id, version),
        )

    async def log_error(
        self,
        duration_ms: int,
        error_message: str,
        *,
        tenant_id: Optional[int] = None,
        project_id: Optional[int] = None,
        prompt_id: Optional[int] = None,
        version: Optional[int] = None,
    ) -> None:
        self._schedule_record(
            duration_ms=duration_ms,
            is_success=False,
            error_message=error_message,
            overrides=(tenant_id, project_id, prompt_id, version),
        )

    def _resolve_ids(self, overrides: tuple) -> tuple[int, int, int, int]:
        defaults = (
            self._context.tenant_id,
            self._context.project_id,
            self._context.prompt_id,
            self._context.version,
        )
        resolved = tuple(
            override if override is not None else default
            for override, default in zip(overrides, defaults)
        )
        missing = [
            name
            for name, value in zip(
                ("tenant_id", "project_id", "prompt_id", "version"), resolved
            )
            if value is None
        ]
        if missing:
            raise MissingLoggingContextError(
                f"Missing required context: {', '.join(missing)} must be provided "
                "either via set_context() or the terminal call"
            )
        return resolved  # type: ignore[return-value]

    def _schedule_record(
        self,
        duration_ms: int,
        is_success: bool,
        error_message: Optional[str],
        overrides: tuple,
    ) -> None:
        tenant_id, project_id, prompt_id, version = self._resolve_ids(overrides)
        if self._finalized:
            raise TelemetryError("Execution already logged; call set_context() first")
        self._finalized = True

        # everything session-scoped is captured now; the task may run after
        # set_context() has already started the next session
        self._pending = asyncio.create_task(
            self._persist_record(
                tenant_id=tenant_id,
                project_id=project_id,
                prompt_id=prompt_id,
                version=version,
                duration_ms=duration_ms,
                is_success=is_success,
                error_message=error_message,
                raw_trace_id=self._context.raw_trace_id,
                trace_id=self._trace_id,
                logged_at=utcnow(),
            )
        )

    async def _persist_record(
        self,
        tenant_id: int,
        project_id: int,
        prompt_id: int,
        version: int,
        duration_ms: int,
        is_success: bool,
        error_message: Optional[str],
        raw_trace_id: Optional[str],
        trace_id: Optional[str],
        logged_at: datetime,
    ) -> _LogRecord:
        async with self.session_factory() as session:
            log = ExecutionLogModel(
                tenant_id=tenant_id,
                project_id=project_id,
                prompt_id=prompt_id,
                version=version,
                is_success=is_success,
                error_message=error_message,
                duration_ms=duration_ms,
                raw_trace_id=raw_trace_id,
                trace_id=trace_id,
                created_at=logged_at,
            )
            session.add(log)
            await session.flush()

            # the path embeds the generated id, so it can only be set after insert
            log_path = build_log_path(
                tenant_id, project_id, prompt_id, version, log.id, logged_at
            )
            log.log_path = log_path
            await session.commit()

        logger.debug(f"Recorded execution log {log.id} at {log_path}")
        return _LogRecord(
            tenant_id=tenant_id,
            project_id=project_id,
            prompt_id=prompt_id,
            version=version,
            log_id=log.id,
            log_path=log_path,
            duration_ms=duration_ms,
            timestamp=logged_at.isoformat(),
            is_success=is_success,
            error_message=error_message,
        )

    async def _save_blob(self, log_path: str, filename: str, data: Any) -> None:
        await self.blob_store.put(
            f"{log_path}/{filename}", json.dumps(data, indent=2, default=str)
        )

    async def finish(self) -> None:
        """
        Wait for the relational write, archive buffered payloads, then enqueue
        exactly one processing message. Buffers are cleared afterwards.
        """
        try:
            if self._pending is None:
                return
            record = await self._pending

            writes = [self._save_blob(record.log_path, "metadata.json", record.metadata())]
            writes.extend(
                self._save_blob(record.log_path, filename, data)
                for filename, data in self._payloads.items()
                if _has_payload(data)
            )
            await asyncio.gather(*writes)

            await self.queue.send(record.message())
            logger.info(
                f"Archived execution log {record.log_id} ({len(writes)} files) and queued processing"
            )
        finally:
            self._reset_buffers()


class NullExecutionLogger:
    """Drop-in logger that records nothing, for when logging is disabled."""

    trace_id = None

    def set_context(self, context: ExecutionContext) -> None:
        pass

    def log_input(self, data: Any) -> None:
        pass

    def log_output(self, data: Any) -> None:
        pass

    def log_result(self, data: Any) -> None:
        pass

    def log_response(self, data: Any) -> None:
        pass

    def log_variables(self, variables: dict[str, Any]) -> None:
        pass

    async def log_success(self, duration_ms: int, **kwargs) -> None:
        pass

    async def log_error(self, duration_ms: int, error_message: str, **kwargs) -> None:
        pass

    async def finish(self) -> None:
        pass
