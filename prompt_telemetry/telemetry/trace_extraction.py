"""
Trace aggregation.

Every extraction recomputes the trace from the full set of its execution logs,
archives a snapshot, then writes the aggregate row guarded by an optimistic
lock on ``traces.updated_at``. A conflicting concurrent writer makes the
attempt fail with ``OptimisticLockError``; the whole computation is retried
against the now-current data a bounded number of times.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from prompt_telemetry.config import settings
from prompt_telemetry.db.blob_storage import BlobStore
from prompt_telemetry.models.execution_logs import ExecutionLogModel
from prompt_telemetry.models.traces import TraceModel
from prompt_telemetry.telemetry.errors import OptimisticLockError
from prompt_telemetry.telemetry.usage import normalize_usage
from prompt_telemetry.utils import as_utc, build_trace_path, next_version, to_iso, utcnow

logger = logging.getLogger(__name__)

TRACE_SNAPSHOT_FILE = "trace.json"


@dataclass
class TraceStats:
    total_logs: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: int = 0
    first_log_at: Optional[datetime] = None
    last_log_at: Optional[datetime] = None
    usage: Optional[dict] = None

    def to_snapshot(self) -> dict:
        return {
            "totalLogs": self.total_logs,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "totalDurationMs": self.total_duration_ms,
            "firstLogAt": to_iso(self.first_log_at),
            "lastLogAt": to_iso(self.last_log_at),
            "usage": self.usage,
        }

    def row_values(self) -> dict:
        return {
            "total_logs": self.total_logs,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_duration_ms": self.total_duration_ms,
            "first_log_at": self.first_log_at,
            "last_log_at": self.last_log_at,
            "stats": json.dumps(self.usage) if self.usage is not None else None,
        }


def aggregate_usage_stats(logs: Sequence[ExecutionLogModel]) -> Optional[dict]:
    """
    Group usage by provider then model, counting occurrences and summing each
    token field. Groups keep first-seen order. None when no log contributes.
    """
    providers: dict[str, dict[str, dict[str, Any]]] = {}

    for log in logs:
        if not (log.provider and log.model and log.usage):
            continue
        try:
            raw_usage = json.loads(log.usage)
        except (ValueError, TypeError):
            logger.warning(f"Skipping unparsable usage on execution log {log.id}")
            continue
        usage = normalize_usage(log.provider, raw_usage)
        if usage is None:
            continue

        models = providers.setdefault(log.provider, {})
        entry = models.setdefault(log.model, {"count": 0, "tokens": {}})
        entry["count"] += 1
        tokens = entry["tokens"]
        for field, value in usage.items():
            tokens[field] = tokens.get(field, 0) + value

    if not providers:
        return None

    return {
        "providers": [
            {
                "provider": provider,
                "models": [
                    {"model": model, "count": entry["count"], "tokens": entry["tokens"]}
                    for model, entry in models.items()
                ],
            }
            for provider, models in providers.items()
        ]
    }


def calculate_trace_stats(logs: Sequence[ExecutionLogModel]) -> TraceStats:
    stats = TraceStats(total_logs=len(logs))

    for log in logs:
        if log.is_success:
            stats.success_count += 1
        else:
            stats.error_count += 1

        if log.duration_ms is not None:
            stats.total_duration_ms += log.duration_ms

        created_at = as_utc(log.created_at)
        if stats.first_log_at is None or created_at < stats.first_log_at:
            stats.first_log_at = created_at
        if stats.last_log_at is None or created_at > stats.last_log_at:
            stats.last_log_at = created_at

    stats.usage = aggregate_usage_stats(logs)
    return stats


def _snapshot_log(log: ExecutionLogModel) -> dict:
    return {
        "id": log.id,
        "promptId": log.prompt_id,
        "version": log.version,
        "isSuccess": log.is_success,
        "errorMessage": log.error_message,
        "durationMs": log.duration_ms,
        "provider": log.provider,
        "model": log.model,
        "logPath": log.log_path,
        "createdAt": to_iso(log.created_at),
    }


async def load_trace_snapshot(
    blob_store: BlobStore, tenant_id: int, project_id: int, trace_id: str
) -> Optional[dict]:
    body = await blob_store.get(
        f"{build_trace_path(tenant_id, project_id, trace_id)}/{TRACE_SNAPSHOT_FILE}"
    )
    if body is None:
        return None
    return json.loads(body)


class TraceExtractionService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        max_attempts: Optional[int] = None,
        retry_delay_ms: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.max_attempts = (
            max_attempts
            if max_attempts is not None
            else settings.trace_extraction_max_attempts
        )
        self.retry_delay_ms = (
            retry_delay_ms
            if retry_delay_ms is not None
            else settings.trace_extraction_retry_delay_ms
        )

    async def extract_trace(
        self, tenant_id: int, project_id: int, trace_id: Optional[str]
    ) -> None:
        """
        Recompute and persist the aggregate for one trace.

        Raises:
            OptimisticLockError: every attempt lost the race against another writer
        """
        if not trace_id:
            logger.warning("No trace id provided, skipping trace extraction")
            return

        delay = self.retry_delay_ms / 1000
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(OptimisticLockError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=delay, increment=delay),
            reraise=True,
            before_sleep=before_sleep_log(logger, logging.INFO),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._process_trace(tenant_id, project_id, trace_id)
        except OptimisticLockError:
            logger.error(
                f"Failed to process trace {trace_id} after {self.max_attempts} attempts"
            )
            raise

    async def _load_logs(
        self, session: AsyncSession, tenant_id: int, project_id: int, trace_id: str
    ) -> list[ExecutionLogModel]:
        result = await session.execute(
            select(ExecutionLogModel)
            .where(
                and_(
                    ExecutionLogModel.tenant_id == tenant_id,
                    ExecutionLogModel.project_id == project_id,
                    ExecutionLogModel.trace_id == trace_id,
                )
            )
            .order_by(ExecutionLogModel.created_at.asc(), ExecutionLogModel.id.asc())
        )
        return list(result.scalars().all())

    async def _get_trace_version(
        self, session: AsyncSession, tenant_id: int, project_id: int, trace_id: str
    ) -> Optional[datetime]:
        """``updated_at`` of the trace row, or None when the row does not exist."""
        result = await session.execute(
            select(TraceModel.updated_at).where(
                and_(
                    TraceModel.tenant_id == tenant_id,
                    TraceModel.project_id == project_id,
                    TraceModel.trace_id == trace_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def _write_snapshot(
        self,
        tenant_id: int,
        project_id: int,
        trace_id: str,
        logs: Sequence[ExecutionLogModel],
        stats: TraceStats,
    ) -> str:
        trace_path = build_trace_path(tenant_id, project_id, trace_id)
        snapshot = {
            "traceId": trace_id,
            "tenantId": tenant_id,
            "projectId": project_id,
            "stats": stats.to_snapshot(),
            "logs": [_snapshot_log(log) for log in logs],
            "extractedAt": utcnow().isoformat(),
        }
        await self.blob_store.put(
            f"{trace_path}/{TRACE_SNAPSHOT_FILE}", json.dumps(snapshot, indent=2)
        )
        return trace_path

    async def _insert_trace(
        self,
        session: AsyncSession,
        tenant_id: int,
        project_id: int,
        trace_id: str,
        values: dict,
    ) -> bool:
        """Insert a new trace row; False when another writer created it first."""
        now = utcnow()
        try:
            await session.execute(
                insert(TraceModel).values(
                    tenant_id=tenant_id,
                    project_id=project_id,
                    trace_id=trace_id,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info(f"Trace {trace_id} was created concurrently, updating instead")
            return False
        return True

    async def _update_trace(
        self,
        session: AsyncSession,
        tenant_id: int,
        project_id: int,
        trace_id: str,
        expected_version: datetime,
        values: dict,
    ) -> None:
        result = await session.execute(
            update(TraceModel)
            .where(
                and_(
                    TraceModel.tenant_id == tenant_id,
                    TraceModel.project_id == project_id,
                    TraceModel.trace_id == trace_id,
                    TraceModel.updated_at == expected_version,
                )
            )
            .values(updated_at=next_version(expected_version), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await session.rollback()
            raise OptimisticLockError(
                f"Trace {trace_id} was modified concurrently"
            )
        await session.commit()

    async def _process_trace(
        self, tenant_id: int, project_id: int, trace_id: str
    ) -> None:
        async with self.session_factory() as session:
            logs = await self._load_logs(session, tenant_id, project_id, trace_id)
            if not logs:
                logger.warning(f"No logs found for trace {trace_id}")
                return

            stats = calculate_trace_stats(logs)
            trace_path = await self._write_snapshot(
                tenant_id, project_id, trace_id, logs, stats
            )
            values = {**stats.row_values(), "trace_path": trace_path}

            expected_version = await self._get_trace_version(
                session, tenant_id, project_id, trace_id
            )
            if expected_version is None:
                if await self._insert_trace(
                    session, tenant_id, project_id, trace_id, values
                ):
                    logger.info(
                        f"Created trace {trace_id} with {stats.total_logs} logs"
                    )
                    return
                expected_version = await self._get_trace_version(
                    session, tenant_id, project_id, trace_id
                )
                if expected_version is None:
                    raise OptimisticLockError(
                        f"Trace {trace_id} disappeared during processing"
                    )

            await self._update_trace(
                session, tenant_id, project_id, trace_id, expected_version, values
            )
            logger.info(f"Updated trace {trace_id} with {stats.total_logs} logs")
