"""
Background processing of a single execution log: usage enrichment from the
archived request/response and variable indexing for log search.
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prompt_telemetry.db.blob_storage import BlobStore
from prompt_telemetry.models.execution_logs import ExecutionLogModel
from prompt_telemetry.telemetry import search_index
from prompt_telemetry.telemetry.errors import (
    ExecutionLogNotFoundError,
    InvalidArchivedDataError,
)
from prompt_telemetry.telemetry.object_paths import flatten_to_paths, format_for_search
from prompt_telemetry.telemetry.usage import detect_provider, extract_usage

logger = logging.getLogger(__name__)


async def _load_json(blob_store: BlobStore, key: str) -> Optional[Any]:
    """Archived JSON document, or None when missing or undecodable."""
    body = await blob_store.get(key)
    if body is None:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        logger.warning(f"Could not decode archived document {key}")
        return None


class LogProcessingService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store

    async def _get_log(
        self, session: AsyncSession, tenant_id: int, project_id: int, log_id: int
    ) -> ExecutionLogModel:
        result = await session.execute(
            select(ExecutionLogModel).where(
                and_(
                    ExecutionLogModel.id == log_id,
                    ExecutionLogModel.tenant_id == tenant_id,
                    ExecutionLogModel.project_id == project_id,
                )
            )
        )
        log = result.scalar_one_or_none()
        if log is None:
            raise ExecutionLogNotFoundError(tenant_id, project_id, log_id)
        return log

    async def process_execution_log(
        self, tenant_id: int, project_id: int, log_id: int
    ) -> None:
        async with self.session_factory() as session:
            log = await self._get_log(session, tenant_id, project_id, log_id)

            if not log.log_path:
                logger.warning(f"Execution log {log_id} has no log path, skipping")
                return

            if log.provider is None:
                await self._enrich_usage(session, log)

            variables = await self._load_variables(log.log_path)
            if variables is None:
                logger.debug(f"No variables archived for log {log_id}")
                return

            records = [
                {
                    "tenant_id": tenant_id,
                    "project_id": project_id,
                    "prompt_id": log.prompt_id,
                    "log_id": log_id,
                    "variable_path": entry.path,
                    "variable_value": format_for_search(entry.value),
                    "created_at": log.created_at,
                }
                for entry in flatten_to_paths(variables)
            ]
            inserted = await search_index.replace_for_log(
                session, tenant_id, log_id, records
            )
            await session.commit()
            logger.info(f"Indexed {inserted} variable paths for log {log_id}")

    async def _load_variables(self, log_path: str) -> Optional[dict]:
        key = f"{log_path}/variables.json"
        body = await self.blob_store.get(key)
        if body is None:
            return None
        try:
            variables = json.loads(body)
        except json.JSONDecodeError as e:
            raise InvalidArchivedDataError(key, str(e)) from e
        if not isinstance(variables, dict):
            raise InvalidArchivedDataError(
                key, f"expected a JSON object, got {type(variables).__name__}"
            )
        return variables

    async def _enrich_usage(self, session: AsyncSession, log: ExecutionLogModel) -> None:
        """Fill provider/model/usage once; anything unrecognized leaves the row as is."""
        request = await _load_json(self.blob_store, f"{log.log_path}/input.json")
        provider = detect_provider(request)
        if provider is None:
            return

        response = await _load_json(self.blob_store, f"{log.log_path}/output.json")
        extracted = extract_usage(provider, response)
        if extracted is None:
            logger.debug(f"No usage found in {provider} response for log {log.id}")
            return

        model, usage = extracted
        result = await session.execute(
            update(ExecutionLogModel)
            .where(
                and_(
                    ExecutionLogModel.id == log.id,
                    ExecutionLogModel.provider.is_(None),
                )
            )
            .values(provider=provider, model=model, usage=json.dumps(usage))
        )
        await session.commit()
        if result.rowcount:
            logger.info(f"Recorded {provider}/{model} usage for log {log.id}")
