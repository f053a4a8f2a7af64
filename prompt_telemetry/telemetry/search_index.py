"""
Queries against the ``log_search_entries`` index.

Callers own the transaction: these helpers never commit.
"""

import logging
from typing import Literal, Sequence

from sqlalchemy import and_, delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from prompt_telemetry.models.execution_logs import LogSearchEntryModel

logger = logging.getLogger(__name__)

SearchOperator = Literal["contains", "not_empty"]


async def insert_batch(db: AsyncSession, records: Sequence[dict]) -> int:
    """Insert search rows in a single executemany statement."""
    if not records:
        return 0
    await db.execute(insert(LogSearchEntryModel), list(records))
    return len(records)


async def delete_by_log_id(db: AsyncSession, tenant_id: int, log_id: int) -> int:
    result = await db.execute(
        delete(LogSearchEntryModel).where(
            and_(
                LogSearchEntryModel.tenant_id == tenant_id,
                LogSearchEntryModel.log_id == log_id,
            )
        )
    )
    return result.rowcount or 0


async def delete_by_project(db: AsyncSession, tenant_id: int, project_id: int) -> int:
    result = await db.execute(
        delete(LogSearchEntryModel).where(
            and_(
                LogSearchEntryModel.tenant_id == tenant_id,
                LogSearchEntryModel.project_id == project_id,
            )
        )
    )
    return result.rowcount or 0


async def replace_for_log(
    db: AsyncSession, tenant_id: int, log_id: int, records: Sequence[dict]
) -> int:
    """Swap a log's index rows for ``records``, so reprocessing never duplicates."""
    removed = await delete_by_log_id(db, tenant_id, log_id)
    if removed:
        logger.info(f"Replacing {removed} existing search rows for log {log_id}")
    return await insert_batch(db, records)


async def get_unique_variable_paths(
    db: AsyncSession, tenant_id: int, project_id: int
) -> list[str]:
    result = await db.execute(
        select(LogSearchEntryModel.variable_path)
        .where(
            and_(
                LogSearchEntryModel.tenant_id == tenant_id,
                LogSearchEntryModel.project_id == project_id,
            )
        )
        .distinct()
        .order_by(LogSearchEntryModel.variable_path.asc())
    )
    return list(result.scalars().all())


async def get_log_ids_by_variable_search(
    db: AsyncSession,
    tenant_id: int,
    project_id: int,
    variable_path: str,
    search_value: str = "",
    operator: SearchOperator = "contains",
) -> list[int]:
    """
    Log ids whose variables match at ``variable_path``.

    ``contains`` is a case-insensitive substring match on the stored value;
    ``not_empty`` only requires the path to exist with a non-empty value.
    """
    conditions = [
        LogSearchEntryModel.tenant_id == tenant_id,
        LogSearchEntryModel.project_id == project_id,
        LogSearchEntryModel.variable_path == variable_path,
    ]
    if operator == "not_empty":
        conditions.append(LogSearchEntryModel.variable_value != "")
    else:
        conditions.append(
            LogSearchEntryModel.variable_value.icontains(search_value, autoescape=True)
        )

    result = await db.execute(
        select(LogSearchEntryModel.log_id)
        .where(and_(*conditions))
        .distinct()
        .order_by(LogSearchEntryModel.log_id.desc())
    )
    return list(result.scalars().all())
