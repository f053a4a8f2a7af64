import logging

from fastapi import HTTPException
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from prompt_telemetry.models.execution_logs import ExecutionLogModel
from prompt_telemetry.models.traces import TraceModel
from prompt_telemetry.models.pydantic_models.traces import (
    LogListFilterModel,
    LogListResponseModel,
    LogResponseModel,
    LogWithSpanResponseModel,
    SortModel,
    TraceDetailsResponseModel,
    TraceListResponseModel,
    TraceResponseModel,
)
from prompt_telemetry.telemetry.search_index import get_log_ids_by_variable_search
from prompt_telemetry.utils import calculate_total_pages

logger = logging.getLogger(__name__)


def _order_by(model, sort: SortModel | None, default: str = "created_at"):
    column = getattr(model, sort.field if sort else default)
    if sort is not None and sort.direction == "asc":
        return [column.asc(), model.id.asc()]
    return [column.desc(), model.id.desc()]


async def get_trace_details(
    db: AsyncSession, tenant_id: int, project_id: int, trace_id: str
) -> TraceDetailsResponseModel:
    result = await db.execute(
        select(TraceModel).where(
            and_(
                TraceModel.tenant_id == tenant_id,
                TraceModel.project_id == project_id,
                TraceModel.trace_id == trace_id,
            )
        )
    )
    trace_obj = result.scalars().first()
    if not trace_obj:
        raise HTTPException(
            status_code=404,
            detail=f"Trace with ID {trace_id} not found or not accessible.",
        )

    result = await db.execute(
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
    logs = [LogWithSpanResponseModel.from_orm_obj(log) for log in result.scalars()]

    return TraceDetailsResponseModel(
        trace=TraceResponseModel.from_orm_obj(trace_obj), logs=logs
    )


async def list_project_traces(
    db: AsyncSession,
    tenant_id: int,
    project_id: int,
    page: int = 1,
    page_size: int = 20,
    sort: SortModel | None = None,
) -> TraceListResponseModel:
    conditions = and_(
        TraceModel.tenant_id == tenant_id,
        TraceModel.project_id == project_id,
    )
    total = await db.scalar(
        select(func.count()).select_from(TraceModel).where(conditions)
    )
    result = await db.execute(
        select(TraceModel)
        .where(conditions)
        .order_by(*_order_by(TraceModel, sort))
        .limit(page_size)
        .offset((page - 1) * page_size)
    )

    return TraceListResponseModel(
        traces=[TraceResponseModel.from_orm_obj(obj) for obj in result.scalars()],
        total=total or 0,
        page=page,
        page_size=page_size,
        total_pages=calculate_total_pages(total or 0, page_size),
    )


async def list_project_logs(
    db: AsyncSession,
    tenant_id: int,
    project_id: int,
    page: int = 1,
    page_size: int = 20,
    filters: LogListFilterModel | None = None,
    sort: SortModel | None = None,
) -> LogListResponseModel:
    filters = filters or LogListFilterModel()
    conditions = [
        ExecutionLogModel.tenant_id == tenant_id,
        ExecutionLogModel.project_id == project_id,
    ]
    if filters.is_success is not None:
        conditions.append(ExecutionLogModel.is_success == filters.is_success)
    if filters.prompt_id is not None:
        conditions.append(ExecutionLogModel.prompt_id == filters.prompt_id)
    if filters.version is not None:
        conditions.append(ExecutionLogModel.version == filters.version)

    if filters.variable_path:
        log_ids = await get_log_ids_by_variable_search(
            db,
            tenant_id,
            project_id,
            filters.variable_path,
            filters.variable_value or "",
            filters.variable_operator,
        )
        if not log_ids:
            return LogListResponseModel(
                logs=[], total=0, page=page, page_size=page_size, total_pages=0
            )
        conditions.append(ExecutionLogModel.id.in_(log_ids))

    total = await db.scalar(
        select(func.count()).select_from(ExecutionLogModel).where(and_(*conditions))
    )
    result = await db.execute(
        select(ExecutionLogModel)
        .where(and_(*conditions))
        .order_by(*_order_by(ExecutionLogModel, sort))
        .limit(page_size)
        .offset((page - 1) * page_size)
    )
    logger.debug(f"Listed logs for project {project_id}: {total} matching")

    return LogListResponseModel(
        logs=[LogResponseModel.from_orm_obj(obj) for obj in result.scalars()],
        total=total or 0,
        page=page,
        page_size=page_size,
        total_pages=calculate_total_pages(total or 0, page_size),
    )
