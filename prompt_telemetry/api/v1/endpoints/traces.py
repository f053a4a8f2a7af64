import logging
from typing import get_args

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from prompt_telemetry.api.v1.deps import get_tenant_id
from prompt_telemetry.db.session import get_db
from prompt_telemetry.models.pydantic_models.traces import (
    SortModel,
    TraceDetailsResponseModel,
    TraceListResponseModel,
    TraceSortField,
)
from prompt_telemetry.telemetry.tracing_helpers import (
    get_trace_details,
    list_project_traces,
)

logger = logging.getLogger(__name__)
router = APIRouter()

TRACE_SORT_FIELDS = get_args(TraceSortField)


@router.get("", response_model=TraceListResponseModel)
async def list_traces(
    project_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    # drf like ordering=-total_logs
    ordering: str | None = Query(
        None, description=f"Sort field, prefix with '-' for descending: {TRACE_SORT_FIELDS}"
    ),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """
    List trace aggregates for a project, newest first unless ``ordering`` says otherwise.
    Unknown ordering fields fall back to the default.
    """
    sort = SortModel.from_ordering(ordering, TRACE_SORT_FIELDS)
    return await list_project_traces(
        db, tenant_id, project_id, page=page, page_size=page_size, sort=sort
    )


@router.get("/{trace_id}", response_model=TraceDetailsResponseModel)
async def get_trace(
    project_id: int,
    trace_id: str,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Retrieve a trace aggregate with all of its execution logs in creation order.
    Span info for each log is derived from the traceparent it was logged with.
    """
    result = await get_trace_details(db, tenant_id, project_id, trace_id)
    logger.info(
        f"Retrieved trace {trace_id} with {len(result.logs)} logs for project_id={project_id}"
    )
    return result
