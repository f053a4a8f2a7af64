import logging
from typing import Literal, get_args

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from prompt_telemetry.api.v1.deps import get_tenant_id
from prompt_telemetry.db.session import get_db
from prompt_telemetry.models.pydantic_models.traces import (
    LogListFilterModel,
    LogListResponseModel,
    LogSortField,
    SortModel,
)
from prompt_telemetry.telemetry import search_index
from prompt_telemetry.telemetry.tracing_helpers import list_project_logs

logger = logging.getLogger(__name__)
router = APIRouter()

LOG_SORT_FIELDS = get_args(LogSortField)


@router.get("", response_model=LogListResponseModel)
async def list_logs(
    project_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    is_success: bool | None = Query(None),
    prompt_id: int | None = Query(None),
    version: int | None = Query(None),
    variable_path: str | None = Query(
        None, description="Dotted variable path, e.g. user.name"
    ),
    variable_value: str | None = Query(
        None, description="Case-insensitive substring to match at variable_path"
    ),
    variable_operator: Literal["contains", "not_empty"] = Query("contains"),
    ordering: str | None = Query(None, description=f"One of {LOG_SORT_FIELDS}"),
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    filters = LogListFilterModel(
        is_success=is_success,
        prompt_id=prompt_id,
        version=version,
        variable_path=variable_path,
        variable_value=variable_value,
        variable_operator=variable_operator,
    )
    sort = SortModel.from_ordering(ordering, LOG_SORT_FIELDS)
    return await list_project_logs(
        db,
        tenant_id,
        project_id,
        page=page,
        page_size=page_size,
        filters=filters,
        sort=sort,
    )


@router.get("/variables", response_model=list[str])
async def list_variable_paths(
    project_id: int,
    tenant_id: int = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
):
    """Every variable path indexed for the project, for building search filters."""
    return await search_index.get_unique_variable_paths(db, tenant_id, project_id)
