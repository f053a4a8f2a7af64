import json
import logging
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from prompt_telemetry.models.execution_logs import ExecutionLogModel
from prompt_telemetry.models.traces import TraceModel
from prompt_telemetry.telemetry.trace_parser import parse_trace_parent

logger = logging.getLogger(__name__)


class ModelUsageStats(BaseModel):
    model: str
    count: int
    tokens: dict[str, int] = Field(default_factory=dict)


class ProviderUsageStats(BaseModel):
    provider: str
    models: list[ModelUsageStats] = Field(default_factory=list)


class UsageStats(BaseModel):
    providers: list[ProviderUsageStats] = Field(default_factory=list)

    @classmethod
    def from_json(cls, raw: str | None) -> "UsageStats | None":
        """Parse a stored stats document; anything unreadable maps to None."""
        if not raw:
            return None
        try:
            return cls.model_validate(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Ignoring unparsable trace stats: {e}")
            return None


class SpanInfo(BaseModel):
    version: str
    trace_id: str
    span_id: str
    trace_flags: str
    sampled: bool


class TraceResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    trace_id: str
    project_id: int
    total_logs: int
    success_count: int
    error_count: int
    total_duration_ms: int
    stats: UsageStats | None = None
    first_log_at: datetime | None = None
    last_log_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_orm_obj(cls, obj: TraceModel) -> "TraceResponseModel":
        return cls(
            id=obj.id,
            trace_id=obj.trace_id,
            project_id=obj.project_id,
            total_logs=obj.total_logs,
            success_count=obj.success_count,
            error_count=obj.error_count,
            total_duration_ms=obj.total_duration_ms,
            stats=UsageStats.from_json(obj.stats),
            first_log_at=obj.first_log_at,
            last_log_at=obj.last_log_at,
            created_at=obj.created_at,
            updated_at=obj.updated_at,
        )


class LogResponseModel(BaseModel):
    id: int
    tenant_id: int
    project_id: int
    prompt_id: int
    version: int
    is_success: bool
    error_message: str | None = None
    duration_ms: int | None = None
    provider: str | None = None
    model: str | None = None
    created_at: datetime
    trace_id: str | None = None
    raw_trace_id: str | None = None

    @classmethod
    def field_values(cls, obj: ExecutionLogModel) -> dict:
        return {name: getattr(obj, name) for name in cls.model_fields}

    @classmethod
    def from_orm_obj(cls, obj: ExecutionLogModel) -> "LogResponseModel":
        return cls(**cls.field_values(obj))


class LogWithSpanResponseModel(LogResponseModel):
    trace: SpanInfo | None = None

    @classmethod
    def from_orm_obj(cls, obj: ExecutionLogModel) -> "LogWithSpanResponseModel":
        # span info is re-derived from the raw header, never stored
        parsed = parse_trace_parent(obj.raw_trace_id)
        values = LogResponseModel.field_values(obj)
        return cls(
            **values,
            trace=SpanInfo(**parsed.model_dump()) if parsed else None,
        )


class TraceDetailsResponseModel(BaseModel):
    trace: TraceResponseModel
    logs: list[LogWithSpanResponseModel]


TraceSortField = Literal[
    "created_at",
    "updated_at",
    "total_logs",
    "success_count",
    "error_count",
    "total_duration_ms",
    "first_log_at",
    "last_log_at",
]

LogSortField = Literal["created_at", "duration_ms", "is_success", "provider"]


class SortModel(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "desc"

    @classmethod
    def from_ordering(cls, ordering: str | None, allowed: tuple[str, ...]):
        """Parse a DRF-style ordering value (``-total_logs``); invalid fields give None."""
        if not ordering:
            return None
        direction = "desc" if ordering.startswith("-") else "asc"
        field = ordering.lstrip("-")
        if field not in allowed:
            return None
        return cls(field=field, direction=direction)


class TraceListResponseModel(BaseModel):
    traces: list[TraceResponseModel]
    total: int
    page: int
    page_size: int
    total_pages: int


class LogListFilterModel(BaseModel):
    is_success: bool | None = None
    prompt_id: int | None = None
    version: int | None = None
    variable_path: str | None = None
    variable_value: str | None = None
    variable_operator: Literal["contains", "not_empty"] = "contains"


class LogListResponseModel(BaseModel):
    logs: list[LogResponseModel]
    total: int
    page: int
    page_size: int
    total_pages: int
