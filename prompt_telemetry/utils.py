from datetime import datetime, timedelta, timezone
import logging

logger = logging.getLogger(__name__)

LOG_ARTIFACT_FILES = (
    "metadata.json",
    "input.json",
    "output.json",
    "result.json",
    "response.json",
    "variables.json",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(timestamp: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def to_iso(timestamp: datetime | None) -> str | None:
    if timestamp is None:
        return None
    return as_utc(timestamp).isoformat()


def next_version(previous: datetime | None) -> datetime:
    """Fresh update timestamp that is strictly later than ``previous``."""
    now = utcnow()
    if previous is not None and now <= as_utc(previous):
        return as_utc(previous) + timedelta(microseconds=1)
    return now


def safe_int(value, default: int = 0) -> int:
    """Convert *value* to int, returning *default* on any error.

    Handles int, float and numeric strings like "1500"; booleans are not
    token counts and map to *default*.
    """
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def build_log_path(
    tenant_id: int,
    project_id: int,
    prompt_id: int,
    version: int,
    log_id: int,
    day: datetime,
) -> str:
    return (
        f"logs/{tenant_id}/{as_utc(day).strftime('%Y-%m-%d')}/"
        f"{project_id}/{prompt_id}/{version}/{log_id}"
    )


def build_trace_path(tenant_id: int, project_id: int, trace_id: str) -> str:
    return f"traces/{tenant_id}/{project_id}/{trace_id}"


def calculate_total_pages(total: int, page_size: int) -> int:
    if page_size <= 0:
        return 0
    return (total + page_size - 1) // page_size
