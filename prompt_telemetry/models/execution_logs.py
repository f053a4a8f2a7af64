"""
Execution log, search index and dead-letter DB models.
"""

import uuid

from sqlalchemy.sql import func
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB

from prompt_telemetry.db.base import Base
from prompt_telemetry.utils import utcnow


class ExecutionLogModel(Base):
    """
    One row per prompt invocation attempt. Finalized by the execution logger,
    enriched once with provider/model/usage by background processing.
    """

    __tablename__ = "execution_logs"
    __table_args__ = (
        Index("ix_execution_logs_project_tenant", "project_id", "tenant_id"),
        Index("ix_execution_logs_trace", "tenant_id", "project_id", "trace_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    prompt_id = Column(Integer, nullable=False, index=True)
    version = Column(Integer, nullable=False)

    log_path = Column(String(512), nullable=True)  # assigned after insert
    is_success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    provider = Column(String(64), nullable=True)
    model = Column(String(255), nullable=True)
    usage = Column(Text, nullable=True)  # normalized usage, JSON text

    raw_trace_id = Column(String(255), nullable=True)  # traceparent as received
    trace_id = Column(String(64), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )


class LogSearchEntryModel(Base):
    """Flattened variable path/value pairs, one row per leaf, for log search."""

    __tablename__ = "log_search_entries"
    __table_args__ = (
        Index(
            "ix_log_search_entries_tenant_project_path",
            "tenant_id",
            "project_id",
            "variable_path",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False)
    project_id = Column(Integer, nullable=False)
    prompt_id = Column(Integer, nullable=False)
    log_id = Column(Integer, nullable=False, index=True)
    variable_path = Column(String(1024), nullable=False)
    variable_value = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)


class DeadLetterModel(Base):
    """
    Queue messages whose archived data can never be processed. Kept with the
    failure reason so they can be inspected and replayed manually.
    """

    __tablename__ = "execution_log_dead_letters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    prompt_id = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)
    log_id = Column(Integer, nullable=False, index=True)
    message = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False)
    error = Column(Text, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
