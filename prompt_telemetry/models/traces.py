"""
Trace aggregate DB model.
"""

from sqlalchemy.sql import func
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from prompt_telemetry.db.base import Base
from prompt_telemetry.utils import utcnow


class TraceModel(Base):
    """
    Aggregate over every execution log sharing a trace id. Always a full
    recomputation; ``updated_at`` doubles as the optimistic-concurrency version.
    """

    __tablename__ = "traces"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "project_id",
            "trace_id",
            name="uq_traces_tenant_project_trace",
        ),
        Index("ix_traces_project_tenant", "project_id", "tenant_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, nullable=False, index=True)
    project_id = Column(Integer, nullable=False)
    trace_id = Column(String(64), nullable=False, index=True)

    total_logs = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)
    total_duration_ms = Column(Integer, nullable=False, default=0)
    stats = Column(Text, nullable=True)  # usage statistics, JSON text

    first_log_at = Column(DateTime(timezone=True), nullable=True)
    last_log_at = Column(DateTime(timezone=True), nullable=True)
    trace_path = Column(String(512), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
