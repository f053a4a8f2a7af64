"""
Exceptions raised by the telemetry services.

Services only raise; the queue consumer decides whether a failure is
acknowledged, redelivered or dead-lettered.
"""


class TelemetryError(Exception):
    """Base class for telemetry pipeline failures."""


class MissingLoggingContextError(TelemetryError, ValueError):
    """tenant/project/prompt/version were not supplied to the execution logger."""


class ExecutionLogNotFoundError(TelemetryError):
    def __init__(self, tenant_id: int, project_id: int, log_id: int):
        self.tenant_id = tenant_id
        self.project_id = project_id
        self.log_id = log_id
        super().__init__(
            f"Execution log {log_id} not found for tenant {tenant_id}, project {project_id}"
        )


class InvalidArchivedDataError(TelemetryError):
    """An archived blob exists but its content can never be processed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid archived data in {path}: {reason}")


class OptimisticLockError(TelemetryError):
    """A concurrent writer changed the trace row between read and write."""
