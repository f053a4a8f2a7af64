from prompt_telemetry.tasks import execution_logs  # noqa: F401

__all__ = [
    "execution_logs",
]
