from prompt_telemetry.celery_app import celery_app
from prompt_telemetry.tasks import execution_logs

__all__ = [
    "celery_app",
    "execution_logs",
]
