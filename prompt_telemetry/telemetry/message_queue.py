"""
Producer side of the execution-log queue.
"""

import logging
from typing import Protocol

from prompt_telemetry.models.pydantic_models.messages import ExecutionLogMessage

logger = logging.getLogger(__name__)

PROCESS_MESSAGE_TASK = "execution_logs.process_message"


class MessageQueue(Protocol):
    async def send(self, message: ExecutionLogMessage) -> None: ...


class CeleryMessageQueue:
    """Hands messages to the Celery broker; delivery is at-least-once."""

    def __init__(self, celery_app=None, queue_name: str | None = None):
        self._celery_app = celery_app
        self._queue_name = queue_name

    @property
    def celery_app(self):
        if self._celery_app is None:
            from prompt_telemetry.celery_app import get_celery_app

            self._celery_app = get_celery_app()
        return self._celery_app

    async def send(self, message: ExecutionLogMessage) -> None:
        options = {"queue": self._queue_name} if self._queue_name else {}
        task = self.celery_app.send_task(
            PROCESS_MESSAGE_TASK, kwargs={"message": message.to_payload()}, **options
        )
        logger.info(f"Queued execution log {message.log_id} as task {task.id}")
