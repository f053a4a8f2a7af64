"""
Queue consumer for archived execution logs.

Each message runs log processing (usage enrichment, variable indexing) and, for
logs that belong to a trace, re-aggregates the trace. The consumer is the only
place that decides what happens to a failed message:

- ACK: processed, or nothing left to do
- RETRY: any failure that may succeed later (missing row, lock contention, I/O)
- DEAD_LETTER: the archived data can never be parsed; parked and acknowledged
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from celery import shared_task
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from prompt_telemetry.config import settings
from prompt_telemetry.db.blob_storage import BlobStore, get_blob_store
from prompt_telemetry.db.session import dispose_engine, get_session_local
from prompt_telemetry.models.execution_logs import DeadLetterModel, ExecutionLogModel
from prompt_telemetry.models.pydantic_models.messages import ExecutionLogMessage
from prompt_telemetry.telemetry.errors import InvalidArchivedDataError
from prompt_telemetry.telemetry.log_processing import LogProcessingService
from prompt_telemetry.telemetry.message_queue import PROCESS_MESSAGE_TASK
from prompt_telemetry.telemetry.trace_extraction import TraceExtractionService

logger = logging.getLogger(__name__)

PROCESS_BATCH_TASK = "execution_logs.process_batch"


class MessageOutcome(str, Enum):
    ACK = "ack"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


class ExecutionLogConsumer:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        log_processing: Optional[LogProcessingService] = None,
        trace_extraction: Optional[TraceExtractionService] = None,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.log_processing = log_processing or LogProcessingService(
            session_factory, blob_store
        )
        self.trace_extraction = trace_extraction or TraceExtractionService(
            session_factory, blob_store
        )

    async def handle_batch(
        self, messages: Sequence[ExecutionLogMessage]
    ) -> List[MessageOutcome]:
        """Process messages one after another; one outcome per message, same order."""
        outcomes = []
        for message in messages:
            outcomes.append(await self.process_message(message))
        return outcomes

    async def process_message(self, message: ExecutionLogMessage) -> MessageOutcome:
        try:
            await self.log_processing.process_execution_log(
                message.tenant_id, message.project_id, message.log_id
            )
            trace_id = await self._get_trace_id(message)
            if trace_id:
                await self.trace_extraction.extract_trace(
                    message.tenant_id, message.project_id, trace_id
                )
        except InvalidArchivedDataError as e:
            logger.error(f"Dead-lettering execution log {message.log_id}: {e}")
            try:
                await self._dead_letter(message, str(e))
            except Exception as dl_error:
                logger.error(
                    f"Failed to dead-letter execution log {message.log_id}: {dl_error}",
                    exc_info=True,
                )
                return MessageOutcome.RETRY
            return MessageOutcome.DEAD_LETTER
        except Exception as e:
            logger.error(
                f"Error processing execution log {message.log_id}: {e}", exc_info=True
            )
            return MessageOutcome.RETRY

        logger.info(f"Processed execution log {message.log_id}")
        return MessageOutcome.ACK

    async def _get_trace_id(self, message: ExecutionLogMessage) -> Optional[str]:
        async with self.session_factory() as session:
            return await session.scalar(
                select(ExecutionLogModel.trace_id).where(
                    and_(
                        ExecutionLogModel.id == message.log_id,
                        ExecutionLogModel.tenant_id == message.tenant_id,
                        ExecutionLogModel.project_id == message.project_id,
                    )
                )
            )

    async def _dead_letter(self, message: ExecutionLogMessage, error: str) -> None:
        async with self.session_factory() as session:
            session.add(
                DeadLetterModel(
                    tenant_id=message.tenant_id,
                    project_id=message.project_id,
                    prompt_id=message.prompt_id,
                    version=message.version,
                    log_id=message.log_id,
                    message=message.to_payload(),
                    error=error,
                )
            )
            await session.commit()


async def _process_messages(
    messages: Sequence[ExecutionLogMessage],
) -> List[MessageOutcome]:
    try:
        consumer = ExecutionLogConsumer(get_session_local(), get_blob_store())
        return await consumer.handle_batch(messages)
    finally:
        await dispose_engine()


@shared_task(name=PROCESS_MESSAGE_TASK, bind=True, acks_late=True)
def process_execution_log_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Celery entry point for a single queue message.

    A RETRY outcome is redelivered with a linearly growing countdown until
    ``settings.queue_max_retries`` is exhausted.
    """
    parsed = ExecutionLogMessage.model_validate(message)
    outcome = asyncio.run(_process_messages([parsed]))[0]

    if outcome is MessageOutcome.RETRY:
        attempt = self.request.retries + 1
        logger.warning(
            f"Retrying execution log {parsed.log_id} (attempt {attempt}/{settings.queue_max_retries})"
        )
        raise self.retry(
            countdown=settings.queue_retry_countdown_seconds * attempt,
            max_retries=settings.queue_max_retries,
        )

    return {"log_id": parsed.log_id, "outcome": outcome.value}


@shared_task(name=PROCESS_BATCH_TASK)
def process_execution_log_batch(messages: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Process a batch; only the messages that need a retry are re-enqueued individually."""
    parsed = [ExecutionLogMessage.model_validate(message) for message in messages]
    outcomes = asyncio.run(_process_messages(parsed))

    for message, outcome in zip(parsed, outcomes):
        if outcome is MessageOutcome.RETRY:
            process_execution_log_message.apply_async(
                kwargs={"message": message.to_payload()},
                countdown=settings.queue_retry_countdown_seconds,
            )

    summary = {outcome.value: 0 for outcome in MessageOutcome}
    for outcome in outcomes:
        summary[outcome.value] += 1
    logger.info(f"Processed batch of {len(parsed)} execution logs: {summary}")
    return summary
