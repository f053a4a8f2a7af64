"""
Celery application for the execution-log workers.

Valkey is the broker (redis protocol). Every execution-log task is routed to
``settings.execution_log_queue`` and acknowledged late, so a worker crash
redelivers the message instead of losing it.
"""

import asyncio
import logging
import ssl

from celery import Celery, signals

from prompt_telemetry.config import settings

logger = logging.getLogger(__name__)

_USE_TLS = bool(settings.valkey_auth_token)


def _valkey_url() -> str:
    if not _USE_TLS:
        return f"redis://{settings.valkey_host}:{settings.valkey_port}/{settings.valkey_db}"
    return (
        f"rediss://:{settings.valkey_auth_token}@{settings.valkey_host}:"
        f"{settings.valkey_port}/{settings.valkey_db}?ssl_cert_reqs=CERT_REQUIRED"
    )


def _reset_db_globals() -> None:
    import prompt_telemetry.db.session as session_module

    session_module._engine = None
    session_module._AsyncSessionLocal = None


@signals.worker_process_init.connect
def init_worker_process(**kwargs):
    """Forked workers must not reuse the parent's engine or event loop."""
    logger.info("Worker process started, resetting database engine")
    _reset_db_globals()


@signals.worker_process_shutdown.connect
def shutdown_worker_process(**kwargs):
    from prompt_telemetry.db.session import dispose_engine

    try:
        asyncio.run(dispose_engine())
    except Exception as e:
        logger.error(f"Error disposing database engine during shutdown: {e}")


celery_app = Celery(
    "prompt_telemetry",
    broker=settings.celery_broker_url or _valkey_url(),
    backend=settings.celery_result_backend or _valkey_url(),
)

celery_app.conf.update(
    task_serializer=settings.celery_task_serializer,
    result_serializer=settings.celery_result_serializer,
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={"execution_logs.*": {"queue": settings.execution_log_queue}},
)

if _USE_TLS:
    celery_app.conf.broker_use_ssl = {"ssl_cert_reqs": ssl.CERT_REQUIRED}
    celery_app.conf.redis_backend_use_ssl = {"ssl_cert_reqs": ssl.CERT_REQUIRED}

celery_app.autodiscover_tasks(["prompt_telemetry.tasks"])


def get_celery_app() -> Celery:
    return celery_app
