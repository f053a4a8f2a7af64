"""
prompt_telemetry API entry point: read-side endpoints for traces and logs.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prompt_telemetry.config import settings
from prompt_telemetry.api.v1.router import api_router
from prompt_telemetry.celery_app import get_celery_app
from prompt_telemetry.db.blob_storage import get_blob_store
from logging import getLogger, Filter
import logging

logger = getLogger(__name__)
logger.setLevel(logging.INFO)


class HealthCheckFilter(Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/health") == -1


logging.getLogger("uvicorn.access").addFilter(HealthCheckFilter())


app = FastAPI(title=settings.app_name, debug=settings.debug, redirect_slashes=False)


@app.on_event("startup")
async def startup_event():
    try:
        logger.info("--- Starting prompt_telemetry startup ---")
        app.state.celery_app = get_celery_app()
        app.state.blob_store = get_blob_store()
        logger.info("--- prompt_telemetry startup completed ---")
    except Exception as e:
        logger.error(f"Warning: Failed to setup resources: {e}", exc_info=True)


@app.on_event("shutdown")
async def shutdown_event():
    try:
        logger.info("--- Server shutting down! ---")

        from prompt_telemetry.db.session import dispose_engine

        await dispose_engine()
        logger.info("--- Database connections closed. ---")
    except Exception as e:
        logger.error(f"Warning: Error during shutdown: {e}")


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
