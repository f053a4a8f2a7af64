"""
Router assembly for the read-side telemetry endpoints.
"""

from fastapi import APIRouter

from prompt_telemetry.api.v1.endpoints import logs, traces

api_router = APIRouter()
api_router.include_router(
    traces.router, prefix="/projects/{project_id}/traces", tags=["traces"]
)
api_router.include_router(
    logs.router, prefix="/projects/{project_id}/logs", tags=["logs"]
)
