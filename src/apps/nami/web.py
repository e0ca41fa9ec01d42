"""FastAPI application exposing the live render node statistics."""

from __future__ import annotations

from functools import lru_cache
import os

import structlog
from fastapi import Depends, FastAPI

from apps.nami.config import SETTINGS_PATH_ENV, load_settings
from apps.nami.models import HealthResponse, StatsView, StatusResponse
from apps.nami.service import MonitorService
from apps.nami.version import NAMI_VERSION
from libraries.render_log.errors import RenderLogError

logger = structlog.get_logger(__name__)


@lru_cache
def get_monitor_service() -> MonitorService:
    result = load_settings(os.environ.get(SETTINGS_PATH_ENV))
    for message in result.warnings:
        logger.warning("nami.web.settings_warning", message=message)
    return MonitorService(result.settings)


app = FastAPI(title="Nami Render Node Monitor", version=NAMI_VERSION)


@app.on_event("startup")
async def start_monitor() -> None:
    service = get_monitor_service()
    try:
        await service.start_async()
    except RenderLogError as exc:
        logger.warning("nami.web.start_failed", error=exc.message, code=exc.code)
    service.start_background_tasks()


@app.on_event("shutdown")
async def stop_monitor() -> None:
    service = get_monitor_service()
    await service.stop_background_tasks()


@app.get("/health", response_model=HealthResponse)
def health(service: MonitorService = Depends(get_monitor_service)) -> HealthResponse:
    return HealthResponse(
        status="ok", version=NAMI_VERSION, log_available=service.log_available
    )


@app.get("/api/status", response_model=StatusResponse, response_model_by_alias=True)
def status(service: MonitorService = Depends(get_monitor_service)) -> StatusResponse:
    """Return the current statistics, recent log lines and log availability."""

    payload = service.status()
    return StatusResponse(
        hostname=payload["hostname"],
        log_available=payload["logAvailable"],
        log_path=payload["logPath"],
        last_error=payload["lastError"],
        stats=StatsView.from_entity(payload["stats"]),
        recent_logs=payload["recentLogs"],
        last_update=payload["lastUpdate"],
        diagnostics=payload["diagnostics"],
    )


__all__ = ["app", "get_monitor_service"]
