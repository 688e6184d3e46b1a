from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backupgui.api.routes.backups import router as backups_router
from backupgui.api.routes.health import router as health_router
from backupgui.api.routes.jobs import router as jobs_router
from backupgui.artifacts.service import ArtifactStore
from backupgui.core.config import get_settings
from backupgui.core.logging import configure_logging
from backupgui.jobs.registry import JobRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    configure_logging(settings.log_level)
    logger.info(
        "Starting %s in %s mode (backups root %s)",
        settings.app_name,
        settings.execution_mode.value,
        settings.backups_root.as_posix(),
    )
    yield
    registry: JobRegistry = app.state.job_registry
    if len(registry):
        logger.info("Shutting down with %d running job(s); processes are left running", len(registry))
    await registry.shutdown()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.settings = settings
    app.state.job_registry = JobRegistry(stream_chunk_bytes=settings.stream_read_chunk_bytes)
    app.state.artifact_store = ArtifactStore(settings)

    app.include_router(health_router, prefix="/api/v1")
    app.include_router(jobs_router, prefix="/api/v1")
    app.include_router(backups_router, prefix="/api/v1")
    return app
