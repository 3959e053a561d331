"""FastAPI application with lifespan and router mounting."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from efdloader.api.routes import health, jobs
from efdloader.core.config import AppSettings
from efdloader.core.logging import configure_logging
from efdloader.ingest.scheduler import ChunkScheduler, create_scheduler


def create_app(scheduler: ChunkScheduler | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    A prebuilt scheduler (tests, local runs) skips the settings-driven wiring.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = AppSettings()
        configure_logging(settings.log_level)
        app.state.settings = settings
        app.state.scheduler = scheduler or create_scheduler(settings)
        yield

    app = FastAPI(
        title="EFD Ledger Loader",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.include_router(health.router)
    app.include_router(jobs.router, prefix="/jobs")
    return app
