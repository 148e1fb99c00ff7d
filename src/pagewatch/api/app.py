"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from pagewatch.api.routes import router
from pagewatch.monitor import Monitor

logger = logging.getLogger(__name__)


def create_app(monitor: Monitor | None = None, *, start_scheduler: bool = True) -> FastAPI:
    """Build the API around ``monitor`` (loaded from the settings file by default).

    With ``start_scheduler`` the periodic check starts with the application
    and runs once right away; the shared browser is closed on shutdown.
    """

    monitor = monitor or Monitor.from_file()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if start_scheduler:
            monitor.scheduler.start(run_immediately=True)
        try:
            yield
        finally:
            await monitor.aclose()

    app = FastAPI(
        title="Page Watch",
        description="Watch page fragments and announce when they change",
        lifespan=lifespan,
    )
    app.state.monitor = monitor
    app.include_router(router, prefix="/api")
    return app
