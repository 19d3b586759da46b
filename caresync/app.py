"""
FastAPI application entry point for the local control API.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from caresync.dependencies import Services, build_services
from caresync.routes import router


def create_app(services: Optional[Services] = None, *, start_timers: bool = True) -> FastAPI:
    services = services or build_services()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_timers:
            services.sync.start()
        try:
            yield
        finally:
            services.sync.stop()

    app = FastAPI(title="Caresync Local API", version=services.settings.app_version, lifespan=lifespan)
    app.state.services = services
    app.include_router(router, prefix=services.settings.api_prefix)
    return app
