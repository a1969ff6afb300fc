from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from mediaoffload.api.routes.health import router as health_router
from mediaoffload.api.routes.maintenance import router as maintenance_router
from mediaoffload.api.routes.media import router as media_router
from mediaoffload.api.routes.offload import router as offload_router
from mediaoffload.core.config import get_settings
from mediaoffload.core.logging import configure_logging
from mediaoffload.db.init_db import initialize_database


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    yield


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(offload_router, prefix="/api/v1")
    app.include_router(media_router, prefix="/api/v1")
    app.include_router(maintenance_router, prefix="/api/v1")
    return app
