"""FastAPI application factory: middleware, routes and the cleanup lifecycle."""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..core.config import Settings
from ..core.factories import ServiceFactory, ToolkitServices
from ..core.logging_config import setup_logger
from ..core.observability import StructuredLogger
from .errors import register_exception_handlers
from .middleware import register_middleware
from .routes import router

logger = StructuredLogger("app")


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[ToolkitServices] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    Args:
        settings: Settings to build services from (ignored when ``services``
            is given)
        services: Pre-wired services, e.g. with in-memory storage for tests

    Returns:
        Configured FastAPI instance
    """
    if services is None:
        services = ServiceFactory.create_services(settings=settings)
    settings = services.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.storage.ensure_directories()
        setup_logger(
            level=settings.LOG_LEVEL,
            format_type=settings.LOG_FORMAT,
            log_dir=services.log_dir(),
        )
        services.scheduler.start()
        logger.info(f"{settings.APP_NAME} started [{settings.ENVIRONMENT}]")
        try:
            yield
        finally:
            await services.scheduler.stop()
            services.shutdown()
            logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Upload, resize and re-encode images; results are streamed back and purged.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.started_at = time.monotonic()

    register_middleware(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        expose_headers=[
            "Content-Disposition",
            "X-Original-Name",
            "X-Original-Size",
            "X-Processed-Size",
            "X-Original-Width",
            "X-Original-Height",
            "X-Processed-Width",
            "X-Processed-Height",
            "X-Compression-Ratio",
            "X-Output-Format",
            "X-Processed-Count",
            "X-Failed-Count",
            "X-Processing-Errors",
            "X-Request-ID",
        ],
    )
    register_exception_handlers(app)

    @app.get("/health", tags=["health"])
    async def health():
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(time.monotonic() - app.state.started_at, 3),
            "environment": settings.ENVIRONMENT,
        }

    app.include_router(router)
    return app
