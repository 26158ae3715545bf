"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.v1.router import api_router
from app.config import settings
from app.core.exceptions import AppException
from app.core.redis_client import check_redis_connection, close_redis_connection
from app.database import check_database_connection, engine
from app.middleware.error_handler import (
    app_exception_handler,
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from app.middleware.logging import LoggingMiddleware, configure_logging

configure_logging()
logger = structlog.get_logger()

UPLOADS_MOUNT = "/uploads"


async def report_backing_stores() -> None:
    """Log whether the appointment store and the one-time code store answer."""
    if await check_database_connection():
        logger.info("database_connected")
    else:
        logger.error("database_connection_failed", database_url=engine.url.render_as_string())

    if await check_redis_connection():
        logger.info("redis_connected", host=settings.redis_host, port=settings.redis_port)
    else:
        logger.error("redis_connection_failed", host=settings.redis_host, port=settings.redis_port)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Creates the upload folders before serving and releases the database pool and
    the Redis client on shutdown. Unreachable stores are logged, not fatal.
    """
    logger.info("application_startup", environment=settings.environment)

    patient_images = Path(settings.upload_dir) / "patients"
    patient_images.mkdir(parents=True, exist_ok=True)
    logger.info("upload_directory_ready", path=str(patient_images.parent.resolve()))

    await report_backing_stores()

    yield

    logger.info("application_shutdown")
    await engine.dispose()
    close_redis_connection()
    logger.info("connections_closed")


def create_app() -> FastAPI:
    """Build the API application with middleware, routes and metrics."""
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Appointment spreadsheet ingestion, kiosk check-in and patient portal API",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(LoggingMiddleware)

    application.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    application.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    application.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, general_exception_handler)  # type: ignore[arg-type]

    application.include_router(api_router, prefix=settings.api_v1_prefix)

    # Kiosk images are served from the patient folders under UPLOAD_DIR
    application.mount(
        UPLOADS_MOUNT,
        StaticFiles(directory=settings.upload_dir, check_dir=False),
        name="uploads",
    )

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/docs", "/redoc", "/openapi.json", f"{UPLOADS_MOUNT}.*"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    ).instrument(application).expose(application, endpoint="/metrics", include_in_schema=False)

    @application.get("/", tags=["Root"])
    async def root() -> dict[str, str]:
        """Service name, version and where the docs live."""
        return {
            "message": f"{settings.app_name} is running",
            "version": settings.app_version,
            "docs": "/docs",
            "api": settings.api_v1_prefix,
        }

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level.lower(),
    )
