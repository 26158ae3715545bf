"""Liveness and dependency health endpoints."""

import os
from pathlib import Path

from fastapi import APIRouter, status

from app.config import settings
from app.core.redis_client import check_redis_connection
from app.database import check_database_connection
from app.schemas.common import CamelModel

router = APIRouter()

HEALTHY = "healthy"
UNHEALTHY = "unhealthy"
DEGRADED = "degraded"


class HealthResponse(CamelModel):
    """Identity of the running service."""

    status: str
    service: str
    version: str
    environment: str


class DetailedHealthResponse(HealthResponse):
    """Service identity plus the state of each backing store."""

    database: str
    redis: str
    upload_storage: str


def upload_storage_writable() -> bool:
    """Kiosk images and spreadsheets can be written under ``UPLOAD_DIR``."""
    upload_dir = Path(settings.upload_dir)
    return upload_dir.is_dir() and os.access(upload_dir, os.W_OK)


def _label(ok: bool) -> str:
    return HEALTHY if ok else UNHEALTHY


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health_check() -> HealthResponse:
    """Report that the process is serving requests."""
    return HealthResponse(
        status=HEALTHY,
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )


@router.get(
    "/health/detailed",
    response_model=DetailedHealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
)
async def detailed_health_check() -> DetailedHealthResponse:
    """
    Check the database, the one-time code store and upload storage.

    Returns:
        ``healthy`` when every dependency is reachable, ``degraded`` otherwise
    """
    checks = {
        "database": await check_database_connection(),
        "redis": await check_redis_connection(),
        "upload_storage": upload_storage_writable(),
    }

    return DetailedHealthResponse(
        status=HEALTHY if all(checks.values()) else DEGRADED,
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        **{name: _label(ok) for name, ok in checks.items()},
    )


@router.get("/ping", status_code=status.HTTP_200_OK, summary="Simple ping")
async def ping() -> dict[str, str]:
    """Liveness check."""
    return {"message": "pong"}
