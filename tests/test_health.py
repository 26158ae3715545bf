"""Tests for health check endpoints."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from app.api.v1.endpoints import health
from app.config import settings


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    """Basic health reports the service identity."""
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }


@pytest.mark.asyncio
async def test_ping(client: AsyncClient):
    """Ping answers pong."""
    response = await client.get("/api/v1/ping")

    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_detailed_health_all_healthy(client: AsyncClient, monkeypatch, tmp_path):
    """Every dependency reachable means healthy."""
    monkeypatch.setattr(health, "check_database_connection", AsyncMock(return_value=True))
    monkeypatch.setattr(health, "check_redis_connection", AsyncMock(return_value=True))
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path))

    response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "healthy"
    assert data["redis"] == "healthy"
    assert data["uploadStorage"] == "healthy"


@pytest.mark.asyncio
async def test_detailed_health_degraded(client: AsyncClient, monkeypatch, tmp_path):
    """A missing dependency degrades the overall status."""
    monkeypatch.setattr(health, "check_database_connection", AsyncMock(return_value=True))
    monkeypatch.setattr(health, "check_redis_connection", AsyncMock(return_value=False))
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "missing"))

    response = await client.get("/api/v1/health/detailed")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["redis"] == "unhealthy"
    assert data["uploadStorage"] == "unhealthy"


@pytest.mark.asyncio
async def test_root(client: AsyncClient):
    """The root endpoint points at the API."""
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["message"].startswith(settings.app_name)
