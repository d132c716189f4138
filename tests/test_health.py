"""Tests for health check endpoints."""

from unittest.mock import AsyncMock, patch

import pytest


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "LabCenter API"


@pytest.mark.asyncio
async def test_ping(client):
    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("database", "redis", "expected"),
    [
        (True, True, "healthy"),
        (True, False, "degraded"),
        (False, True, "unhealthy"),
    ],
)
async def test_detailed_health(client, database, redis, expected):
    with (
        patch(
            "labcenter.api.v1.endpoints.health.check_database_connection",
            new=AsyncMock(return_value=database),
        ),
        patch(
            "labcenter.api.v1.endpoints.health.check_redis_connection",
            new=AsyncMock(return_value=redis),
        ),
    ):
        response = await client.get("/api/v1/health/detailed")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == expected
    assert data["push"] == "disabled"


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"
