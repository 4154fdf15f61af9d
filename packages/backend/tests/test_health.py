"""Health endpoint tests."""

import pytest


@pytest.mark.asyncio
async def test_health_returns_ok(client):
    """Health endpoint should return server status, version and session count."""
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["server"] == "ok"
    assert data["database"] == "ok"
    assert data["sessions"] == 0
    assert "version" in data


@pytest.mark.asyncio
async def test_health_degraded_when_database_down(client, fake_backend):
    fake_backend.healthy = False
    resp = await client.get("/api/v1/health")
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["database"].startswith("error:")

