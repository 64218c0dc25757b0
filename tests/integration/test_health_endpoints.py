"""Integration tests for health endpoints."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from riskgate.config import settings
from riskgate.main import app

pytestmark = pytest.mark.integration


class TestHealthEndpoints:
    @pytest.mark.asyncio
    async def test_health_endpoint(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "healthy"
            assert "version" in data
            assert "uptime_seconds" in data

    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health", headers={"X-Request-ID": "req-123"})
            assert response.headers["X-Request-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_ready_when_database_up(self, monkeypatch):
        monkeypatch.setattr(settings, "storage_backend", "postgres")
        monkeypatch.setattr(settings, "velocity_backend", "postgres")
        with patch("riskgate.db.database.check_db", AsyncMock(return_value=True)):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready", "database": True}

    @pytest.mark.asyncio
    async def test_degraded_when_database_down(self, monkeypatch):
        monkeypatch.setattr(settings, "storage_backend", "postgres")
        monkeypatch.setattr(settings, "velocity_backend", "memory")
        with patch("riskgate.db.database.check_db", AsyncMock(return_value=False)):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                response = await client.get("/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_in_memory_deployment_has_no_dependencies(self, monkeypatch):
        monkeypatch.setattr(settings, "storage_backend", "memory")
        monkeypatch.setattr(settings, "velocity_backend", "memory")
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}
