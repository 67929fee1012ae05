"""Tests for health check endpoints."""

from typing import Any

import pytest
from httpx import AsyncClient

from outreach.services import call_registry


class TestHealthEndpoints:
    """Test the health probes."""

    @pytest.mark.asyncio
    async def test_health(self, test_client: AsyncClient) -> None:
        """Test GET /health."""
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_liveness(self, test_client: AsyncClient) -> None:
        """Test GET /health/live."""
        response = await test_client.get("/health/live")

        assert response.json() == {"status": "alive"}

    @pytest.mark.asyncio
    async def test_database(self, test_client: AsyncClient) -> None:
        """Test GET /health/db."""
        response = await test_client.get("/health/db")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_redis(self, test_client: AsyncClient) -> None:
        """Test GET /health/redis."""
        response = await test_client.get("/health/redis")

        assert response.status_code == 200
        assert response.json()["redis"] == "connected"

    @pytest.mark.asyncio
    async def test_readiness_reports_dialer_and_calls(self, test_client: AsyncClient, test_redis: Any) -> None:
        """Test GET /health/ready includes the dialer circuit and live call count."""
        await call_registry.register_call(1, "caller-1", "CA1")

        response = await test_client.get("/health/ready")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["dialer"]["state"] == "closed"
        assert data["active_calls"] == 1
