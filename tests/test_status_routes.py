"""
Tests for Status API Routes.

Tests health check endpoints and dependency status checks.
"""

from contextlib import asynccontextmanager
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.api import status_routes
from app.api.status_routes import (
    ProviderStatus,
    StatusLevel,
    calculate_overall_status,
    check_notification_gateway,
    check_postgresql,
)


def provider(level: StatusLevel) -> ProviderStatus:
    return ProviderStatus(status=level, latency_ms=10, last_check=datetime.now(UTC).isoformat())


def mock_http_client(**methods) -> AsyncMock:
    client = AsyncMock()
    for name, mock in methods.items():
        setattr(client, name, mock)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


class TestCalculateOverallStatus:
    """Tests for calculate_overall_status function."""

    def test_all_operational(self):
        providers = {"postgresql": provider(StatusLevel.OPERATIONAL)}
        assert calculate_overall_status(providers) == StatusLevel.OPERATIONAL

    def test_one_degraded(self):
        providers = {
            "postgresql": provider(StatusLevel.OPERATIONAL),
            "notification_gateway": provider(StatusLevel.DEGRADED),
        }
        assert calculate_overall_status(providers) == StatusLevel.DEGRADED

    def test_outage_takes_priority_over_degraded(self):
        providers = {
            "postgresql": provider(StatusLevel.OUTAGE),
            "notification_gateway": provider(StatusLevel.DEGRADED),
        }
        assert calculate_overall_status(providers) == StatusLevel.OUTAGE


class TestCheckPostgresql:
    """Tests for check_postgresql function."""

    @pytest.mark.asyncio
    async def test_postgresql_operational(self):
        """PostgreSQL check returns operational on success."""
        mock_db = AsyncMock()

        @asynccontextmanager
        async def mock_get_session():
            yield mock_db

        with patch("app.api.status_routes.get_session", mock_get_session):
            result = await check_postgresql()

        assert result.status == StatusLevel.OPERATIONAL
        assert result.latency_ms is not None
        mock_db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_postgresql_outage_on_error(self):
        """PostgreSQL check returns outage on connection error."""

        @asynccontextmanager
        async def mock_get_session():
            raise ConnectionError("Cannot connect")
            yield  # noqa: unreachable

        with patch("app.api.status_routes.get_session", mock_get_session):
            result = await check_postgresql()

        assert result.status == StatusLevel.OUTAGE
        assert result.message == "Connection failed"


class TestCheckNotificationGateway:
    """Tests for check_notification_gateway function."""

    @pytest.mark.asyncio
    async def test_not_configured(self):
        with patch("app.api.status_routes.settings") as mock_settings:
            mock_settings.notification_webhook_url = ""
            result = await check_notification_gateway()

        assert result.status == StatusLevel.OPERATIONAL
        assert result.message == "Not configured"

    @pytest.mark.asyncio
    async def test_reachable(self):
        response = MagicMock(status_code=405)
        with patch("app.api.status_routes.settings") as mock_settings:
            mock_settings.notification_webhook_url = "https://notify.internal/hook"
            with patch("httpx.AsyncClient") as MockClient:
                MockClient.return_value = mock_http_client(head=AsyncMock(return_value=response))
                result = await check_notification_gateway()

        assert result.status == StatusLevel.OPERATIONAL

    @pytest.mark.asyncio
    async def test_server_error_is_degraded(self):
        response = MagicMock(status_code=502)
        with patch("app.api.status_routes.settings") as mock_settings:
            mock_settings.notification_webhook_url = "https://notify.internal/hook"
            with patch("httpx.AsyncClient") as MockClient:
                MockClient.return_value = mock_http_client(head=AsyncMock(return_value=response))
                result = await check_notification_gateway()

        assert result.status == StatusLevel.DEGRADED
        assert "Unexpected status" in result.message

    @pytest.mark.asyncio
    async def test_timeout(self):
        with patch("app.api.status_routes.settings") as mock_settings:
            mock_settings.notification_webhook_url = "https://notify.internal/hook"
            with patch("httpx.AsyncClient") as MockClient:
                MockClient.return_value = mock_http_client(
                    head=AsyncMock(side_effect=httpx.TimeoutException("Timeout"))
                )
                result = await check_notification_gateway()

        assert result.status == StatusLevel.OUTAGE
        assert result.message == "Timeout"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        with patch("app.api.status_routes.settings") as mock_settings:
            mock_settings.notification_webhook_url = "https://notify.internal/hook"
            with patch("httpx.AsyncClient") as MockClient:
                MockClient.return_value = mock_http_client(
                    head=AsyncMock(side_effect=httpx.ConnectError("refused"))
                )
                result = await check_notification_gateway()

        assert result.status == StatusLevel.OUTAGE


class TestHealthEndpoint:
    """Tests for GET /health."""

    def test_healthy(self, client: TestClient):
        with patch(
            "app.api.status_routes.check_postgresql",
            AsyncMock(return_value=provider(StatusLevel.OPERATIONAL)),
        ):
            response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"

    def test_database_down(self, client: TestClient):
        with patch(
            "app.api.status_routes.check_postgresql",
            AsyncMock(return_value=provider(StatusLevel.OUTAGE)),
        ):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["database"] == "disconnected"


class TestStatusEndpoint:
    """Tests for GET /v1/status."""

    def test_status_is_cached(self, client: TestClient):
        status_routes._status_cache.clear()
        db_check = AsyncMock(return_value=provider(StatusLevel.OPERATIONAL))
        gateway_check = AsyncMock(return_value=provider(StatusLevel.OPERATIONAL))

        with (
            patch("app.api.status_routes.check_postgresql", db_check),
            patch("app.api.status_routes.check_notification_gateway", gateway_check),
        ):
            first = client.get("/v1/status")
            second = client.get("/v1/status")

        assert first.status_code == 200
        assert first.json()["status"] == "operational"
        assert set(first.json()["providers"]) == {"postgresql", "notification_gateway"}
        assert second.json() == first.json()
        db_check.assert_awaited_once()
        status_routes._status_cache.clear()
