"""Tests for /health endpoints."""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from llmrouter.main import app
from llmrouter.models import ProviderConfiguration
from llmrouter.registry import ProviderRegistry


class _IdleProvider:
    provider_type = "ollama"
    supports_web_search = False

    def __init__(self, config: ProviderConfiguration) -> None:
        self.config = config


def _registry(*configs: ProviderConfiguration) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_factory("ollama", _IdleProvider)
    for config in configs:
        registry.register_provider(config.name, config)
    return registry


@pytest.fixture(autouse=True)
def cleanup_registry():
    yield
    if hasattr(app.state, "registry"):
        del app.state.registry


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# /health
# ---------------------------------------------------------------------------
class TestHealthEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200

    async def test_response_structure(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert "version" in body

    async def test_version_matches_settings(self, client: AsyncClient) -> None:
        from llmrouter.config import settings

        response = await client.get("/health")
        assert response.json()["version"] == settings.app_version


# ---------------------------------------------------------------------------
# /health/live
# ---------------------------------------------------------------------------
class TestLivenessEndpoint:
    async def test_returns_200(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.status_code == 200

    async def test_response_body(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")
        assert response.json()["status"] == "alive"


# ---------------------------------------------------------------------------
# /health/ready
# ---------------------------------------------------------------------------
class TestReadinessEndpoint:
    async def test_enabled_provider_is_ready(self, client: AsyncClient) -> None:
        app.state.registry = _registry(
            ProviderConfiguration(type="ollama", name="local"),
            ProviderConfiguration(type="ollama", name="spare", enabled=False),
        )

        response = await client.get("/health/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ready"
        assert body["checks"] == {"local": "enabled", "spare": "disabled"}

    async def test_only_disabled_providers_returns_503(self, client: AsyncClient) -> None:
        app.state.registry = _registry(
            ProviderConfiguration(type="ollama", name="spare", enabled=False)
        )

        response = await client.get("/health/ready")

        assert response.status_code == 503
        body = response.json()
        assert body["status"] == "unavailable"
        assert "providers" in body["errors"]

    async def test_not_started_returns_503(self, client: AsyncClient) -> None:
        response = await client.get("/health/ready")
        assert response.status_code == 503
        assert response.json()["checks"] == {}
