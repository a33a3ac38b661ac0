"""Tests for ProviderRegistry."""

from __future__ import annotations

import pytest

from llmrouter.errors import ValidationError
from llmrouter.models import ProviderConfiguration
from llmrouter.providers import GeminiProvider, OllamaProvider
from llmrouter.registry import ProviderRegistry, register_default_factories

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeProvider:
    provider_type = "fake"
    supports_web_search = False

    def __init__(self, config: ProviderConfiguration) -> None:
        self.config = config
        self.closed = False

    async def generate_response(self, prompt, context, **kwargs) -> str:
        return ""

    async def stream_response(self, prompt, context, **kwargs):
        yield ""

    async def aclose(self) -> None:
        self.closed = True


def _registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register_factory("fake", _FakeProvider)
    return registry


def _config(name: str = "primary", **overrides: object) -> ProviderConfiguration:
    values: dict = {"type": "fake", "name": name}
    values.update(overrides)
    return ProviderConfiguration(**values)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestRegisterProvider:
    def test_enabled_provider_is_built(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config())

        provider = registry.get_provider("primary")
        assert isinstance(provider, _FakeProvider)
        assert provider.config.name == "primary"
        assert registry.has_provider("primary")
        assert registry.is_enabled("primary")

    def test_disabled_provider_is_known_but_not_built(self) -> None:
        built: list[ProviderConfiguration] = []
        registry = ProviderRegistry()
        registry.register_factory("fake", lambda config: built.append(config))

        registry.register_provider("off", _config("off", enabled=False))

        assert built == []
        assert registry.has_provider("off")
        assert not registry.is_enabled("off")
        assert registry.get_provider("off") is None
        assert registry.get_configuration("off") is not None

    def test_unknown_type(self) -> None:
        registry = _registry()
        with pytest.raises(ValidationError) as exc_info:
            registry.register_provider("x", ProviderConfiguration(type="mystery", name="x"))
        assert exc_info.value.field == "type"
        assert not registry.has_provider("x")

    def test_factory_errors_propagate_and_register_nothing(self) -> None:
        registry = register_default_factories(ProviderRegistry())
        with pytest.raises(ValidationError) as exc_info:
            registry.register_provider("gemini", ProviderConfiguration(type="gemini", name="gemini"))
        assert exc_info.value.field == "api_key"
        assert not registry.has_provider("gemini")

    def test_reregistering_replaces(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config(model="a"))
        registry.register_provider("primary", _config(model="b"))

        assert registry.list_providers() == ["primary"]
        assert registry.get_configuration("primary").model == "b"

    def test_reregistering_as_disabled_drops_client(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config())
        registry.register_provider("primary", _config(enabled=False))
        assert registry.get_provider("primary") is None

    def test_several_names_share_a_type(self) -> None:
        registry = _registry()
        registry.register_provider("a", _config("a"))
        registry.register_provider("b", _config("b"))
        assert registry.get_provider("a") is not registry.get_provider("b")
        assert registry.list_providers() == ["a", "b"]


class TestLifecycle:
    def test_unregister(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config())

        removed = registry.unregister_provider("primary")

        assert isinstance(removed, _FakeProvider)
        assert not registry.has_provider("primary")
        assert registry.unregister_provider("primary") is None

    def test_clear(self) -> None:
        registry = _registry()
        registry.register_provider("a", _config("a"))
        registry.register_provider("b", _config("b", enabled=False))
        registry.clear()
        assert registry.list_providers() == []
        assert registry.has_factory("fake")

    async def test_aclose_closes_clients(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config())
        provider = registry.get_provider("primary")

        await registry.aclose()

        assert provider.closed

    async def test_aclose_closes_replaced_clients(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config(model="a"))
        old = registry.get_provider("primary")
        registry.register_provider("primary", _config(model="b"))
        new = registry.get_provider("primary")

        assert not old.closed
        await registry.aclose()

        assert old.closed
        assert new.closed

    async def test_close_retired_leaves_registered_clients_open(self) -> None:
        registry = _registry()
        registry.register_provider("primary", _config())
        old = registry.get_provider("primary")
        registry.register_provider("primary", _config(enabled=False))
        registry.register_provider("other", _config("other"))
        other = registry.get_provider("other")

        await registry.close_retired()

        assert old.closed
        assert not other.closed

    async def test_unregistered_and_cleared_clients_are_closed(self) -> None:
        registry = _registry()
        registry.register_provider("a", _config("a"))
        registry.register_provider("b", _config("b"))
        a, b = registry.get_provider("a"), registry.get_provider("b")
        registry.unregister_provider("a")
        registry.clear()

        await registry.aclose()

        assert a.closed
        assert b.closed

    async def test_client_shared_by_two_names_stays_open_while_registered(self) -> None:
        shared = _FakeProvider(_config())
        registry = ProviderRegistry()
        registry.register_factory("fake", lambda config: shared)
        registry.register_provider("a", _config("a"))
        registry.register_provider("b", _config("b"))
        registry.unregister_provider("a")

        await registry.close_retired()

        assert not shared.closed

    async def test_replaced_real_client_releases_its_http_client(self) -> None:
        registry = register_default_factories(ProviderRegistry())
        registry.register_provider("local", ProviderConfiguration(type="ollama", name="local"))
        old = registry.get_provider("local")
        registry.register_provider(
            "local",
            ProviderConfiguration(type="ollama", name="local", base_url="http://gpu:11434"),
        )

        await registry.aclose()

        assert old._chat._client.is_closed
        assert registry.get_provider("local")._chat._client.is_closed


class TestDefaultFactories:
    def test_built_in_types(self) -> None:
        registry = register_default_factories(ProviderRegistry())
        for type_name in ("ollama", "openai", "gemini", "google_cloud"):
            assert registry.has_factory(type_name)

    def test_builds_real_clients(self) -> None:
        registry = register_default_factories(ProviderRegistry())
        registry.register_provider("local", ProviderConfiguration(type="ollama", name="local"))
        registry.register_provider(
            "gemini", ProviderConfiguration(type="gemini", name="gemini", api_key="k")
        )
        assert isinstance(registry.get_provider("local"), OllamaProvider)
        assert isinstance(registry.get_provider("gemini"), GeminiProvider)
