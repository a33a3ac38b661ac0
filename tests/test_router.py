"""Tests for model-id parsing and ProviderRouter."""

from __future__ import annotations

import pytest

from llmrouter.errors import ProviderNotFoundError, ValidationError
from llmrouter.models import ModelIdentifier, ProviderConfiguration
from llmrouter.registry import ProviderRegistry
from llmrouter.router import ProviderRouter, parse_model_id

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FakeProvider:
    supports_web_search = False

    def __init__(self, config: ProviderConfiguration) -> None:
        self.provider_type = config.type
        self.model = config.model or "default-model"

    def set_model(self, model: str) -> None:
        self.model = model

    def get_model(self) -> str:
        return self.model

    async def generate_response(self, prompt, context, **kwargs) -> str:
        return ""

    async def stream_response(self, prompt, context, **kwargs):
        yield ""


class _SearchingProvider(_FakeProvider):
    supports_web_search = True


def _router(default_provider: str = "ollama") -> ProviderRouter:
    registry = ProviderRegistry()
    registry.register_factory("ollama", _FakeProvider)
    registry.register_factory("gemini", _SearchingProvider)
    registry.register_provider("ollama", ProviderConfiguration(type="ollama", name="ollama"))
    registry.register_provider("gemini", ProviderConfiguration(type="gemini", name="gemini"))
    registry.register_provider(
        "spare", ProviderConfiguration(type="ollama", name="spare", enabled=False)
    )
    return ProviderRouter(registry, default_provider=default_provider)


# ---------------------------------------------------------------------------
# parse_model_id
# ---------------------------------------------------------------------------


class TestParseModelId:
    @pytest.mark.parametrize(
        ("model_id", "expected"),
        [
            ("ollama:qwen2.5-coder", ("ollama", "qwen2.5-coder")),
            ("ollama:qwen2.5-coder:7b", ("ollama", "qwen2.5-coder:7b")),
            ("gemini:", ("gemini", "")),
            (":gpt-4o", ("", "gpt-4o")),
            ("gpt-4o", ("ollama", "gpt-4o")),
            ("", ("ollama", "")),
            (" openai : gpt-4o ", (" openai ", " gpt-4o ")),
        ],
    )
    def test_first_colon_splits(self, model_id: str, expected: tuple[str, str]) -> None:
        assert parse_model_id(model_id) == ModelIdentifier(*expected)

    def test_custom_default(self) -> None:
        assert parse_model_id("gpt-4o", "openai") == ModelIdentifier("openai", "gpt-4o")

    def test_router_uses_its_default(self) -> None:
        assert _router("gemini").parse_model_id("x").provider == "gemini"


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class TestGetProviderForModel:
    def test_selects_model_on_provider(self) -> None:
        router = _router()
        provider = router.get_provider_for_model("ollama:llama3:8b")
        assert provider.get_model() == "llama3:8b"

    def test_bare_id_goes_to_default(self) -> None:
        router = _router()
        provider = router.get_provider_for_model("codellama")
        assert provider is router.registry.get_provider("ollama")
        assert provider.get_model() == "codellama"

    def test_per_call_default(self) -> None:
        router = _router()
        provider = router.get_provider_for_model("gemini-2.5-pro", default_provider="gemini")
        assert provider is router.registry.get_provider("gemini")

    def test_empty_model_keeps_current(self) -> None:
        router = _router()
        provider = router.get_provider_for_model("ollama:")
        assert provider.get_model() == "default-model"

    def test_unknown_provider(self) -> None:
        with pytest.raises(ProviderNotFoundError) as exc_info:
            _router().get_provider_for_model("anthropic:claude")
        error = exc_info.value
        assert error.name == "anthropic"
        assert set(error.available) == {"ollama", "gemini", "spare"}

    def test_disabled_provider(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _router().get_provider_for_model("spare:x")
        assert not isinstance(exc_info.value, ProviderNotFoundError)
        assert exc_info.value.field == "enabled"


class TestSwitchProvider:
    def test_switch(self) -> None:
        router = _router()
        assert router.get_current_provider() is None
        router.switch_provider("gemini")
        assert router.get_current_provider() == "gemini"

    def test_unknown_leaves_pointer_unchanged(self) -> None:
        router = _router()
        router.switch_provider("ollama")
        with pytest.raises(ProviderNotFoundError):
            router.switch_provider("nowhere")
        assert router.get_current_provider() == "ollama"

    def test_disabled_leaves_pointer_unchanged(self) -> None:
        router = _router()
        router.switch_provider("gemini")
        with pytest.raises(ValidationError):
            router.switch_provider("spare")
        assert router.get_current_provider() == "gemini"


class TestWebSearch:
    def test_supports_web_search(self) -> None:
        router = _router()
        assert router.supports_web_search("gemini")
        assert not router.supports_web_search("ollama")
        assert router.supports_web_search("ollama", allow_all_providers=True)
        assert not router.supports_web_search("nowhere", allow_all_providers=True)

    def test_require_on_capable_provider(self) -> None:
        assert _router().require_web_search("gemini") is True

    def test_require_on_incapable_provider_fails(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            _router().require_web_search("ollama")
        assert exc_info.value.field == "web_search"

    def test_allow_all_providers_proceeds_ungrounded(self) -> None:
        assert _router().require_web_search("ollama", allow_all_providers=True) is False
