"""Tests for ModelGateway and history flattening."""

from __future__ import annotations

import asyncio

import pytest

from llmrouter.errors import ConnectionError, ProviderNotFoundError, ValidationError
from llmrouter.gateway import ModelGateway, flatten_messages
from llmrouter.models import CanonicalMessage, CanonicalRequest, FileContext, ProviderConfiguration
from llmrouter.registry import ProviderRegistry
from llmrouter.router import ProviderRouter

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _ScriptedProvider:
    """Records every call and replays ``deltas`` (or raises ``error``)."""

    supports_web_search = False

    def __init__(self, config: ProviderConfiguration) -> None:
        self.provider_type = config.type
        self.model = config.model or "base"
        self.deltas: list[str] = list(config.option("deltas", ["Hel", "lo"]))
        self.error: Exception | None = config.option("error")
        self.calls: list[dict] = []

    def set_model(self, model: str) -> None:
        self.model = model

    def get_model(self) -> str:
        return self.model

    async def generate_response(self, prompt, context, **kwargs) -> str:
        self.calls.append({"prompt": prompt, "context": context, **kwargs})
        if self.error:
            raise self.error
        return "".join(self.deltas)

    async def stream_response(self, prompt, context, **kwargs):
        self.calls.append({"prompt": prompt, "context": context, **kwargs})
        for delta in self.deltas:
            yield delta
        if self.error:
            raise self.error


class _SearchingProvider(_ScriptedProvider):
    supports_web_search = True


def _gateway(allow_all: bool = False, **options: object) -> ModelGateway:
    registry = ProviderRegistry()
    registry.register_factory("ollama", _ScriptedProvider)
    registry.register_factory("gemini", _SearchingProvider)
    registry.register_provider(
        "ollama", ProviderConfiguration(type="ollama", name="ollama", options=options)
    )
    registry.register_provider(
        "gemini", ProviderConfiguration(type="gemini", name="gemini", options=options)
    )
    return ModelGateway(ProviderRouter(registry), web_search_allow_all_providers=allow_all)


def _provider(gateway: ModelGateway, name: str) -> _ScriptedProvider:
    return gateway.router.registry.get_provider(name)  # type: ignore[return-value]


def _request(*messages: tuple[str, str], model: str = "ollama:qwen2.5-coder", **kwargs) -> CanonicalRequest:
    return CanonicalRequest(
        model=model,
        messages=[CanonicalMessage(role, text) for role, text in messages],
        **kwargs,
    )


# ---------------------------------------------------------------------------
# flatten_messages
# ---------------------------------------------------------------------------


class TestFlattenMessages:
    def test_single_user_turn(self) -> None:
        assert flatten_messages(_request(("user", "Hi"))) == ("Hi", None)

    def test_system_messages_become_instruction(self) -> None:
        prompt, system = flatten_messages(
            _request(("system", "Be terse."), ("system", "Use Go."), ("user", "Hi"))
        )
        assert prompt == "Hi"
        assert system == "Be terse.\n\nUse Go."

    def test_history_becomes_transcript(self) -> None:
        prompt, _ = flatten_messages(
            _request(("user", "Hi"), ("model", "Hello"), ("user", "Fix it"))
        )
        assert prompt == "User: Hi\n\nModel: Hello\n\nUser: Fix it"

    def test_only_system_messages(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            flatten_messages(_request(("system", "Be terse.")))
        assert exc_info.value.field == "messages"


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------


class TestGenerate:
    async def test_routes_and_wraps_text(self) -> None:
        gateway = _gateway()
        context = [FileContext("a.py", "x = 1")]

        response = await gateway.generate(_request(("user", "Hi")), context)

        assert response.text == "Hello"
        assert response.messages[0].role == "model"
        provider = _provider(gateway, "ollama")
        assert provider.model == "qwen2.5-coder"
        call = provider.calls[0]
        assert call["prompt"] == "Hi"
        assert call["context"] == context
        assert call["system_instruction"] is None
        assert "temperature" not in call
        assert "web_search" not in call

    async def test_request_overrides_are_forwarded(self) -> None:
        gateway = _gateway()
        await gateway.generate(_request(("user", "Hi"), temperature=0.2, max_output_tokens=50))
        call = _provider(gateway, "ollama").calls[0]
        assert call["temperature"] == 0.2
        assert call["max_output_tokens"] == 50

    async def test_cancel_event_is_forwarded(self) -> None:
        gateway = _gateway()
        cancel = asyncio.Event()
        await gateway.generate(_request(("user", "Hi")), cancel=cancel)
        assert _provider(gateway, "ollama").calls[0]["cancel"] is cancel

    async def test_unknown_provider(self) -> None:
        with pytest.raises(ProviderNotFoundError):
            await _gateway().generate(_request(("user", "Hi"), model="mistral:large"))

    async def test_provider_errors_propagate(self) -> None:
        gateway = _gateway(error=ConnectionError("down", provider="ollama"))
        with pytest.raises(ConnectionError):
            await gateway.generate(_request(("user", "Hi")))


class TestWebSearch:
    async def test_capable_provider_gets_flag(self) -> None:
        gateway = _gateway()
        await gateway.generate(_request(("user", "news"), model="gemini:gemini-2.5-pro"), web_search=True)
        assert _provider(gateway, "gemini").calls[0]["web_search"] is True

    async def test_incapable_provider_is_rejected(self) -> None:
        gateway = _gateway()
        with pytest.raises(ValidationError) as exc_info:
            await gateway.generate(_request(("user", "news")), web_search=True)
        assert exc_info.value.field == "web_search"
        assert _provider(gateway, "ollama").calls == []

    async def test_allow_all_proceeds_without_flag(self) -> None:
        gateway = _gateway(allow_all=True)
        response = await gateway.generate(_request(("user", "news")), web_search=True)
        assert response.text == "Hello"
        assert "web_search" not in _provider(gateway, "ollama").calls[0]


# ---------------------------------------------------------------------------
# stream
# ---------------------------------------------------------------------------


class TestStream:
    async def test_yields_accumulated_responses(self) -> None:
        gateway = _gateway(deltas=["def ", "main", "():"])
        texts = [r.text async for r in gateway.stream(_request(("user", "Hi")))]
        assert texts == ["def ", "def main", "def main():"]

    async def test_empty_stream(self) -> None:
        gateway = _gateway(deltas=[])
        assert [r async for r in gateway.stream(_request(("user", "Hi")))] == []

    async def test_error_after_partial_output(self) -> None:
        gateway = _gateway(deltas=["a"], error=ConnectionError("dropped", provider="ollama"))
        seen = []
        with pytest.raises(ConnectionError):
            async for response in gateway.stream(_request(("user", "Hi"))):
                seen.append(response.text)
        assert seen == ["a"]

    async def test_routing_error_surfaces_on_first_pull(self) -> None:
        stream = _gateway().stream(_request(("user", "Hi"), model="nowhere:x"))
        with pytest.raises(ProviderNotFoundError):
            await anext(stream)
