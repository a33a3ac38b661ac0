"""Client for the OpenAI API or any OpenAI-compatible third-party base URL."""

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from typing import Any
from urllib.parse import urlparse

import httpx

from llmrouter.errors import ValidationError
from llmrouter.models import FileContext, ProviderConfiguration
from llmrouter.providers.base import build_system_prompt
from llmrouter.providers.chat_completions import ChatCompletionsClient, chat_body

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o"
DEFAULT_TIMEOUT = 30.0
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096

# Prefixes of chat-capable models in the /models listing.
CHAT_MODEL_PREFIXES: tuple[str, ...] = ("gpt-", "o1-", "o3-", "o4-", "chatgpt-")


def _validated_base_url(base_url: str) -> str:
    parsed = urlparse(base_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError(
            f"base_url must be an http(s) URL, got '{base_url}'",
            field="base_url",
            provider="openai",
        )
    return base_url.rstrip("/")


class OpenAIProvider:
    """Talks to ``POST {base_url}/chat/completions`` with a bearer API key.

    Raises:
        ValidationError: At construction, if the API key is missing or the
            base URL is not an http(s) URL.
    """

    provider_type = "openai"
    supports_web_search = False

    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        api_key = config.resolve_api_key()
        if not api_key:
            raise ValidationError(
                "An API key is required for the OpenAI provider",
                field="api_key",
                provider=self.provider_type,
            )
        self._api_key = api_key
        self.base_url = _validated_base_url(config.base_url or DEFAULT_BASE_URL)
        self._model = config.model or DEFAULT_MODEL
        self._temperature = config.option("temperature", DEFAULT_TEMPERATURE)
        self._max_tokens = config.option("max_tokens", DEFAULT_MAX_TOKENS)
        self._chat = ChatCompletionsClient(
            self.provider_type,
            timeout=config.timeout or DEFAULT_TIMEOUT,
            headers=self._auth_headers,
            http_client=http_client,
        )

    async def _auth_headers(self) -> Mapping[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def set_model(self, model: str) -> None:
        self._model = model

    def get_model(self) -> str:
        return self._model

    def _body(
        self,
        prompt: str,
        context: Sequence[FileContext],
        system_instruction: str | None,
        *,
        stream: bool,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> dict[str, Any]:
        return chat_body(
            self._model,
            build_system_prompt(system_instruction, context),
            prompt,
            stream=stream,
            temperature=self._temperature if temperature is None else temperature,
            max_tokens=max_tokens or self._max_tokens,
        )

    async def generate_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        return await self._chat.complete(
            f"{self.base_url}/chat/completions",
            self._body(
                prompt,
                context,
                system_instruction,
                stream=False,
                temperature=temperature,
                max_tokens=max_output_tokens,
            ),
            base_url=self.base_url,
            cancel=cancel,
        )

    def stream_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        return self._chat.stream(
            f"{self.base_url}/chat/completions",
            self._body(
                prompt,
                context,
                system_instruction,
                stream=True,
                temperature=temperature,
                max_tokens=max_output_tokens,
            ),
            base_url=self.base_url,
            cancel=cancel,
        )

    async def list_models(self) -> list[str]:
        """Chat-capable model ids from ``GET /models``, sorted."""
        data = await self._chat.get_json(f"{self.base_url}/models", base_url=self.base_url)
        entries = data.get("data") if isinstance(data, dict) else None
        return sorted(
            entry["id"]
            for entry in entries or []
            if isinstance(entry, dict)
            and isinstance(entry.get("id"), str)
            and entry["id"].startswith(CHAT_MODEL_PREFIXES)
        )

    async def has_model(self, name: str) -> bool:
        return name in await self.list_models()

    async def aclose(self) -> None:
        await self._chat.aclose()
