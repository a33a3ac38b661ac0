"""Client for a locally hosted Ollama server via its OpenAI-compatible ``/v1`` API."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from llmrouter.models import FileContext, ProviderConfiguration
from llmrouter.providers.base import build_system_prompt
from llmrouter.providers.chat_completions import ChatCompletionsClient, chat_body

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "qwen2.5-coder"
DEFAULT_TIMEOUT = 5.0
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096


class OllamaProvider:
    """Talks to ``POST {base_url}/v1/chat/completions``; no authentication."""

    provider_type = "ollama"
    supports_web_search = False

    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._model = config.model or DEFAULT_MODEL
        self._temperature = config.option("temperature", DEFAULT_TEMPERATURE)
        self._max_tokens = config.option("max_tokens", DEFAULT_MAX_TOKENS)
        self._chat = ChatCompletionsClient(
            self.provider_type,
            timeout=config.timeout or DEFAULT_TIMEOUT,
            http_client=http_client,
        )

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
            f"{self.base_url}/v1/chat/completions",
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
            f"{self.base_url}/v1/chat/completions",
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
        """Names of the locally installed models (``GET /api/tags``)."""
        data = await self._chat.get_json(f"{self.base_url}/api/tags", base_url=self.base_url)
        models = data.get("models") if isinstance(data, dict) else None
        return [m["name"] for m in models or [] if isinstance(m, dict) and "name" in m]

    async def has_model(self, name: str) -> bool:
        return name in await self.list_models()

    async def aclose(self) -> None:
        await self._chat.aclose()
