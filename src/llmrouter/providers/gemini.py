"""Client for Google's Gemini API (``generateContent`` / ``streamGenerateContent``)."""

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from llmrouter.converters import gemini as gemini_format
from llmrouter.errors import ConnectionError, ProviderError, ValidationError
from llmrouter.models import FileContext, ProviderConfiguration
from llmrouter.providers.base import build_system_prompt, instrumented_call
from llmrouter.providers.classify import (
    classify_exception,
    classify_response,
    classify_stream_error,
)
from llmrouter.providers.streaming import (
    await_cancellable,
    cancellable,
    iter_json_lines,
    iter_sse_json,
)

DEFAULT_BASE_URL = "https://aiplatform.googleapis.com/v1"
DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_TIMEOUT = 30.0

KNOWN_MODELS: tuple[str, ...] = (
    "gemini-2.0-flash",
    "gemini-2.5-flash",
    "gemini-2.5-flash-lite",
    "gemini-2.5-pro",
)


class GeminiProvider:
    """Talks to ``{base_url}/publishers/google/models/{model}:<method>?key=...``.

    The only built-in provider that can ground answers with Google Search:
    set ``enable_web_search`` on the configuration, or pass ``web_search``
    per call.

    Raises:
        ValidationError: At construction, if the API key is missing.
    """

    provider_type = "gemini"
    supports_web_search = True

    def __init__(
        self,
        config: ProviderConfiguration,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        api_key = config.resolve_api_key()
        if not api_key:
            raise ValidationError(
                "An API key is required for the Gemini provider",
                field="api_key",
                provider=self.provider_type,
            )
        self._api_key = api_key
        self.base_url = (config.base_url or DEFAULT_BASE_URL).rstrip("/")
        self._model = config.model or DEFAULT_MODEL
        self.timeout = config.timeout or DEFAULT_TIMEOUT
        self.enable_web_search = config.enable_web_search
        self._generation_config = gemini_format.generation_config(
            temperature=config.option("temperature"),
            max_output_tokens=config.option("max_tokens"),
            top_p=config.option("top_p"),
        )
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=self.timeout)

    def set_model(self, model: str) -> None:
        self._model = model

    def get_model(self) -> str:
        return self._model

    def _url(self, method: str) -> str:
        return f"{self.base_url}/publishers/google/models/{self._model}:{method}"

    def _body(
        self,
        prompt: str,
        context: Sequence[FileContext],
        system_instruction: str | None,
        web_search: bool | None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> dict[str, Any]:
        config = dict(self._generation_config)
        if temperature is not None:
            config["temperature"] = temperature
        if max_output_tokens:
            config["maxOutputTokens"] = max_output_tokens
        return gemini_format.build_request_body(
            gemini_format.user_contents(prompt),
            system_prompt=build_system_prompt(system_instruction, context),
            config=config,
            web_search=self.enable_web_search if web_search is None else web_search,
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
        web_search: bool | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> str:
        body = self._body(
            prompt, context, system_instruction, web_search, temperature, max_output_tokens
        )
        model = self._model
        with instrumented_call(
            self.provider_type, model, stream=False, web_search="tools" in body
        ):
            text = await await_cancellable(self._post(body, model), cancel)
            return text or ""

    async def stream_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
        web_search: bool | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        body = self._body(
            prompt, context, system_instruction, web_search, temperature, max_output_tokens
        )
        model = self._model
        with instrumented_call(self.provider_type, model, stream=True, web_search="tools" in body):
            if cancel is not None and cancel.is_set():
                return
            try:
                async with self._client.stream(
                    "POST",
                    self._url("streamGenerateContent"),
                    params={"key": self._api_key, "alt": "sse"},
                    json=body,
                    timeout=self.timeout,
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise classify_response(
                            response, provider=self.provider_type, model=model, base_url=self.base_url
                        )
                    async for delta in cancellable(self._deltas(response, model), cancel):
                        yield delta
            except ProviderError:
                raise
            except Exception as exc:
                raise classify_exception(
                    exc, provider=self.provider_type, model=model, base_url=self.base_url
                ) from exc

    async def _post(self, body: dict[str, Any], model: str) -> str:
        try:
            response = await self._client.post(
                self._url("generateContent"),
                params={"key": self._api_key},
                json=body,
                timeout=self.timeout,
            )
            if response.is_error:
                raise classify_response(
                    response, provider=self.provider_type, model=model, base_url=self.base_url
                )
            data = response.json()
            if isinstance(data, list):
                return gemini_format.to_canonical_format(data).text
            if not isinstance(data, dict):
                raise ConnectionError(
                    message=f"Malformed response from {self.provider_type}: expected an object",
                    provider=self.provider_type,
                    status_code=response.status_code,
                    base_url=self.base_url,
                    model=model,
                )
            if "error" in data:
                raise classify_stream_error(
                    data, provider=self.provider_type, model=model, base_url=self.base_url
                )
            return gemini_format.extract_text(data)
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(
                exc, provider=self.provider_type, model=model, base_url=self.base_url
            ) from exc

    async def _deltas(self, response: httpx.Response, model: str) -> AsyncIterator[str]:
        # alt=sse is requested, but a plain JSON array stream is still understood.
        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            units = iter_sse_json(response.aiter_bytes())
        else:
            units = iter_json_lines(response.aiter_bytes())

        async for unit in units:
            if isinstance(unit, dict) and "error" in unit:
                raise classify_stream_error(
                    unit, provider=self.provider_type, model=model, base_url=self.base_url
                )
            text = gemini_format.extract_text(unit)
            if text:
                yield text
            if gemini_format.is_terminal(unit):
                return

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self) -> list[str]:
        return list(KNOWN_MODELS)

    async def has_model(self, name: str) -> bool:
        return name in KNOWN_MODELS

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
