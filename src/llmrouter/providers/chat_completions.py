"""OpenAI chat-completions protocol client shared by the compatible providers.

Ollama, OpenAI and Google Cloud all speak this protocol and differ only in
URL, authentication and defaults.  Each of them owns a
:class:`ChatCompletionsClient` and delegates the wire work to it.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any

import httpx

from llmrouter.converters import openai as openai_format
from llmrouter.errors import ConnectionError, ProviderError
from llmrouter.providers.base import instrumented_call
from llmrouter.providers.classify import (
    classify_exception,
    classify_response,
    classify_stream_error,
)
from llmrouter.providers.streaming import await_cancellable, cancellable, iter_sse_json

HeadersFactory = Callable[[], Awaitable[Mapping[str, str]]]


async def no_auth() -> Mapping[str, str]:
    return {}


def chat_body(
    model: str,
    system_prompt: str | None,
    prompt: str,
    *,
    stream: bool,
    temperature: float,
    max_tokens: int,
    **extra: Any,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "model": model,
        "messages": openai_format.build_messages(system_prompt, prompt),
        "stream": stream,
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    body.update(extra)
    return body


class ChatCompletionsClient:
    """Send chat-completions requests and classify every failure.

    Args:
        provider_type: Identity attached to logs, spans and errors.
        timeout: Per-request timeout in seconds.
        headers: Async callable returning the request headers.  Called once
            per request so short-lived tokens stay fresh.
        http_client: Shared ``httpx.AsyncClient``.  When omitted the client
            creates and owns one.
    """

    def __init__(
        self,
        provider_type: str,
        *,
        timeout: float,
        headers: HeadersFactory = no_auth,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.provider_type = provider_type
        self.timeout = timeout
        self._headers = headers
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def complete(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        base_url: str,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """POST a non-streaming request and return the assistant text.

        Returns ``""`` when *cancel* fires before the response arrives.
        """
        model = str(body.get("model", ""))
        with instrumented_call(
            self.provider_type, model, stream=False, temperature=body.get("temperature")
        ):
            text = await await_cancellable(self._post(url, body, model, base_url), cancel)
            return text or ""

    async def stream(
        self,
        url: str,
        body: Mapping[str, Any],
        *,
        base_url: str,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]:
        """POST a streaming request and yield each non-empty text delta."""
        model = str(body.get("model", ""))
        with instrumented_call(
            self.provider_type, model, stream=True, temperature=body.get("temperature")
        ):
            if cancel is not None and cancel.is_set():
                return
            try:
                async with self._client.stream(
                    "POST",
                    url,
                    json=dict(body),
                    headers=dict(await self._headers()),
                    timeout=self.timeout,
                ) as response:
                    if response.is_error:
                        await response.aread()
                        raise classify_response(
                            response, provider=self.provider_type, model=model, base_url=base_url
                        )
                    deltas = self._deltas(response, model, base_url)
                    async for delta in cancellable(deltas, cancel):
                        yield delta
            except ProviderError:
                raise
            except Exception as exc:
                raise classify_exception(
                    exc, provider=self.provider_type, model=model, base_url=base_url
                ) from exc

    async def get_json(self, url: str, *, base_url: str) -> Any:
        """GET *url* and decode the JSON body (model listings)."""
        try:
            response = await self._client.get(
                url, headers=dict(await self._headers()), timeout=self.timeout
            )
            if response.is_error:
                raise classify_response(response, provider=self.provider_type, base_url=base_url)
            return response.json()
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(exc, provider=self.provider_type, base_url=base_url) from exc

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _post(self, url: str, body: Mapping[str, Any], model: str, base_url: str) -> str:
        try:
            response = await self._client.post(
                url,
                json=dict(body),
                headers=dict(await self._headers()),
                timeout=self.timeout,
            )
            if response.is_error:
                raise classify_response(
                    response, provider=self.provider_type, model=model, base_url=base_url
                )
            data = response.json()
            if not isinstance(data, dict) or not data.get("choices"):
                raise ConnectionError(
                    message=f"Malformed response from {self.provider_type}: no choices returned",
                    provider=self.provider_type,
                    status_code=response.status_code,
                    base_url=base_url,
                    model=model,
                )
            return openai_format.extract_text(data)
        except ProviderError:
            raise
        except Exception as exc:
            raise classify_exception(
                exc, provider=self.provider_type, model=model, base_url=base_url
            ) from exc

    async def _deltas(
        self, response: httpx.Response, model: str, base_url: str
    ) -> AsyncIterator[str]:
        async for unit in iter_sse_json(response.aiter_bytes()):
            if isinstance(unit, dict) and "error" in unit:
                raise classify_stream_error(
                    unit, provider=self.provider_type, model=model, base_url=base_url
                )
            text = openai_format.extract_delta_text(unit)
            if text:
                yield text
