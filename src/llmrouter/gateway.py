"""Canonical generate/stream entry point on top of the router.

Callers hand over a :class:`~llmrouter.models.CanonicalRequest`; the gateway
picks the provider from the model id, flattens the history into the
prompt/system-instruction pair every client accepts, and returns canonical
responses.  Streams yield the response accumulated so far after every text
increment.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

import structlog

from llmrouter.converters.common import fold
from llmrouter.errors import ValidationError
from llmrouter.models import CanonicalRequest, CanonicalResponse, FileContext
from llmrouter.providers.base import ModelProvider
from llmrouter.router import ProviderRouter

_log = structlog.get_logger(__name__)

_TRANSCRIPT_LABELS = {"user": "User", "model": "Model"}


def flatten_messages(request: CanonicalRequest) -> tuple[str, str | None]:
    """Collapse the history into ``(prompt, system_instruction)``.

    A single user turn is sent as-is; longer histories are rendered as a
    ``User:`` / ``Model:`` transcript.

    Raises:
        ValidationError: If the request holds only system messages.
    """
    system = [m.text for m in request.messages if m.role == "system"]
    turns = [m for m in request.messages if m.role != "system"]
    if not turns:
        raise ValidationError(
            "messages must contain at least one user or model turn", field="messages"
        )

    if len(turns) == 1 and turns[0].role == "user":
        prompt = turns[0].text
    else:
        prompt = "\n\n".join(f"{_TRANSCRIPT_LABELS[m.role]}: {m.text}" for m in turns)

    return prompt, ("\n\n".join(system) if system else None)


class ModelGateway:
    """Serve canonical requests through whichever provider the model id names.

    Args:
        router: Resolves model ids to clients.
        web_search_allow_all_providers: Let web-search requests through to
            providers that cannot search (they answer ungrounded).
    """

    def __init__(
        self,
        router: ProviderRouter,
        *,
        web_search_allow_all_providers: bool = False,
    ) -> None:
        self.router = router
        self.web_search_allow_all_providers = web_search_allow_all_providers

    def _prepare(
        self,
        request: CanonicalRequest,
        web_search: bool,
        cancel: asyncio.Event | None,
    ) -> tuple[ModelProvider, str, dict[str, Any]]:
        name = self.router.parse_model_id(request.model).provider
        provider = self.router.get_provider_for_model(request.model)
        prompt, system_instruction = flatten_messages(request)

        kwargs: dict[str, Any] = {"system_instruction": system_instruction, "cancel": cancel}
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            kwargs["max_output_tokens"] = request.max_output_tokens
        if web_search and self.router.require_web_search(
            name, self.web_search_allow_all_providers
        ):
            kwargs["web_search"] = True
        return provider, prompt, kwargs

    async def generate(
        self,
        request: CanonicalRequest,
        context: Sequence[FileContext] = (),
        *,
        web_search: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> CanonicalResponse:
        """Return the complete response for *request*.

        Raises:
            ProviderError: Any classified error from routing or the provider.
        """
        provider, prompt, kwargs = self._prepare(request, web_search, cancel)
        text = await provider.generate_response(prompt, list(context), **kwargs)
        return CanonicalResponse.from_text(text)

    async def stream(
        self,
        request: CanonicalRequest,
        context: Sequence[FileContext] = (),
        *,
        web_search: bool = False,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[CanonicalResponse]:
        """Yield the accumulated response after each text increment."""
        provider, prompt, kwargs = self._prepare(request, web_search, cancel)
        accumulated: CanonicalResponse | None = None
        async for delta in provider.stream_response(prompt, list(context), **kwargs):
            accumulated = fold(accumulated, delta)
            yield accumulated
        _log.debug(
            "gateway_stream_complete",
            model=request.model,
            characters=len(accumulated.text) if accumulated else 0,
        )
