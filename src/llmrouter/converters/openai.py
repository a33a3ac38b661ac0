"""Conversion between the canonical shape and the OpenAI chat-completions shape.

Used for every OpenAI-compatible backend: Ollama's ``/v1`` endpoint, the
OpenAI API itself and Google Cloud's ``endpoints/openapi`` surface.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from llmrouter.converters.common import (
    conversation,
    fold,
    strip_provider_prefix,
    system_text,
)
from llmrouter.models import CanonicalRequest, CanonicalResponse, FileContext, Usage

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 4096

ROLE_MAP: dict[str, str] = {
    "system": "system",
    "user": "user",
    "model": "assistant",
}


def build_messages(system_prompt: str | None, prompt: str) -> list[dict[str, str]]:
    """Messages for a single-prompt call: optional system message, then the user turn."""
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def to_provider_format(
    request: CanonicalRequest,
    context: Iterable[FileContext] = (),
) -> dict[str, Any]:
    """Build a chat-completions request body from a canonical request."""
    messages: list[dict[str, str]] = []
    system_prompt = system_text(request, context)
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    for message in conversation(request):
        messages.append({"role": ROLE_MAP[message.role], "content": message.text})

    return {
        "model": strip_provider_prefix(request.model),
        "messages": messages,
        "temperature": (
            request.temperature if request.temperature is not None else DEFAULT_TEMPERATURE
        ),
        "max_tokens": request.max_output_tokens or DEFAULT_MAX_TOKENS,
        "stream": False,
    }


# ---------------------------------------------------------------------------
# Response extraction
# ---------------------------------------------------------------------------


def _first_choice(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        return {}
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], Mapping):
        return {}
    return choices[0]


def extract_text(data: Any) -> str:
    """``choices[0].message.content`` of a complete response, or ``""``."""
    message = _first_choice(data).get("message")
    if not isinstance(message, Mapping):
        return ""
    return message.get("content") or ""


def extract_delta_text(chunk: Any) -> str:
    """``choices[0].delta.content`` of a stream unit, or ``""``."""
    delta = _first_choice(chunk).get("delta")
    if not isinstance(delta, Mapping):
        return ""
    return delta.get("content") or ""


def extract_finish_reason(data: Any) -> str | None:
    return _first_choice(data).get("finish_reason")


def extract_usage(data: Any) -> Usage | None:
    usage = data.get("usage") if isinstance(data, Mapping) else None
    if not isinstance(usage, Mapping):
        return None
    return Usage(
        prompt_tokens=usage.get("prompt_tokens") or 0,
        completion_tokens=usage.get("completion_tokens") or 0,
        total_tokens=usage.get("total_tokens") or 0,
    )


def to_canonical_format(response: Mapping[str, Any] | str) -> CanonicalResponse:
    """Convert a complete response; a plain string is taken as already collapsed."""
    if isinstance(response, str):
        return CanonicalResponse.from_text(response)
    return CanonicalResponse.from_text(
        extract_text(response),
        usage=extract_usage(response),
        finish_reason=extract_finish_reason(response),
    )


def fold_stream_chunk(
    chunk: Mapping[str, Any],
    accumulated: CanonicalResponse | None = None,
) -> CanonicalResponse:
    """Add one stream unit's delta to the response accumulated so far."""
    return fold(
        accumulated,
        extract_delta_text(chunk),
        usage=extract_usage(chunk),
        finish_reason=extract_finish_reason(chunk),
    )
