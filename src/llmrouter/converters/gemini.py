"""Conversion between the canonical shape and the Gemini ``generateContent`` shape."""

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from llmrouter.converters.common import (
    conversation,
    fold,
    strip_provider_prefix,
    system_text,
)
from llmrouter.models import CanonicalRequest, CanonicalResponse, FileContext, Usage

DEFAULT_TEMPERATURE = 0.4
DEFAULT_MAX_OUTPUT_TOKENS = 65535
DEFAULT_TOP_P = 0.95
# -1 lets the model pick its own thinking budget.
DEFAULT_THINKING_BUDGET = -1

UNSPECIFIED_FINISH_REASON = "FINISH_REASON_UNSPECIFIED"

ROLE_MAP: dict[str, str] = {"user": "user", "model": "model"}

SAFETY_CATEGORIES: tuple[str, ...] = (
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_HARASSMENT",
)


def safety_settings() -> list[dict[str, str]]:
    return [{"category": category, "threshold": "OFF"} for category in SAFETY_CATEGORIES]


def generation_config(
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    top_p: float | None = None,
) -> dict[str, Any]:
    return {
        "temperature": temperature if temperature is not None else DEFAULT_TEMPERATURE,
        "maxOutputTokens": max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
        "topP": top_p if top_p is not None else DEFAULT_TOP_P,
        "thinkingConfig": {"thinkingBudget": DEFAULT_THINKING_BUDGET},
    }


def build_request_body(
    contents: Sequence[Mapping[str, Any]],
    *,
    system_prompt: str | None = None,
    config: Mapping[str, Any] | None = None,
    web_search: bool = False,
) -> dict[str, Any]:
    """Assemble a ``generateContent`` body.

    Args:
        contents: Conversation turns already in Gemini shape.
        system_prompt: Text for ``systemInstruction``; omitted when empty.
        config: ``generationConfig``; defaults from :func:`generation_config`.
        web_search: Attach the ``googleSearch`` tool for grounded answers.
    """
    body: dict[str, Any] = {
        "contents": list(contents),
        "generationConfig": dict(config) if config is not None else generation_config(),
        "safetySettings": safety_settings(),
    }
    if system_prompt:
        body["systemInstruction"] = {"parts": [{"text": system_prompt}]}
    if web_search:
        body["tools"] = [{"googleSearch": {}}]
    return body


def user_contents(prompt: str) -> list[dict[str, Any]]:
    return [{"role": "user", "parts": [{"text": prompt}]}]


def to_provider_format(
    request: CanonicalRequest,
    context: Iterable[FileContext] = (),
    *,
    web_search: bool = False,
) -> dict[str, Any]:
    """Build a ``generateContent`` body (plus the bare model) from a canonical request."""
    contents = [
        {"role": ROLE_MAP[message.role], "parts": [{"text": message.text}]}
        for message in conversation(request)
    ]
    body = build_request_body(
        contents,
        system_prompt=system_text(request, context),
        config=generation_config(request.temperature, request.max_output_tokens),
        web_search=web_search,
    )
    body["model"] = strip_provider_prefix(request.model)
    return body


# ---------------------------------------------------------------------------
# Response extraction
# ---------------------------------------------------------------------------


def _first_candidate(unit: Any) -> Mapping[str, Any]:
    if not isinstance(unit, Mapping):
        return {}
    candidates = unit.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return {}
    candidate = candidates[0]
    return candidate if isinstance(candidate, Mapping) else {}


def extract_text(unit: Any) -> str:
    """Concatenate the non-thought text parts of the first candidate."""
    content = _first_candidate(unit).get("content")
    if not isinstance(content, Mapping):
        return ""
    parts = content.get("parts") or []
    return "".join(
        part.get("text") or ""
        for part in parts
        if isinstance(part, Mapping) and not part.get("thought")
    )


# Stream units carry deltas, so the delta is the unit's own text.
extract_delta_text = extract_text


def extract_finish_reason(unit: Any) -> str | None:
    return _first_candidate(unit).get("finishReason")


def is_terminal(unit: Any) -> bool:
    """A unit ends the stream when it carries any real ``finishReason``."""
    reason = extract_finish_reason(unit)
    return bool(reason) and reason != UNSPECIFIED_FINISH_REASON


def extract_usage(unit: Any) -> Usage | None:
    metadata = unit.get("usageMetadata") if isinstance(unit, Mapping) else None
    if not isinstance(metadata, Mapping):
        return None
    return Usage(
        prompt_tokens=metadata.get("promptTokenCount") or 0,
        completion_tokens=metadata.get("candidatesTokenCount") or 0,
        total_tokens=metadata.get("totalTokenCount") or 0,
    )


def to_canonical_format(
    response: Mapping[str, Any] | Sequence[Mapping[str, Any]] | str,
) -> CanonicalResponse:
    """Convert a complete response.

    Accepts a single ``generateContent`` object, the array returned by a
    non-SSE ``streamGenerateContent`` call, or a plain string.
    """
    if isinstance(response, str):
        return CanonicalResponse.from_text(response)
    if isinstance(response, Mapping):
        return CanonicalResponse.from_text(
            extract_text(response),
            usage=extract_usage(response),
            finish_reason=extract_finish_reason(response),
        )
    accumulated = CanonicalResponse.from_text("")
    for unit in response:
        accumulated = fold_stream_chunk(unit, accumulated)
    return accumulated


def fold_stream_chunk(
    chunk: Mapping[str, Any],
    accumulated: CanonicalResponse | None = None,
) -> CanonicalResponse:
    """Add one stream unit's text to the response accumulated so far."""
    return fold(
        accumulated,
        extract_text(chunk),
        usage=extract_usage(chunk),
        finish_reason=extract_finish_reason(chunk),
    )
