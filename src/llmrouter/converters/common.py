"""Helpers shared by the wire-format converters."""

from collections.abc import Iterable

from llmrouter.models import CanonicalMessage, CanonicalRequest, CanonicalResponse, FileContext, Usage

CONTEXT_HEADING = "Codebase Context:"


def strip_provider_prefix(model: str) -> str:
    """Drop a leading ``provider:`` from *model*; only the first colon counts."""
    _, sep, rest = model.partition(":")
    return rest if sep else model


def render_context(context: Iterable[FileContext]) -> str:
    return "\n\n".join(f"File: {item.path}\n{item.content}" for item in context)


def system_text(request: CanonicalRequest, context: Iterable[FileContext] = ()) -> str | None:
    """Merge system messages and the file context into one system prompt."""
    parts = [m.text for m in request.messages if m.role == "system"]
    rendered = render_context(context)
    if rendered:
        block = f"{CONTEXT_HEADING}\n{rendered}"
        parts.append(f"\n\n{block}" if parts else block)
    return "\n".join(parts) if parts else None


def conversation(request: CanonicalRequest) -> list[CanonicalMessage]:
    return [m for m in request.messages if m.role != "system"]


def fold(
    accumulated: CanonicalResponse | None,
    delta: str,
    *,
    usage: Usage | None = None,
    finish_reason: str | None = None,
) -> CanonicalResponse:
    """Append *delta* to *accumulated*, carrying usage and finish reason forward."""
    previous = accumulated.text if accumulated is not None else ""
    return CanonicalResponse.from_text(
        previous + delta,
        usage=usage or (accumulated.usage if accumulated is not None else None),
        finish_reason=finish_reason
        or (accumulated.finish_reason if accumulated is not None else None),
    )
