"""Provider interface plus the instrumentation and prompt helpers every client shares."""

import asyncio
import time
import uuid
from collections.abc import AsyncIterator, Iterable, Iterator, Sequence
from contextlib import contextmanager, nullcontext
from typing import Any, Protocol, runtime_checkable

import structlog
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from prometheus_client import Counter

from llmrouter.converters.common import render_context
from llmrouter.errors import ProviderError
from llmrouter.models import FileContext

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)

PROVIDER_REQUESTS = Counter(
    "llmrouter_provider_requests_total",
    "Provider calls by provider type and outcome.",
    ["provider", "outcome"],
)

CODE_FORMAT_INSTRUCTION = (
    "When you propose changes to a file, reply with fenced code blocks whose "
    "info string is the language followed by the file path, for example:\n"
    "```python:src/app/main.py\n"
    "<complete new file content>\n"
    "```\n"
    "Use one block per changed file and always include the full path."
)


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------


@runtime_checkable
class ModelProvider(Protocol):
    """What the router and gateway need from a provider client."""

    provider_type: str
    supports_web_search: bool

    async def generate_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> str: ...

    def stream_response(
        self,
        prompt: str,
        context: Sequence[FileContext],
        *,
        system_instruction: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> AsyncIterator[str]: ...


@runtime_checkable
class SupportsModelSelection(Protocol):
    def set_model(self, model: str) -> None: ...

    def get_model(self) -> str: ...


@runtime_checkable
class SupportsModelListing(Protocol):
    async def list_models(self) -> list[str]: ...

    async def has_model(self, name: str) -> bool: ...


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------


def build_system_prompt(
    system_instruction: str | None,
    context: Iterable[FileContext],
) -> str:
    """System prompt: caller instruction, code-format instruction, then the files."""
    parts = []
    if system_instruction:
        parts.append(system_instruction)
    parts.append(CODE_FORMAT_INSTRUCTION)
    rendered = render_context(context)
    if rendered:
        parts.append(rendered)
    return "\n\n".join(parts)


# ---------------------------------------------------------------------------
# Instrumentation
# ---------------------------------------------------------------------------


@contextmanager
def instrumented_call(
    provider_type: str,
    model: str,
    *,
    stream: bool,
    **attributes: Any,
) -> Iterator[Any]:
    """Wrap one provider call in a span, structured logs and a request counter.

    Yields the bound logger.  Classified errors are recorded on the span and
    re-raised unchanged.  Streaming calls never make the span current: their
    generator may be finished or closed from another task, where the context
    token could not be detached.
    """
    request_id = str(uuid.uuid4())
    start_time = time.monotonic()

    span = _tracer.start_span("llm.generate")
    scope = (
        nullcontext()
        if stream
        else trace.use_span(
            span, end_on_exit=False, record_exception=False, set_status_on_exception=False
        )
    )
    with scope:
        span.set_attribute("gen_ai.system", provider_type)
        span.set_attribute("gen_ai.request.model", model)
        span.set_attribute("llm.stream", stream)

        log = _log.bind(request_id=request_id, provider=provider_type, model=model, stream=stream)
        log.info("llm_request_start", **attributes)

        try:
            yield log
        except ProviderError as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, exc.message)
            PROVIDER_REQUESTS.labels(provider=provider_type, outcome="error").inc()
            log.error(
                "llm_request_error",
                error_type=type(exc).__name__,
                error=exc.message,
                status_code=exc.status_code,
            )
            raise
        else:
            PROVIDER_REQUESTS.labels(provider=provider_type, outcome="success").inc()
        finally:
            duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            log.info("llm_request_complete", duration_ms=duration_ms)
            span.end()
