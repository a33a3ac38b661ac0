"""POST /v1/generate plus the provider management endpoints.

Translates between the JSON wire format and the canonical request/response
types, streams Server-Sent Events for streaming requests, and maps classified
provider errors to HTTP status codes.
"""

import json
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry import trace
from opentelemetry.trace import StatusCode
from pydantic import BaseModel, Field

from llmrouter.errors import (
    ConnectionError,
    ProviderError,
    ProviderNotFoundError,
    RateLimitError,
    ValidationError,
)
from llmrouter.gateway import ModelGateway
from llmrouter.models import CanonicalMessage, CanonicalRequest, CanonicalResponse, FileContext
from llmrouter.providers.base import SupportsModelListing, SupportsModelSelection
from llmrouter.router import ProviderRouter

router = APIRouter(prefix="/v1", tags=["generate"])

_log = structlog.get_logger(__name__)
_tracer = trace.get_tracer(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _Message(BaseModel):
    role: str
    text: str


class _FileContext(BaseModel):
    path: str
    content: str


class GenerateRequest(BaseModel):
    """Canonical generate request body.

    ``model`` may be omitted; the current (or default) provider and the
    configured default model are used instead.
    """

    model: str | None = None
    messages: list[_Message]
    temperature: float | None = None
    max_output_tokens: int | None = None
    stream: bool = False
    context: list[_FileContext] = Field(default_factory=list)
    web_search: bool = False


class SwitchProviderRequest(BaseModel):
    name: str


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_gateway(request: Request) -> ModelGateway:
    """Return the shared :class:`ModelGateway` from ``app.state``."""
    gateway: ModelGateway | None = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not initialised")
    return gateway


def get_router(gateway: ModelGateway = Depends(get_gateway)) -> ProviderRouter:
    return gateway.router


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


def status_for(exc: ProviderError) -> int:
    if isinstance(exc, ProviderNotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, RateLimitError):
        return 429
    if isinstance(exc, ConnectionError):
        return 502
    return 500


def error_payload(exc: ProviderError) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "message": exc.message,
        "type": type(exc).__name__,
        "provider": exc.provider,
        "user_message": exc.get_user_message(),
    }
    if isinstance(exc, ValidationError) and exc.field:
        payload["field"] = exc.field
    if isinstance(exc, RateLimitError):
        payload["retry_after_seconds"] = exc.retry_after_seconds
    return payload


def http_error(exc: ProviderError, headers: dict[str, str] | None = None) -> HTTPException:
    error_headers = dict(headers or {})
    if isinstance(exc, RateLimitError) and exc.retry_after_seconds is not None:
        error_headers["Retry-After"] = str(exc.retry_after_seconds)
    return HTTPException(
        status_code=status_for(exc),
        detail=error_payload(exc),
        headers=error_headers or None,
    )


# ---------------------------------------------------------------------------
# Generate
# ---------------------------------------------------------------------------


def _resolve_model(body: GenerateRequest, router_: ProviderRouter, default_model: str | None) -> str:
    if body.model:
        return body.model
    provider = router_.get_current_provider() or router_.default_provider
    return f"{provider}:{default_model or ''}"


@router.post("/generate", response_model=None)
async def generate(
    body: GenerateRequest,
    request: Request,
    gateway: ModelGateway = Depends(get_gateway),
) -> StreamingResponse | JSONResponse:
    """Generate text through whichever provider the model id names.

    Returns:
        A ``text/event-stream`` :class:`StreamingResponse` of accumulated
        canonical responses when ``body.stream`` is ``True``, otherwise a
        :class:`JSONResponse` holding the complete canonical response.
    """
    request_id = str(uuid.uuid4())
    start_time = time.monotonic()
    default_model = getattr(request.app.state, "default_model", None)
    model = _resolve_model(body, gateway.router, default_model)
    provider_name = gateway.router.parse_model_id(model).provider

    log = _log.bind(request_id=request_id, model=model, stream=body.stream, provider=provider_name)
    base_headers = {"X-Request-ID": request_id, "X-Provider": provider_name}

    with _tracer.start_as_current_span("gateway.generate") as span:
        span.set_attribute("gen_ai.system", provider_name)
        span.set_attribute("gen_ai.request.model", model)
        span.set_attribute("llm.stream", body.stream)
        log.info("generate_request_start", web_search=body.web_search, files=len(body.context))

        context = [FileContext(path=f.path, content=f.content) for f in body.context]
        try:
            canonical = CanonicalRequest(
                model=model,
                messages=[CanonicalMessage(role=m.role, text=m.text) for m in body.messages],
                temperature=body.temperature,
                max_output_tokens=body.max_output_tokens,
            )
            if body.stream:
                stream = gateway.stream(canonical, context, web_search=body.web_search)
                # Pull the first unit now so routing and connection errors
                # still become proper HTTP statuses.
                first = await anext(stream, None)
            else:
                response = await gateway.generate(canonical, context, web_search=body.web_search)
        except ProviderError as exc:
            span.record_exception(exc)
            span.set_status(StatusCode.ERROR, exc.message)
            duration_ms = round((time.monotonic() - start_time) * 1000, 2)
            log.error(
                "generate_request_error",
                error_type=type(exc).__name__,
                error=exc.message,
                duration_ms=duration_ms,
            )
            raise http_error(exc, base_headers) from exc

        if body.stream:
            return StreamingResponse(
                _stream_sse(first, stream, log, start_time),
                media_type="text/event-stream",
                headers={**base_headers, "Cache-Control": "no-cache", "Connection": "keep-alive"},
            )

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log.info("generate_request_complete", duration_ms=duration_ms)
        return JSONResponse(content=response.to_dict(), headers=base_headers)


async def _stream_sse(
    first: CanonicalResponse | None,
    stream: AsyncIterator[CanonicalResponse],
    log: Any,
    start_time: float,
) -> AsyncIterator[str]:
    """Yield one SSE event per accumulated response, then ``[DONE]``.

    Errors after the first unit are surfaced as a final SSE ``error`` event
    since the HTTP 200 header has already been sent.
    """
    try:
        if first is not None:
            yield f"data: {json.dumps(first.to_dict())}\n\n"
            async for accumulated in stream:
                yield f"data: {json.dumps(accumulated.to_dict())}\n\n"
        yield "data: [DONE]\n\n"

    except ProviderError as exc:
        log.error("generate_stream_error", error_type=type(exc).__name__, error=exc.message)
        yield f"data: {json.dumps({'error': error_payload(exc)})}\n\n"
        yield "data: [DONE]\n\n"

    finally:
        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log.info("generate_request_complete", duration_ms=duration_ms)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@router.get("/providers")
async def list_providers(router_: ProviderRouter = Depends(get_router)) -> JSONResponse:
    registry = router_.registry
    providers = []
    for name in registry.list_providers():
        config = registry.get_configuration(name)
        provider = registry.get_provider(name)
        providers.append(
            {
                "name": name,
                "type": config.type if config else None,
                "enabled": provider is not None,
                "model": provider.get_model()
                if isinstance(provider, SupportsModelSelection)
                else None,
                "supports_web_search": bool(getattr(provider, "supports_web_search", False)),
            }
        )
    return JSONResponse(
        content={
            "current": router_.get_current_provider(),
            "default": router_.default_provider,
            "providers": providers,
        }
    )


@router.put("/providers/current")
async def switch_provider(
    body: SwitchProviderRequest,
    router_: ProviderRouter = Depends(get_router),
) -> JSONResponse:
    try:
        router_.switch_provider(body.name)
    except ProviderError as exc:
        raise http_error(exc) from exc
    return JSONResponse(content={"current": router_.get_current_provider()})


@router.get("/providers/{name}/models")
async def list_models(name: str, router_: ProviderRouter = Depends(get_router)) -> JSONResponse:
    try:
        provider = router_.get_provider_for_model(f"{name}:")
        if not isinstance(provider, SupportsModelListing):
            raise HTTPException(
                status_code=501,
                detail={"message": f'Provider "{name}" cannot list models', "type": "NotSupported"},
            )
        models = await provider.list_models()
    except ProviderError as exc:
        raise http_error(exc) from exc
    return JSONResponse(content={"provider": name, "models": models})
