"""Funnel that turns HTTP statuses and transport failures into classified errors.

Mapping table:

========================================  ==========================
Failure                                   Classified error
========================================  ==========================
``httpx.TimeoutException``                :class:`ConnectionError`
``httpx.ConnectError`` / other transport  :class:`ConnectionError`
HTTP 401 / 403                            :class:`ConnectionError`
HTTP 404                                  :class:`ConnectionError`
HTTP 429                                  :class:`RateLimitError`
any other non-2xx status                  :class:`ConnectionError`
malformed success body                    :class:`ConnectionError`
========================================  ==========================

:class:`ValidationError` is never produced here: it is reserved for caller
input and raised before any request is sent.
"""

import json
import math
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from llmrouter.errors import ConnectionError, ProviderError, RateLimitError

_MAX_DETAIL_CHARS = 200


def parse_retry_after(value: str | None) -> int | None:
    """Parse a ``Retry-After`` header into whole seconds.

    Accepts delta-seconds (``"60"``) and HTTP-dates.  Returns ``None`` when
    the header is absent or unparseable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.isdigit():
        return int(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0, math.ceil((when - datetime.now(UTC)).total_seconds()))


def extract_error_detail(body: Any) -> str | None:
    """Pull a human-readable message out of an error response body."""
    if body is None:
        return None
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        if not body.strip():
            return None
        try:
            body = json.loads(body)
        except ValueError:
            return body.strip()[:_MAX_DETAIL_CHARS]
    if isinstance(body, list) and body:
        # Google APIs wrap errors in a one-element array.
        body = body[0]
    if isinstance(body, Mapping):
        error = body.get("error")
        if isinstance(error, Mapping) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        if body.get("message"):
            return str(body["message"])
    return json.dumps(body)[:_MAX_DETAIL_CHARS]


def classify_status(
    status_code: int,
    *,
    provider: str,
    headers: Mapping[str, str] | None = None,
    body: Any = None,
    model: str | None = None,
    base_url: str | None = None,
    original_error: Exception | None = None,
) -> ProviderError:
    """Classify a non-2xx HTTP status into exactly one error."""
    detail = extract_error_detail(body)
    suffix = f": {detail}" if detail else ""

    if status_code == 429:
        retry_after = parse_retry_after((headers or {}).get("retry-after"))
        return RateLimitError(
            message=f"Rate limit exceeded{suffix}",
            retry_after_seconds=retry_after,
            provider=provider,
            original_error=original_error,
        )

    if status_code in (401, 403):
        message = f"Invalid credentials or authentication failed (HTTP {status_code}){suffix}"
    elif status_code == 404:
        target = f'Model "{model}"' if model else "Model or endpoint"
        message = f"{target} not found (HTTP 404){suffix}"
    elif status_code >= 500:
        message = f"Server error from {provider} (HTTP {status_code}){suffix}"
    else:
        message = f"Request rejected by {provider} (HTTP {status_code}){suffix}"

    return ConnectionError(
        message=message,
        provider=provider,
        original_error=original_error,
        status_code=status_code,
        base_url=base_url,
        model=model,
    )


def classify_response(
    response: httpx.Response,
    *,
    provider: str,
    model: str | None = None,
    base_url: str | None = None,
) -> ProviderError:
    """Classify an error response whose body has already been read."""
    try:
        body: Any = response.text
    except httpx.ResponseNotRead:
        body = None
    return classify_status(
        response.status_code,
        provider=provider,
        headers=response.headers,
        body=body,
        model=model,
        base_url=base_url,
    )


def classify_transport_error(
    error: httpx.TransportError,
    *,
    provider: str,
    model: str | None = None,
    base_url: str | None = None,
) -> ConnectionError:
    """Classify DNS, refused-connection, timeout and other transport failures."""
    where = f" at {base_url}" if base_url else ""
    if isinstance(error, httpx.TimeoutException):
        message = f"Request to {provider}{where} timed out"
    elif isinstance(error, httpx.ConnectError):
        message = f"Failed to connect to {provider}{where}"
    else:
        message = f"Network error talking to {provider}{where}"
    detail = str(error)
    if detail:
        message = f"{message}: {detail}"
    return ConnectionError(
        message=message,
        provider=provider,
        original_error=error,
        base_url=base_url,
        model=model,
    )


def classify_stream_error(
    unit: Mapping[str, Any],
    *,
    provider: str,
    model: str | None = None,
    base_url: str | None = None,
) -> ConnectionError:
    """Classify a stream unit that carries an ``error`` object instead of data."""
    detail = extract_error_detail(unit) or "unknown error"
    error = unit.get("error")
    code = error.get("code") if isinstance(error, Mapping) else None
    return ConnectionError(
        message=f"Stream error from {provider}: {detail}",
        provider=provider,
        status_code=code if isinstance(code, int) else None,
        base_url=base_url,
        model=model,
    )


def classify_exception(
    error: Exception,
    *,
    provider: str,
    model: str | None = None,
    base_url: str | None = None,
) -> ProviderError:
    """Map any exception raised during a provider call to a classified error."""
    # Already classified.
    if isinstance(error, ProviderError):
        return error

    if isinstance(error, httpx.HTTPStatusError):
        mapped = classify_response(
            error.response, provider=provider, model=model, base_url=base_url
        )
        mapped.original_error = error
        return mapped

    if isinstance(error, httpx.TransportError):
        return classify_transport_error(
            error, provider=provider, model=model, base_url=base_url
        )

    if isinstance(error, ValueError | KeyError | TypeError | IndexError):
        return ConnectionError(
            message=f"Malformed response from {provider}: {error}",
            provider=provider,
            original_error=error,
            base_url=base_url,
            model=model,
        )

    return ConnectionError(
        message=f"Unexpected error from {provider}: {error}",
        provider=provider,
        original_error=error,
        base_url=base_url,
        model=model,
    )
