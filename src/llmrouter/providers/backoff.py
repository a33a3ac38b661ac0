"""Caller-side backoff helpers.

The gateway never retries on its own.  Callers that decide to retry a
:class:`~llmrouter.errors.RateLimitError` can either compute delays
with :func:`calculate_backoff` or hand the whole policy to tenacity::

    async for attempt in rate_limit_retrying(max_attempts=4):
        with attempt:
            text = await provider.generate_response(prompt, context)
"""

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from llmrouter.errors import RateLimitError

DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 30000

_log = structlog.get_logger(__name__)


def calculate_backoff(
    attempt: int,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> int:
    """Exponential backoff delay in milliseconds for a 0-indexed *attempt*.

    ``min(base_delay_ms * 2 ** attempt, max_delay_ms)``; negative attempts are
    treated as the first attempt.
    """
    attempt = max(0, attempt)
    # Past this point the doubling is already far beyond any sane cap.
    if attempt >= 63:
        return max_delay_ms
    return min(base_delay_ms * 2**attempt, max_delay_ms)


class wait_backoff(wait_base):  # noqa: N801
    """Tenacity wait strategy built on :func:`calculate_backoff`.

    A ``retry_after_seconds`` hint on the last :class:`RateLimitError` wins
    over the computed delay.
    """

    def __init__(
        self,
        base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
    ) -> None:
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError) and exc.retry_after_seconds is not None:
            return float(exc.retry_after_seconds)
        delay_ms = calculate_backoff(
            retry_state.attempt_number - 1, self.base_delay_ms, self.max_delay_ms
        )
        return delay_ms / 1000


def _before_sleep(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` hook that emits a structured warning."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    next_action = retry_state.next_action
    wait_seconds = next_action.sleep if next_action is not None else 0.0
    _log.warning(
        "llm_request_retry",
        attempt=retry_state.attempt_number,
        wait_seconds=round(wait_seconds, 2),
        error_type=type(exc).__name__ if exc else None,
        error=str(exc) if exc else None,
    )


def rate_limit_retrying(
    max_attempts: int = 3,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS,
) -> AsyncRetrying:
    """Build a caller-owned retry loop that only retries :class:`RateLimitError`.

    Connection and validation errors are re-raised on the first attempt.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        retry=retry_if_exception_type(RateLimitError),
        wait=wait_backoff(base_delay_ms, max_delay_ms),
        before_sleep=_before_sleep,
        reraise=True,
    )
