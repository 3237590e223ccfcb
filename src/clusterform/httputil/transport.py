"""Retrying httpx transport.

Wraps another async transport and retries transient failures: connection
errors, timeouts, and 429/502/503/504 answers. Backoff is exponential with
jitter (tenacity). Requests whose body is a one-shot stream are sent once,
since the body cannot be replayed.

When retries run out on a retryable status, the last response is returned
as-is so the caller sees the real server answer.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ..observability.logging import get_logger

_RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

_DEFAULT_MAX_ATTEMPTS = 3
_DEFAULT_BASE_DELAY = 0.5  # seconds
_DEFAULT_MAX_DELAY = 30.0  # seconds


class RetryTransport(httpx.AsyncBaseTransport):
    """Async transport that retries transient failures of ``inner``.

    Args:
        inner: Transport that actually performs the request.
        max_attempts: Total attempts including the first.
        base_delay: Initial backoff in seconds.
        max_delay: Upper bound for a single backoff.
        logger: Structured logger for retry notices.
    """

    def __init__(
        self,
        inner: httpx.AsyncBaseTransport | None = None,
        *,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        base_delay: float = _DEFAULT_BASE_DELAY,
        max_delay: float = _DEFAULT_MAX_DELAY,
        logger: Any | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._inner = inner or httpx.AsyncHTTPTransport()
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._logger = logger or get_logger(__name__)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempts = self._max_attempts if _is_replayable(request) else 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=(
                wait_exponential(multiplier=self._base_delay, max=self._max_delay)
                + wait_random(0, self._base_delay)
            ),
            retry=(
                retry_if_exception_type((httpx.TransportError,))
                | retry_if_result(_is_retryable_response)
            ),
            before_sleep=self._log_retry,
            retry_error_callback=_last_outcome,
            reraise=True,
        )
        return await retrying(self._attempt, request)

    async def _attempt(self, request: httpx.Request) -> httpx.Response:
        response = await self._inner.handle_async_request(request)
        if _is_retryable_response(response):
            # Drain so the connection goes back to the pool before a retry.
            await response.aread()
        return response

    def _log_retry(self, state: RetryCallState) -> None:
        outcome = state.outcome
        request = state.args[0] if state.args else None
        detail: dict[str, Any] = {
            "attempt": state.attempt_number,
            "max_attempts": self._max_attempts,
            "sleep_ms": int((state.next_action.sleep if state.next_action else 0) * 1000),
        }
        if request is not None:
            detail["method"] = request.method
            detail["url"] = str(request.url)
        if outcome is not None and outcome.failed:
            detail["error"] = str(outcome.exception())[:200]
        elif outcome is not None:
            detail["status_code"] = outcome.result().status_code
        self._logger.warning("http_retry_scheduled", **detail)

    async def aclose(self) -> None:
        await self._inner.aclose()


def _is_retryable_response(response: httpx.Response) -> bool:
    return response.status_code in _RETRYABLE_STATUS_CODES


def _is_replayable(request: httpx.Request) -> bool:
    return isinstance(request.stream, httpx.ByteStream)


def _last_outcome(state: RetryCallState) -> httpx.Response:
    """Hand back the final response, or re-raise the final transport error."""
    if state.outcome is None:  # pragma: no cover - tenacity always sets it
        raise RuntimeError("retry stopped without an outcome")
    return state.outcome.result()
