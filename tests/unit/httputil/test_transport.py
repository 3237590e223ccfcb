"""Retry transport: which failures retry, and how many times."""

from __future__ import annotations

import warnings
from unittest.mock import MagicMock

import httpx
import pytest

from clusterform.httputil import RetryTransport


class _Script:
    """MockTransport handler that answers from a list of steps."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        step = self.steps[min(self.calls, len(self.steps) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        return httpx.Response(step, text=f"attempt {self.calls}")


def _transport(script: _Script, **kwargs) -> RetryTransport:
    kwargs.setdefault("base_delay", 0)
    return RetryTransport(httpx.MockTransport(script), **kwargs)


async def _get(transport: RetryTransport, **kwargs) -> httpx.Response:
    async with httpx.AsyncClient(transport=transport) as client:
        return await client.request("GET", "http://node.test/status", **kwargs)


class TestRetryTransport:
    @pytest.mark.asyncio
    async def test_success_is_not_retried(self):
        script = _Script(200)

        response = await _get(_transport(script))

        assert response.status_code == 200
        assert script.calls == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [429, 502, 503, 504])
    async def test_transient_status_is_retried(self, status):
        script = _Script(status, 200)

        response = await _get(_transport(script))

        assert response.status_code == 200
        assert script.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 404, 409, 500, 501])
    async def test_permanent_status_is_not_retried(self, status):
        script = _Script(status, 200)

        response = await _get(_transport(script))

        assert response.status_code == status
        assert script.calls == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_return_last_response(self):
        script = _Script(503)

        response = await _get(_transport(script, max_attempts=4))

        assert response.status_code == 503
        assert response.text == "attempt 4"
        assert script.calls == 4

    @pytest.mark.asyncio
    async def test_transport_error_is_retried(self):
        script = _Script(httpx.ConnectError("refused"), 200)

        response = await _get(_transport(script))

        assert response.status_code == 200
        assert script.calls == 2

    @pytest.mark.asyncio
    async def test_exhausted_transport_errors_reraise(self):
        script = _Script(httpx.ReadTimeout("slow"))

        with pytest.raises(httpx.ReadTimeout):
            await _get(_transport(script, max_attempts=2))

        assert script.calls == 2

    @pytest.mark.asyncio
    async def test_stream_body_is_sent_once(self):
        script = _Script(503, 200)

        async def chunks():
            yield b"one-shot"

        response = await _get(_transport(script), content=chunks())

        assert response.status_code == 503
        assert script.calls == 1

    @pytest.mark.asyncio
    async def test_byte_body_is_replayed(self):
        bodies: list[bytes] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(request.content)
            return httpx.Response(502 if len(bodies) == 1 else 200)

        transport = RetryTransport(httpx.MockTransport(handler), base_delay=0)
        async with httpx.AsyncClient(transport=transport) as client:
            response = await client.post("http://node.test/peers", content=b"payload")

        assert response.status_code == 200
        assert bodies == [b"payload", b"payload"]

    @pytest.mark.asyncio
    async def test_retries_are_logged(self):
        logger = MagicMock()
        script = _Script(503, 503, 200)

        await _get(_transport(script, logger=logger))

        assert logger.warning.call_count == 2
        event, = logger.warning.call_args.args
        assert event == "http_retry_scheduled"
        assert logger.warning.call_args.kwargs["status_code"] == 503
        assert logger.warning.call_args.kwargs["attempt"] == 2

    @pytest.mark.asyncio
    async def test_backoff_emits_no_deprecation_warnings(self):
        script = _Script(503, 502, 200)

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            response = await _get(_transport(script))

        assert response.status_code == 200
        assert not [
            w for w in caught
            if issubclass(w.category, DeprecationWarning)
            and ("tenacity" in w.filename or "clusterform" in w.filename)
        ]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryTransport(httpx.MockTransport(lambda request: httpx.Response(200)), max_attempts=0)
