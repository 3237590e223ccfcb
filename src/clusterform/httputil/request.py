"""HTTP request builder and client for talking to provisioned nodes.

Requests are immutable: ``option()`` and ``body()`` return new requests, so a
half-built request can be shared and specialised by concurrent callers
without interfering. Sending goes through :class:`RetryTransport`; any answer
outside 200-299 becomes :class:`ServerRejectedError` carrying the body text.

Usage::

    async with HTTPClient("http://10.0.0.12:7001") as client:
        resp = await (
            client.request("GET", "/peers/%s", peer_id)
            .option("verbose", True)
            .send()
        )
        try:
            peers = resp.json()
        finally:
            await resp.aclose()
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, BinaryIO
from urllib.parse import urlencode

import httpx

from ..errors import InvalidArgumentError, ServerRejectedError, TransportFailedError
from ..observability.logging import get_logger
from ..settings import ClusterformSettings
from .tracing import current_span, start_span
from .transport import RetryTransport

_METHOD_RE = re.compile(r"^[A-Za-z]+$")
_STREAM_CHUNK_SIZE = 64 * 1024

OptionValue = bool | str | bytes
BodyValue = bytes | str | BinaryIO


# ── Request ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Request:
    """An immutable, chainable HTTP request.

    Attributes:
        method: HTTP method, upper-cased.
        target: Base URL joined with the formatted endpoint.
        options: Query parameters as ``(key, value)`` pairs sorted by key.
        content: Request body, or None.
        client: Client that sends the request.
    """

    method: str
    target: str
    options: tuple[tuple[str, str], ...] = ()
    content: bytes | BinaryIO | None = field(default=None, repr=False)
    client: HTTPClient | None = field(default=None, repr=False, compare=False)

    def option(self, key: str, value: OptionValue) -> Request:
        """Return a copy with query parameter ``key`` set. Last write wins."""
        if not isinstance(key, str) or not key:
            raise InvalidArgumentError("option key must be a non-empty string")
        merged = dict(self.options)
        merged[key] = _format_option(key, value)
        return replace(self, options=tuple(sorted(merged.items())))

    def body(self, value: BodyValue) -> Request:
        """Return a copy whose body is ``value``, replacing any previous body.

        Accepts raw bytes, text (sent as UTF-8), or a readable binary stream.
        """
        if isinstance(value, (bytes, bytearray)):
            content: bytes | BinaryIO = bytes(value)
        elif isinstance(value, str):
            content = value.encode("utf-8")
        elif callable(getattr(value, "read", None)):
            content = value
        else:
            raise InvalidArgumentError(
                f"unsupported body type {type(value).__name__}"
            )
        return replace(self, content=content)

    @property
    def url(self) -> str:
        """Target URL with options encoded as a sorted query string."""
        query = urlencode(self.options)
        if not query:
            return self.target
        return f"{self.target}?{query}"

    async def send(self) -> httpx.Response:
        """Send through the bound client. See :meth:`HTTPClient.send`."""
        if self.client is None:
            raise InvalidArgumentError("request is not bound to a client")
        return await self.client.send(self)


def _format_option(key: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidArgumentError(
                f"option {key!r}: bytes value is not valid UTF-8"
            ) from exc
    raise InvalidArgumentError(
        f"option {key!r}: unsupported value type {type(value).__name__}"
    )


async def _iter_stream(reader: BinaryIO) -> AsyncIterator[bytes]:
    while True:
        chunk = await asyncio.to_thread(reader.read, _STREAM_CHUNK_SIZE)
        if not chunk:
            break
        yield chunk


# ── Client ───────────────────────────────────────────────────────────


class HTTPClient:
    """Builds and sends requests against one node's base URL.

    Args:
        base_url: Scheme, host and optional path prefix.
        transport: Transport that performs requests; wrapped in a
            RetryTransport. Defaults to ``httpx.AsyncHTTPTransport``.
        timeout: Per-attempt timeout in seconds.
        max_attempts: Total attempts for transient failures.
        base_delay: Initial retry backoff in seconds.
        headers: Headers sent with every request.
        logger: Structured logger for non-fatal failures.
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        headers: dict[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        if not base_url:
            raise InvalidArgumentError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._logger = logger or get_logger(__name__)
        self._http = httpx.AsyncClient(
            transport=RetryTransport(
                transport,
                max_attempts=max_attempts,
                base_delay=base_delay,
                logger=self._logger,
            ),
            timeout=timeout,
            headers=headers,
        )

    @classmethod
    def from_settings(
        cls,
        base_url: str,
        settings: ClusterformSettings,
        **kwargs: Any,
    ) -> HTTPClient:
        """Build a client using the configured timeout and attempt count."""
        return cls(
            base_url,
            timeout=settings.http_timeout,
            max_attempts=settings.http_max_attempts,
            **kwargs,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------ lifecycle ------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> HTTPClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------ building ------

    def request(self, method: str, endpoint: str, *args: Any) -> Request:
        """Start a request. ``endpoint`` is a %-style template for ``args``."""
        if not isinstance(method, str) or not _METHOD_RE.match(method):
            raise InvalidArgumentError(f"invalid http method {method!r}")
        try:
            path = endpoint % args if args else endpoint
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(
                f"endpoint {endpoint!r} does not match {len(args)} args"
            ) from exc
        return Request(
            method=method.upper(),
            target=f"{self._base_url}{path}",
            client=self,
        )

    # ------ sending ------

    async def send(self, request: Request) -> httpx.Response:
        """Send ``request`` and classify the answer.

        Returns:
            The 2xx response with its body stream still open. The caller
            must ``await response.aclose()`` (or read it fully).

        Raises:
            InvalidArgumentError: The request could not be built.
            ServerRejectedError: Status outside 200-299.
            TransportFailedError: No response after retries.
        """
        content = request.content
        if content is not None and not isinstance(content, bytes):
            content = _iter_stream(content)
        try:
            http_request = self._http.build_request(
                request.method,
                request.url,
                content=content,
            )
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            raise InvalidArgumentError("failed to create new http request") from exc

        if current_span.get() is None:
            return await self._send(http_request)

        with start_span(f"HTTP {request.method}") as span:
            span.set_tag("http.method", request.method)
            span.set_tag("http.url", request.target)
            http_request.headers.update(span.inject({}))
            try:
                response = await self._send(http_request)
            except ServerRejectedError as exc:
                span.set_tag("http.status_code", exc.status_code)
                span.set_tag("error", "true")
                raise
            except Exception:
                span.set_tag("error", "true")
                raise
            span.set_tag("http.status_code", response.status_code)
            return response

    async def _send(self, http_request: httpx.Request) -> httpx.Response:
        try:
            response = await self._http.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportFailedError(f"failed to do http request: {exc}") from exc

        if 200 <= response.status_code <= 299:
            return response

        body = ""
        try:
            await response.aread()
            body = response.text
        except (httpx.HTTPError, httpx.StreamError) as exc:
            self._logger.error(
                "http_body_read_failed",
                status_code=response.status_code,
                url=str(http_request.url),
                error=str(exc),
            )
        finally:
            await response.aclose()

        raise ServerRejectedError(response.status_code, body)
