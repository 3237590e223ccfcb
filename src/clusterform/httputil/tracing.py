"""Trace span propagation for outbound node requests.

A span lives in a context variable so it follows the calling task across
awaits. When one is active, outbound requests run inside a child span whose
identity is sent as a W3C ``traceparent`` header plus ``X-Request-ID`` for
services that only understand request correlation.
"""

from __future__ import annotations

import secrets
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Iterator

import structlog

TRACEPARENT_HEADER = "traceparent"
REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(slots=True)
class Span:
    """A unit of traced work."""

    name: str
    trace_id: str = field(default_factory=lambda: secrets.token_hex(16))
    span_id: str = field(default_factory=lambda: secrets.token_hex(8))
    parent_id: str | None = None
    started_at: float = field(default_factory=time.monotonic)
    finished_at: float | None = None
    tags: dict[str, str | int] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def duration(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def child(self, name: str) -> Span:
        return Span(name=name, trace_id=self.trace_id, parent_id=self.span_id)

    def set_tag(self, key: str, value: str | int) -> None:
        self.tags[key] = value

    def finish(self) -> None:
        """Mark the span done. Only the first call counts."""
        if self.finished_at is None:
            self.finished_at = time.monotonic()

    def traceparent(self) -> str:
        return f"00-{self.trace_id}-{self.span_id}-01"

    def inject(self, headers: dict[str, str]) -> dict[str, str]:
        """Return a copy of ``headers`` carrying this span's identity."""
        result = dict(headers)
        result[TRACEPARENT_HEADER] = self.traceparent()
        result[REQUEST_ID_HEADER] = self.trace_id
        return result


current_span: ContextVar[Span | None] = ContextVar("current_span", default=None)


@contextmanager
def start_span(name: str) -> Iterator[Span]:
    """Run the block inside a span, nested under the current one if any.

    The span is finished and the previous span restored on exit, whether
    the block returns or raises.
    """
    parent = current_span.get()
    span = parent.child(name) if parent is not None else Span(name=name)
    token = current_span.set(span)
    with structlog.contextvars.bound_contextvars(trace_id=span.trace_id):
        try:
            yield span
        finally:
            span.finish()
            current_span.reset(token)
