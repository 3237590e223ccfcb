"""Span lifecycle and context propagation."""

from __future__ import annotations

import asyncio

import pytest
import structlog

from clusterform.httputil.tracing import Span, current_span, start_span


class TestSpan:
    def test_ids_have_w3c_widths(self):
        span = Span(name="op")

        assert len(span.trace_id) == 32
        assert len(span.span_id) == 16
        assert span.parent_id is None

    def test_child_shares_trace(self):
        parent = Span(name="parent")

        child = parent.child("child")

        assert child.trace_id == parent.trace_id
        assert child.parent_id == parent.span_id
        assert child.span_id != parent.span_id

    def test_finish_counts_once(self):
        span = Span(name="op")
        assert span.duration is None

        span.finish()
        first = span.finished_at
        span.finish()

        assert span.finished
        assert span.finished_at == first
        assert span.duration >= 0

    def test_inject_does_not_mutate_input(self):
        span = Span(name="op")
        headers = {"Accept": "application/json"}

        injected = span.inject(headers)

        assert headers == {"Accept": "application/json"}
        assert injected["traceparent"] == f"00-{span.trace_id}-{span.span_id}-01"
        assert injected["X-Request-ID"] == span.trace_id
        assert injected["Accept"] == "application/json"


class TestStartSpan:
    def test_sets_and_restores_current_span(self):
        assert current_span.get() is None

        with start_span("outer") as outer:
            assert current_span.get() is outer
            with start_span("inner") as inner:
                assert current_span.get() is inner
                assert inner.parent_id == outer.span_id
            assert current_span.get() is outer

        assert current_span.get() is None
        assert outer.finished and inner.finished

    def test_finishes_on_error(self):
        with pytest.raises(RuntimeError):
            with start_span("op") as span:
                raise RuntimeError("boom")

        assert span.finished
        assert current_span.get() is None

    def test_binds_trace_id_for_logging(self):
        with start_span("op") as span:
            bound = structlog.contextvars.get_contextvars()
            assert bound["trace_id"] == span.trace_id

        assert "trace_id" not in structlog.contextvars.get_contextvars()

    @pytest.mark.asyncio
    async def test_span_follows_task_context(self):
        async def observe():
            return current_span.get()

        with start_span("op") as span:
            seen = await asyncio.create_task(observe())

        assert seen is span
