"""HTTP client for talking to provisioned nodes."""

from .request import HTTPClient, Request
from .tracing import Span, current_span, start_span
from .transport import RetryTransport

__all__ = [
    "HTTPClient",
    "Request",
    "RetryTransport",
    "Span",
    "current_span",
    "start_span",
]
