"""Typed error hierarchy for provisioning and node HTTP operations.

Every error raised by clusterform derives from :class:`ClusterformError` so
callers can catch the whole family in one place. The important split is
between :class:`LeaseBusyError` (transient, retry later) and
:class:`LeaseClosedError` (the controller will never accept work again);
both are :class:`UnavailableError` so callers that only care about
"could not start" need a single ``except``.
"""

from __future__ import annotations

from typing import Sequence


class ClusterformError(Exception):
    """Base error for all clusterform operations."""


class InvalidArgumentError(ClusterformError, ValueError):
    """A request, definition, or setting was malformed."""


# ── Availability ─────────────────────────────────────────────────────


class UnavailableError(ClusterformError):
    """The workspace cannot accept a mutating operation right now."""


class LeaseBusyError(UnavailableError):
    """Another apply/destroy holds the workspace lease. Retry later."""

    def __init__(self, message: str = 'converger operation already in progress') -> None:
        super().__init__(message)


class LeaseClosedError(UnavailableError):
    """The lease was invalidated; this controller is permanently unusable."""

    def __init__(self, message: str = 'workspace lease already closed') -> None:
        super().__init__(message)


# ── External process ─────────────────────────────────────────────────


class ConvergerError(ClusterformError):
    """The converger process failed.

    Attributes:
        args_: Arguments the converger was invoked with.
        returncode: Process exit code, or None when it never ran to completion.
    """

    def __init__(
        self,
        args: Sequence[str],
        returncode: int | None,
        message: str | None = None,
    ) -> None:
        self.args_ = tuple(args)
        self.returncode = returncode
        command = ' '.join(self.args_) or '(no args)'
        if message is None:
            message = f'converger {command!r} exited with status {returncode}'
        super().__init__(message)


class ConvergerNotFoundError(ConvergerError):
    """The converger binary is not on PATH."""


class ConvergerTimeoutError(ConvergerError):
    """The converger exceeded its configured timeout and was killed."""


# ── Discovery / orchestration ────────────────────────────────────────


class DiscoveryError(ClusterformError):
    """Instance lookup for a deployment unit failed."""

    def __init__(self, group_name: str, region: str, detail: str = '') -> None:
        self.group_name = group_name
        self.region = region
        message = f'failed to discover instances for group {group_name!r} in {region!r}'
        if detail:
            message = f'{message}: {detail}'
        super().__init__(message)


class ProvisioningError(ClusterformError):
    """An apply or destroy failed. The underlying failure is ``__cause__``."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(message)


# ── HTTP ─────────────────────────────────────────────────────────────


class HTTPError(ClusterformError):
    """Base error for node HTTP requests."""


class ServerRejectedError(HTTPError):
    """The server answered with a status outside 200-299.

    Attributes:
        status_code: HTTP status code.
        body: Response body text (empty when it could not be read).
    """

    def __init__(self, status_code: int, body: str = '') -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f'server rejected request [{status_code}]: {body}')


class TransportFailedError(HTTPError):
    """The request never produced a response (connect error, timeout, ...)."""
