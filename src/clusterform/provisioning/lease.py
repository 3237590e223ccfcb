"""Single-slot, non-blocking lease over an infrastructure workspace.

The converger must not run concurrently against one workspace. Acquisition
answers immediately:

  - available -> the caller holds the workspace until it releases
  - held      -> :class:`LeaseBusyError` (transient)
  - closed    -> :class:`LeaseClosedError` (permanent)
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from ..errors import LeaseBusyError, LeaseClosedError


class LeaseGuard:
    """At most one holder at any instant; acquisition never waits."""

    def __init__(self) -> None:
        self._slot = threading.Lock()
        self._state_lock = threading.Lock()
        self._closed = False

    @property
    def held(self) -> bool:
        return self._slot.locked() and not self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    def try_acquire(self) -> None:
        """Take the permit or fail immediately.

        Raises:
            LeaseClosedError: The lease was invalidated.
            LeaseBusyError: Another operation holds the permit.
        """
        with self._state_lock:
            if self._closed:
                raise LeaseClosedError()
            if not self._slot.acquire(blocking=False):
                raise LeaseBusyError()

    def release(self) -> None:
        """Return the permit. A no-op once the lease is closed."""
        with self._state_lock:
            if self._closed:
                return
            self._slot.release()

    def invalidate(self) -> None:
        """Permanently close the slot. Idempotent."""
        with self._state_lock:
            self._closed = True

    @contextmanager
    def hold(self) -> Iterator[None]:
        """Acquire for the duration of the block, releasing on every exit path."""
        self.try_acquire()
        try:
            yield
        finally:
            self.release()
