"""Cooperative cancellation for blocking store operations.

A CancelScope is checked at every unit boundary; once cancelled (explicitly
or by deadline) the next check raises CancellationError.
"""

from __future__ import annotations

import threading
import time

from covtrend.exceptions import CancellationError


class CancelScope:
    """Cancellation flag with an optional deadline."""

    def __init__(self, timeout: float | None = None) -> None:
        """Initialize the scope.

        Args:
            timeout: Seconds until the scope expires on its own. None means
                the scope only ends through cancel().
        """
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        """Request cancellation. Safe to call from another thread."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self, operation: str = "operation") -> None:
        """Raise CancellationError if the scope is no longer live.

        Args:
            operation: Name used in the error message.
        """
        if self._event.is_set():
            msg = f"{operation} cancelled"
            raise CancellationError(msg)
        if self._deadline is not None and time.monotonic() >= self._deadline:
            msg = f"{operation} timed out"
            raise CancellationError(msg)


def check_scope(scope: CancelScope | None, operation: str) -> None:
    """Check an optional scope."""
    if scope is not None:
        scope.check(operation)
