"""Tests for cancellation scopes."""

import threading

import pytest

from covtrend.cancellation import CancelScope, check_scope
from covtrend.exceptions import CancellationError


class TestCancelScope:
    """Tests for CancelScope."""

    def test_live_scope_passes(self) -> None:
        scope = CancelScope()

        scope.check("record")
        assert scope.cancelled is False

    def test_cancel_raises_on_next_check(self) -> None:
        scope = CancelScope()
        scope.cancel()

        assert scope.cancelled is True
        with pytest.raises(CancellationError, match="record cancelled"):
            scope.check("record")

    def test_expired_deadline(self) -> None:
        scope = CancelScope(timeout=0)

        assert scope.cancelled is True
        with pytest.raises(CancellationError, match="cleanup timed out"):
            scope.check("cleanup")

    def test_generous_deadline_is_live(self) -> None:
        CancelScope(timeout=3600).check()

    def test_cancel_from_another_thread(self) -> None:
        scope = CancelScope()
        worker = threading.Thread(target=scope.cancel)
        worker.start()
        worker.join()

        with pytest.raises(CancellationError):
            scope.check()

    def test_check_scope_accepts_none(self) -> None:
        """No scope means the operation cannot be cancelled."""
        check_scope(None, "query")
