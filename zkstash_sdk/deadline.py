"""
Deadline and cancellation token for blocking waits.
"""
import threading
import time
from typing import Optional


class Deadline:
    """
    Bounded wait budget that can also be cancelled from another thread.

    Only waiting honours the deadline. Work that has already been handed to the
    chain (a broadcast transaction) is never undone by cancelling.
    """

    def __init__(self, timeout: float, cancel_event: Optional[threading.Event] = None):
        """
        Args:
            timeout: Seconds from now until the deadline
            cancel_event: Event shared with the caller; setting it cancels the wait
        """
        if timeout is None or timeout < 0:
            raise ValueError(f"timeout must be a non-negative number of seconds, got {timeout!r}")
        self.timeout = float(timeout)
        self._expires_at = time.monotonic() + self.timeout
        self._cancelled = cancel_event or threading.Event()

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        return self.cancelled or self.remaining() <= 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def sleep(self, interval: float) -> bool:
        """
        Wait for ``interval`` seconds or until the deadline, whichever is first.

        Returns:
            True if there is budget left after waiting
        """
        wait_for = min(max(0.0, interval), self.remaining())
        if wait_for > 0:
            self._cancelled.wait(wait_for)
        return not self.expired()

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.1f}s, cancelled={self.cancelled})"
