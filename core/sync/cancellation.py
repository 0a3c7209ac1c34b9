# SPDX-License-Identifier: Apache-2.0
"""Cooperative cancellation shared by a run, its workers and its HTTP calls."""

import threading
import time
from typing import Optional

from core.sync.exceptions import SyncCancelledError


class CancellationToken:
    """
    A ``threading.Event`` with an optional deadline.

    Reaching the deadline counts as cancellation; ``timed_out`` tells the two
    apart for logging.
    """

    def __init__(self, timeout: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = time.monotonic() + timeout if timeout else None
        self._timed_out = False
        self._reason = "Sync cancelled"

    def cancel(self, reason: str = "Sync cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._timed_out = True
            self._reason = "Sync run timed out"
            self._event.set()
            return True
        return False

    @property
    def timed_out(self) -> bool:
        return self._timed_out

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def wait(self, seconds: float) -> bool:
        """
        Sleep up to ``seconds``, waking early on cancellation.

        Returns:
            True if the token is cancelled when the wait ends
        """
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        self._event.wait(max(0.0, seconds))
        return self.cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise SyncCancelledError(self._reason, timed_out=self._timed_out)
