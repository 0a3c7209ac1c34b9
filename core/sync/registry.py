# SPDX-License-Identifier: Apache-2.0
"""Registry of running syncs, owned by whoever triggers them."""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from core.sync.cancellation import CancellationToken
from core.sync.exceptions import SyncAlreadyRunningError


logger = logging.getLogger("dashsync.sync.registry")


class RunRegistry:
    """
    Tracks one cancellation token per running target.

    Serializes triggers: a second ``start`` for the same target raises until
    the first run calls ``finish``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._runs: Dict[str, CancellationToken] = {}

    def start(self, target_id: str, timeout: Optional[float] = None) -> CancellationToken:
        with self._lock:
            if target_id in self._runs:
                raise SyncAlreadyRunningError(target_id)
            token = CancellationToken(timeout)
            self._runs[target_id] = token
            return token

    def finish(self, target_id: str) -> None:
        with self._lock:
            self._runs.pop(target_id, None)

    @contextmanager
    def track(self, target_id: str, timeout: Optional[float] = None):
        """Register a run for the duration of the ``with`` block."""
        token = self.start(target_id, timeout)
        try:
            yield token
        finally:
            self.finish(target_id)

    def is_running(self, target_id: str) -> bool:
        with self._lock:
            return target_id in self._runs

    def running_targets(self) -> List[str]:
        with self._lock:
            return list(self._runs)

    def cancel(self, target_id: str) -> bool:
        """Cancel a run; returns False if the target is not running."""
        with self._lock:
            token = self._runs.get(target_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for {target_id}")
        return True

    def cancel_all(self) -> int:
        with self._lock:
            tokens = list(self._runs.values())
        for token in tokens:
            token.cancel()
        if tokens:
            logger.info(f"Cancellation requested for {len(tokens)} running syncs")
        return len(tokens)
