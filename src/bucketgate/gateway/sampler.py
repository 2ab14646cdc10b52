"""Counter that lets one in every ``threshold + 1`` status probes reach the access log."""

from __future__ import annotations

import threading


class StatusSampler:
    def __init__(self, threshold: int = 1000):
        self._threshold = max(0, threshold)
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def sample(self) -> bool:
        """Return True when this probe should be logged."""
        with self._lock:
            if self._count >= self._threshold:
                self._count = 0
                return True
            self._count += 1
            return False
