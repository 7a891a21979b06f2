"""Process-scoped job identifier sequence."""

from __future__ import annotations

import itertools
import threading


class SequenceGenerator:
    """Monotonically increasing ids, safe to share between threads."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()
        self._last = start - 1

    def next(self) -> int:
        with self._lock:
            self._last = next(self._counter)
            return self._last

    def advance_past(self, value: int) -> None:
        """Make sure future ids are greater than ``value``."""
        with self._lock:
            if value > self._last:
                self._counter = itertools.count(value + 1)
                self._last = value

    @property
    def last(self) -> int:
        return self._last
