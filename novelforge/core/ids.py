"""Explicit id generator held by the director facade."""

import itertools
import threading


class IdGenerator:
    """Thread-safe monotonic counter.

    `next_int()` feeds message ids; `next_id(prefix)` feeds workflow, request
    and conflict ids such as ``conflict_3``.
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_int(self) -> int:
        with self._lock:
            return next(self._counter)

    def next_id(self, prefix: str) -> str:
        return f"{prefix}_{self.next_int()}"
