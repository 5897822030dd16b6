"""
Per-key lock registry.

Session mutations (state transitions, answer saves, log appends) are
serialized per session id; session starts are serialized per
(student, exam) pair. Locks for different keys never contend.
"""

import threading
from typing import Dict, Hashable


class LockRegistry:
    """Hands out one re-entrant lock per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.RLock] = {}

    def get(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)
