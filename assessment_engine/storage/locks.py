"""
Process-local per-key locks

Entries are reference counted and dropped once no thread holds or waits on
them, so the map only grows with the number of keys currently contended.
"""
import threading
from contextlib import contextmanager
from typing import Dict, List

from assessment_engine.storage.base import LockTimeout


class KeyedLocks:
    """Map of key -> threading.Lock that forgets idle keys"""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._entries: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str, timeout: float):
        """
        Exclusive, non-reentrant lock on key

        Raises:
            LockTimeout: not acquired within timeout seconds
        """
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1

        try:
            if not entry[0].acquire(timeout=timeout):
                raise LockTimeout(f"Timed out waiting for lock on {key}")
            try:
                yield
            finally:
                entry[0].release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]
