"""
In-memory keyed store for tests and single-process development
"""
import copy
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from assessment_engine.storage.base import KeyValueStore
from assessment_engine.storage.locks import KeyedLocks


class MemoryStore(KeyValueStore):
    """Dict-backed store; documents are deep-copied in and out"""

    def __init__(self, lock_timeout: float = 30.0):
        self._data: Dict[str, Dict[str, Any]] = {}
        self._data_lock = threading.Lock()
        self._key_locks = KeyedLocks()
        self._lock_timeout = lock_timeout

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._data_lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        with self._data_lock:
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._data_lock:
            self._data.pop(key, None)

    def list_by_prefix(self, prefix: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._data_lock:
            return [
                (key, copy.deepcopy(value))
                for key, value in sorted(self._data.items())
                if key.startswith(prefix)
            ]

    @contextmanager
    def lock(self, key: str):
        with self._key_locks.hold(key, self._lock_timeout):
            yield
