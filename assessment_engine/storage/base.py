"""
Keyed store port (interface)

Attempt state is persisted as JSON documents under string keys. The engine
only needs get/put/delete, ordered prefix listing, and a per-key mutual
exclusion lock for read-modify-write sequences.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ContextManager, Dict, List, Optional, Tuple


class LockTimeout(Exception):
    """A per-key lock could not be acquired in time"""


class KeyValueStore(ABC):
    """Swappable storage backend for attempts, answers and question sets"""

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def put(self, key: str, value: Dict[str, Any]) -> None:
        """Insert or replace the document stored under key"""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass

    @abstractmethod
    def list_by_prefix(self, prefix: str) -> List[Tuple[str, Dict[str, Any]]]:
        """All (key, document) pairs whose key starts with prefix, sorted by key"""
        pass

    @abstractmethod
    def lock(self, key: str) -> ContextManager[None]:
        """
        Exclusive lock on key for the duration of the with-block

        Raises:
            LockTimeout: lock not acquired within the configured timeout
        """
        pass
