"""
Keyed storage backends
"""
import logging

from assessment_engine.config import settings
from assessment_engine.storage.base import KeyValueStore, LockTimeout
from assessment_engine.storage.memory import MemoryStore

logger = logging.getLogger(__name__)


def build_store(backend: str = None) -> KeyValueStore:
    """Create the store selected by STORAGE_BACKEND"""
    backend = backend or settings.STORAGE_BACKEND
    timeout = settings.LOCK_TIMEOUT_SECONDS

    if backend == "memory":
        logger.warning("Using in-memory store; attempts will not survive restarts")
        return MemoryStore(lock_timeout=timeout)

    if backend == "redis":
        from assessment_engine.storage.redis_store import RedisStore
        return RedisStore.from_url(settings.REDIS_URL, lock_timeout=timeout)

    if backend == "sql":
        from assessment_engine.database import SessionLocal
        from assessment_engine.storage.sql import SqlStore
        return SqlStore(SessionLocal, lock_timeout=timeout)

    raise ValueError(f"Unknown storage backend: {backend}")


__all__ = ["KeyValueStore", "LockTimeout", "MemoryStore", "build_store"]
