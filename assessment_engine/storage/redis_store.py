"""
Redis-backed keyed store

Documents are JSON strings under a namespace prefix; per-key locks use
redis-py's Lock (SET NX with expiry), so they hold across worker processes.
"""
import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

import redis

from assessment_engine.storage.base import KeyValueStore, LockTimeout

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "\\*?[]"


def _escape_glob(value: str) -> str:
    """Escape characters with meaning in Redis MATCH patterns"""
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in value)


class RedisStore(KeyValueStore):
    """Keyed store over Redis"""

    def __init__(
        self,
        client: redis.Redis,
        namespace: str = "assessment",
        lock_timeout: float = 30.0,
        lock_ttl: float = 120.0
    ):
        self.redis_client = client
        self._namespace = namespace
        self._lock_timeout = lock_timeout
        self._lock_ttl = lock_ttl

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisStore":
        client = redis.from_url(url, decode_responses=True, socket_connect_timeout=5)
        client.ping()
        logger.info("Redis connection established")
        return cls(client, **kwargs)

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self.redis_client.get(self._key(key))
        return json.loads(value) if value else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        self.redis_client.set(self._key(key), json.dumps(value))

    def delete(self, key: str) -> None:
        self.redis_client.delete(self._key(key))

    def list_by_prefix(self, prefix: str) -> List[Tuple[str, Dict[str, Any]]]:
        pattern = _escape_glob(self._key(prefix)) + "*"
        full_keys = sorted(set(self.redis_client.scan_iter(match=pattern)))
        if not full_keys:
            return []
        values = self.redis_client.mget(full_keys)
        strip = len(self._namespace) + 1
        return [
            (full_key[strip:], json.loads(value))
            for full_key, value in zip(full_keys, values)
            if value is not None
        ]

    @contextmanager
    def lock(self, key: str):
        redis_lock = self.redis_client.lock(
            self._key(f"lock:{key}"),
            timeout=self._lock_ttl,
            blocking_timeout=self._lock_timeout
        )
        if not redis_lock.acquire():
            logger.warning(f"Redis lock acquire timed out: {key}")
            raise LockTimeout(f"Timed out waiting for lock on {key}")
        try:
            yield
        finally:
            try:
                redis_lock.release()
            except redis.exceptions.LockError as e:
                # Lock expired while held; the TTL already freed it
                logger.warning(f"Redis lock release failed for {key}: {str(e)}")
