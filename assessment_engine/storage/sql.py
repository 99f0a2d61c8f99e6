"""
SQLAlchemy-backed keyed store

Documents live in the `records` table. Per-key locks combine a process-local
lock with SELECT ... FOR UPDATE on a `record_locks` row, so writers are
serialized across worker processes on databases that support row locks.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from assessment_engine.models import Record, RecordLock
from assessment_engine.storage.base import KeyValueStore, LockTimeout
from assessment_engine.storage.locks import KeyedLocks

logger = logging.getLogger(__name__)


class SqlStore(KeyValueStore):
    """Keyed store over a relational database"""

    def __init__(self, session_factory, lock_timeout: float = 30.0):
        self._session_factory = session_factory
        self._lock_timeout = lock_timeout
        self._local_locks = KeyedLocks()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._session_factory() as db:
            record = db.get(Record, key)
            return dict(record.data) if record is not None else None

    def put(self, key: str, value: Dict[str, Any]) -> None:
        with self._session_factory() as db:
            db.merge(Record(key=key, data=value))
            db.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as db:
            record = db.get(Record, key)
            if record is not None:
                db.delete(record)
                db.commit()

    def list_by_prefix(self, prefix: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Record)
                .where(Record.key.startswith(prefix, autoescape=True))
                .order_by(Record.key)
            ).scalars()
            return [(row.key, dict(row.data)) for row in rows]

    def _ensure_lock_row(self, key: str) -> None:
        with self._session_factory() as db:
            if db.get(RecordLock, key) is not None:
                return
            db.add(RecordLock(key=key))
            try:
                db.commit()
            except IntegrityError:
                # Another writer created it first
                db.rollback()

    @contextmanager
    def lock(self, key: str):
        with self._local_locks.hold(key, self._lock_timeout):
            self._ensure_lock_row(key)
            with self._session_factory() as db:
                if db.get_bind().dialect.name == "postgresql":
                    timeout_ms = int(self._lock_timeout * 1000)
                    db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
                try:
                    db.execute(
                        select(RecordLock).where(RecordLock.key == key).with_for_update()
                    ).scalar_one()
                except OperationalError as e:
                    logger.warning(f"Row lock on {key} failed: {str(e)}")
                    raise LockTimeout(f"Timed out waiting for lock on {key}") from e
                try:
                    yield
                finally:
                    db.rollback()
