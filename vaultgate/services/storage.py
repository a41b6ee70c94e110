# vaultgate/services/storage.py
"""
Durable key-value storage the funnel writes through.

A store instance is bound to one owner (visitor id or browsing session id) and
one scope; every ``set`` replaces the whole serialized value.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from vaultgate.core.db import session_scope
from vaultgate.models.orm import StorageEntry

logger = logging.getLogger("vaultgate.storage")

LOCAL = "local"
SESSION = "session"


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage. Used by tests and as a scratch backend."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class SqlStorage:
    """storage_entries rows, one per (scope, owner, key)."""

    def __init__(self, scope: str, owner: str, *, scope_factory: Callable = session_scope):
        if scope not in (LOCAL, SESSION):
            raise ValueError(f"unknown storage scope: {scope}")
        if not owner:
            raise ValueError("owner is required")
        self.scope = scope
        self.owner = owner
        self._scope_factory = scope_factory

    def _row(self, db: Session, key: str) -> Optional[StorageEntry]:
        stmt = select(StorageEntry).where(
            StorageEntry.scope == self.scope,
            StorageEntry.owner == self.owner,
            StorageEntry.key == key,
        ).limit(1)
        return db.scalars(stmt).first()

    def get(self, key: str) -> Optional[str]:
        with self._scope_factory() as db:
            row = self._row(db, key)
            return row.value if row is not None else None

    def set(self, key: str, value: str) -> None:
        with self._scope_factory() as db:
            row = self._row(db, key)
            if row is None:
                db.add(StorageEntry(scope=self.scope, owner=self.owner, key=key, value=value))
            else:
                row.value = value
        logger.debug("storage set scope=%s owner=%s key=%s len=%d", self.scope, self.owner, key, len(value))

    def remove(self, key: str) -> None:
        with self._scope_factory() as db:
            row = self._row(db, key)
            if row is not None:
                db.delete(row)
        logger.debug("storage remove scope=%s owner=%s key=%s", self.scope, self.owner, key)
