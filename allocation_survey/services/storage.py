"""Key-value persistence for resumable sessions.

Writes are best-effort: local persistence is a resume convenience, so a failed
write is logged and swallowed rather than interrupting the respondent.
"""
import json
import logging
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from allocation_survey.models.kv_entry import KVEntry

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryStore:
    """Dict-backed store for tests and single-process demos."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))


class SqlKeyValueStore:
    """Store backed by the kv_entries table; one short transaction per call."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        with self._session_factory() as db:
            entry = db.get(KVEntry, key)
            return entry.value if entry is not None else None

    def set(self, key: str, value: str) -> None:
        with self._session_factory() as db:
            entry = db.get(KVEntry, key)
            if entry is None:
                db.add(KVEntry(key=key, value=value))
            else:
                entry.value = value
            db.commit()

    def delete(self, key: str) -> None:
        with self._session_factory() as db:
            entry = db.get(KVEntry, key)
            if entry is not None:
                db.delete(entry)
                db.commit()

    def keys(self, prefix: str = "") -> list[str]:
        with self._session_factory() as db:
            result = db.execute(
                select(KVEntry.key).where(KVEntry.key.startswith(prefix, autoescape=True)).order_by(KVEntry.key)
            )
            return list(result.scalars().all())


class ScopedStore:
    """Prefix every key with a respondent/session namespace."""

    def __init__(self, store: KeyValueStore, namespace: str):
        self.store = store
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> str | None:
        return self.store.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self.store.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.store.delete(self._key(key))

    def keys(self, prefix: str = "") -> list[str]:
        offset = len(self.namespace) + 1
        return [k[offset:] for k in self.store.keys(self._key(prefix))]


def save_json(store: KeyValueStore, key: str, value: Any) -> bool:
    """Serialize and write; failures (quota, db down, bad value) are logged and dropped."""
    try:
        store.set(key, json.dumps(value))
        return True
    except (SQLAlchemyError, OSError, TypeError, ValueError):
        logger.warning("Persisting key %s failed; continuing without it", key, exc_info=True)
        return False


def load_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    try:
        raw = store.get(key)
    except (SQLAlchemyError, OSError):
        logger.warning("Reading key %s failed; using default", key, exc_info=True)
        return default
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Stored value for %s is not valid JSON; using default", key)
        return default


def load_int(store: KeyValueStore, key: str, default: int = 0) -> int:
    value = load_json(store, key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
