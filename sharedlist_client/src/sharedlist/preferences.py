from __future__ import annotations

import copy
import json
import logging
import os
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from threading import RLock
from typing import Any, Generator, List, Optional

from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

_TABLE = "preferences"


# PUBLIC_INTERFACE
class PreferenceStore(ABC):
    """
    Durable per-device key-value storage for JSON-serializable values.

    Holds local presentation state only (display order, session); nothing
    here is synchronized to the remote store.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove ``key``. Removing an absent key is a no-op."""


class InMemoryPreferenceStore(PreferenceStore):
    """
    Thread-safe in-memory preference store suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._values: dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return copy.deepcopy(self._values.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = copy.deepcopy(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)


class SQLitePreferenceStore(PreferenceStore):
    """
    Preference store backed by a single SQLite table of JSON text values.
    """

    def __init__(self, db_path: str) -> None:
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._db_path = db_path
        self._init_db()

    @contextmanager
    def _conn(self) -> Generator[sqlite3.Connection, None, None]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._conn() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {_TABLE} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def get(self, key: str) -> Optional[Any]:
        with self._conn() as conn:
            row = conn.execute(f"SELECT value FROM {_TABLE} WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except ValueError:
            logger.warning("Ignoring unreadable preference value for key %s", key)
            return None

    def set(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, ensure_ascii=False)
        with self._conn() as conn:
            conn.execute(
                f"""
                INSERT INTO {_TABLE} (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, encoded),
            )

    def remove(self, key: str) -> None:
        with self._conn() as conn:
            conn.execute(f"DELETE FROM {_TABLE} WHERE key = ?", (key,))


# PUBLIC_INTERFACE
def get_preference_store(settings: Optional[Settings] = None) -> PreferenceStore:
    """
    Factory to return the configured preference store based on settings.
    - memory: InMemoryPreferenceStore
    - sqlite: SQLitePreferenceStore at settings.preferences_db_path
    """
    settings = settings or get_settings()
    if settings.preferences_backend == "sqlite":
        return SQLitePreferenceStore(settings.preferences_db_path)
    return InMemoryPreferenceStore()


def list_order_key(user_id: str) -> str:
    return f"listOrder_{user_id}"


# PUBLIC_INTERFACE
def load_list_order(prefs: PreferenceStore, user_id: str) -> Optional[List[str]]:
    """Return the user's remembered list order, or None if none is recorded."""
    value = prefs.get(list_order_key(user_id))
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return value


# PUBLIC_INTERFACE
def save_list_order(prefs: PreferenceStore, user_id: str, list_ids: List[str]) -> None:
    """Persist the user's list order on this device."""
    prefs.set(list_order_key(user_id), list(list_ids))


def clear_list_order(prefs: PreferenceStore, user_id: str) -> None:
    prefs.remove(list_order_key(user_id))
