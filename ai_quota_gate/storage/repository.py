"""
Repository pattern for data access.

The usage ledger talks to persistence only through the `UsageStore` port:
load a structured record by key, save it, or atomically transform it.
"""

import json
import threading
from typing import Any, Callable, Dict, Optional, Protocol

from .db import DEFAULT_DB_PATH, get_connection

RecordDict = Dict[str, Any]


class UsageStore(Protocol):
    """Durable key-value storage for structured usage records."""

    def load(self, key: str) -> Optional[RecordDict]:
        ...

    def save(self, key: str, record: RecordDict) -> None:
        ...

    def update(
        self, key: str, mutate: Callable[[Optional[RecordDict]], RecordDict]
    ) -> RecordDict:
        """Apply `mutate` to the stored value atomically and persist the result."""
        ...


class InMemoryUsageStore:
    """Process-local store, mainly for tests and short-lived tools."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> Optional[RecordDict]:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, record: RecordDict) -> None:
        with self._lock:
            self._data[key] = json.dumps(record)

    def update(
        self, key: str, mutate: Callable[[Optional[RecordDict]], RecordDict]
    ) -> RecordDict:
        with self._lock:
            raw = self._data.get(key)
            current = json.loads(raw) if raw is not None else None
            updated = mutate(current)
            self._data[key] = json.dumps(updated)
        return updated


class SQLiteUsageStore:
    """SQLite-backed store that survives process restarts.

    Records live as JSON text in a single `usage_record` table keyed by
    name. `update` runs inside BEGIN IMMEDIATE so two processes sharing the
    file never lose an increment.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the store with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        initialize_schema(db_path)

    def load(self, key: str) -> Optional[RecordDict]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT payload FROM usage_record WHERE key = ?", (key,)
            ).fetchone()
            return json.loads(row[0]) if row else None
        finally:
            conn.close()

    def save(self, key: str, record: RecordDict) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO usage_record (key, payload) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET payload = excluded.payload
            """, (key, json.dumps(record)))
        finally:
            conn.close()

    def update(
        self, key: str, mutate: Callable[[Optional[RecordDict]], RecordDict]
    ) -> RecordDict:
        """Read, transform and write a record in one write transaction.

        Args:
            key: Record name
            mutate: Function from the current value (or None) to the new value

        Returns:
            The value written
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT payload FROM usage_record WHERE key = ?", (key,)
            ).fetchone()
            updated = mutate(json.loads(row[0]) if row else None)
            conn.execute("""
                INSERT INTO usage_record (key, payload) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET payload = excluded.payload
            """, (key, json.dumps(updated)))
            conn.execute("COMMIT")
            return updated
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the usage_record table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_record (
                key TEXT PRIMARY KEY,
                payload TEXT NOT NULL
            )
        """)
    finally:
        conn.close()


# Global store instances, one per database file
_stores: Dict[str, SQLiteUsageStore] = {}


def get_store(db_path: str = DEFAULT_DB_PATH) -> SQLiteUsageStore:
    """Get the process-wide SQLite store for a file, creating it on first use.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of SQLiteUsageStore
    """
    if db_path not in _stores:
        _stores[db_path] = SQLiteUsageStore(db_path)
    return _stores[db_path]
