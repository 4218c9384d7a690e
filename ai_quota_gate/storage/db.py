"""
Database connection management.

Provides SQLite connection for usage record persistence.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".ai-quota-gate.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite connection in manual transaction mode.

    Autocommit (isolation_level=None) lets callers issue BEGIN IMMEDIATE
    themselves, which takes the write lock before the read of a
    read-modify-write cycle.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=10.0, isolation_level=None)
    return conn
