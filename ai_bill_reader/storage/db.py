"""
Database connection management.

Provides the SQLite connection backing the key-value store.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = ".ai-bill-reader.db"


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Args:
        db_path: Path to SQLite database file; parent directories are created

    Returns:
        SQLite connection
    """
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite3.connect(str(path))
