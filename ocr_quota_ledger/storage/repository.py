"""
Key-value persistence for the usage ledger.

Durable storage lives in SQLite; session-scoped storage lives in memory
for the lifetime of the process.
"""

import sqlite3
from typing import Dict, Optional, Protocol

from .db import DEFAULT_DB_PATH, get_connection

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
"""


class StorageError(Exception):
    """Raised when the persistence backend cannot complete an operation."""


class StorageFullError(StorageError):
    """Raised when a write would exceed the storage quota."""


class KeyValueStore(Protocol):
    """Storage contract consumed by the ledger."""

    def read(self, key: str) -> Optional[str]:
        ...

    def write(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the kv_store table if it doesn't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute(_SCHEMA)
        conn.commit()
    finally:
        conn.close()


def _check_quota(used: int, quota_chars: Optional[int], key: str) -> None:
    if quota_chars is not None and used > quota_chars:
        raise StorageFullError(
            f"Writing '{key}' needs {used:,} chars, quota is {quota_chars:,}"
        )


class SQLiteStore:
    """Durable key-value store that survives process restarts.

    The optional ``quota_chars`` caps the combined size of all keys and
    values.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, quota_chars: Optional[int] = None):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
            quota_chars: Optional size limit in characters
        """
        self.db_path = db_path
        self.quota_chars = quota_chars

    def _connect(self, action: str, key: str) -> sqlite3.Connection:
        try:
            return get_connection(self.db_path)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to {action} '{key}': {e}") from e

    def read(self, key: str) -> Optional[str]:
        """Return the stored value or None if the key is absent.

        Raises:
            StorageError: If the database cannot be read
        """
        conn = self._connect("read", key)
        try:
            row = conn.execute(
                "SELECT value FROM kv_store WHERE key = ?", (key,)
            ).fetchone()
            return row[0] if row else None
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                return None
            raise StorageError(f"Failed to read '{key}': {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e
        finally:
            conn.close()

    def write(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one.

        Raises:
            StorageFullError: If the quota or the disk is exhausted
            StorageError: For any other database failure
        """
        conn = self._connect("write", key)
        try:
            conn.execute(_SCHEMA)
            if self.quota_chars is not None:
                row = conn.execute(
                    "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) "
                    "FROM kv_store WHERE key != ?",
                    (key,)
                ).fetchone()
                _check_quota(row[0] + len(key) + len(value), self.quota_chars, key)
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, value)
            )
            conn.commit()
        except sqlite3.OperationalError as e:
            conn.rollback()
            if "full" in str(e).lower():
                raise StorageFullError(f"Failed to write '{key}': {e}") from e
            raise StorageError(f"Failed to write '{key}': {e}") from e
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(f"Failed to write '{key}': {e}") from e
        finally:
            conn.close()

    def remove(self, key: str) -> None:
        """Delete a key. Removing an absent key is a no-op.

        Raises:
            StorageError: If the database cannot be modified
        """
        conn = self._connect("remove", key)
        try:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e).lower():
                return
            raise StorageError(f"Failed to remove '{key}': {e}") from e
        except sqlite3.Error as e:
            raise StorageError(f"Failed to remove '{key}': {e}") from e
        finally:
            conn.close()


class MemoryStore:
    """In-process key-value store, gone when the process exits.

    Used as the session-scoped store and as a lightweight backend in tests.
    """

    def __init__(self, quota_chars: Optional[int] = None):
        self.quota_chars = quota_chars
        self._data: Dict[str, str] = {}

    def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        if self.quota_chars is not None:
            used = sum(len(k) + len(v) for k, v in self._data.items() if k != key)
            _check_quota(used + len(key) + len(value), self.quota_chars, key)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)
