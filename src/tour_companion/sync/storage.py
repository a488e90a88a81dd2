"""
Local durable key-value storage for the offline cache.

Values are whole JSON documents stored as text. A DuckDB-backed store
persists them on disk; an in-memory store serves tests and runtimes
without a writable filesystem.
"""

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import duckdb

from ..exceptions import CacheStorageError
from ..interfaces import KeyValueStore

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    """Process-local key-value store."""

    def __init__(self, namespace: str = "LLT_OFFLINE"):
        self.namespace = namespace
        self._items: Dict[str, str] = {}
        self._lock = threading.Lock()

    def _key(self, key: str) -> str:
        return f"{self.namespace}_{key}"

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._items.get(self._key(key))

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[self._key(key)] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(self._key(key), None)

    def __len__(self) -> int:
        return len(self._items)


class DuckDBKeyValueStore(KeyValueStore):
    """
    Key-value store persisted in a DuckDB table.

    Each key is one row; ``set_item`` replaces the row in a single
    statement so a reader never observes a half-written document.
    """

    def __init__(self, db_path: Path, namespace: str = "LLT_OFFLINE"):
        """
        Initialize the store.

        Args:
            db_path: Path to the DuckDB database file
            namespace: Prefix applied to every key
        """
        self.db_path = db_path
        self.namespace = namespace
        self.conn: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()

    def __enter__(self) -> 'DuckDBKeyValueStore':
        """
        Context manager entry: open database connection and create schema.

        Returns:
            Self for use in with statement
        """
        try:
            self.conn = duckdb.connect(str(self.db_path))
            logger.info(f"Connected to offline cache at {self.db_path}")
            self._create_schema()
            return self
        except Exception as e:
            logger.error(f"Failed to initialize offline cache at {self.db_path}: {e}", exc_info=True)
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.close()
        except Exception as e:
            logger.warning(f"Error while closing offline cache connection: {e}", exc_info=True)

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            logger.debug("Offline cache connection closed")

    def _create_schema(self) -> None:
        if self.conn is None:
            raise RuntimeError("Database connection not established")

        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key VARCHAR NOT NULL PRIMARY KEY,
                value VARCHAR NOT NULL,
                updated_at TIMESTAMP NOT NULL
            )
        """)
        logger.debug("Offline cache schema created or verified")

    def _key(self, key: str) -> str:
        return f"{self.namespace}_{key}"

    def _require_connection(self, key: str, operation: str) -> duckdb.DuckDBPyConnection:
        if self.conn is None:
            raise CacheStorageError(key, operation, "database connection not established")
        return self.conn

    def get_item(self, key: str) -> Optional[str]:
        conn = self._require_connection(key, "read")
        try:
            with self._lock:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", [self._key(key)]
                ).fetchone()
        except duckdb.Error as e:
            logger.error(f"Failed to read cache key {key}: {e}", exc_info=True)
            raise CacheStorageError(key, "read", str(e)) from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        conn = self._require_connection(key, "write")
        try:
            with self._lock:
                conn.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT (key) DO UPDATE SET
                        value = EXCLUDED.value,
                        updated_at = EXCLUDED.updated_at
                    """,
                    [self._key(key), value, datetime.now()]
                )
        except duckdb.Error as e:
            logger.error(f"Failed to write cache key {key}: {e}", exc_info=True)
            raise CacheStorageError(key, "write", str(e)) from e

    def remove_item(self, key: str) -> None:
        conn = self._require_connection(key, "remove")
        try:
            with self._lock:
                conn.execute("DELETE FROM kv_store WHERE key = ?", [self._key(key)])
        except duckdb.Error as e:
            logger.error(f"Failed to remove cache key {key}: {e}", exc_info=True)
            raise CacheStorageError(key, "remove", str(e)) from e
