"""SQLite storage adapter.

Implements the core KeyValueStore port using a simple SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Callable, Optional

_UPSERT = """
INSERT INTO store (key, value, updated_at)
VALUES (?, ?, ?)
ON CONFLICT(key) DO UPDATE SET
    value = excluded.value,
    updated_at = excluded.updated_at
"""


class SQLiteKeyValueStore:
    """Thin SQLite wrapper that satisfies the KeyValueStore contract."""

    def __init__(self, db_path: str, busy_timeout: float = 30) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the store table if it does not exist."""

        with self._connect() as conn:
            # store keeps one JSON document per key. Keys follow the
            # category_<id> / topic_<topic>_<channel> convention of the core.
            # Fields:
            # - key: storage key (PRIMARY KEY)
            # - value: JSON-encoded document
            # - updated_at: last write, for debugging stale conversations
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )

    def get(self, key: str) -> Optional[Any]:
        """Return the decoded document for ``key``, if any."""

        with self._connect() as conn:
            row = conn.execute("SELECT value FROM store WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else None

    def set(self, key: str, value: Any) -> None:
        """Upsert the document for ``key``."""

        now = datetime.now(timezone.utc)
        with self._connect() as conn:
            conn.execute(_UPSERT, (key, json.dumps(value), now.isoformat()))

    def remove(self, key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM store WHERE key = ?", (key,))

    def keys(self, prefix: str) -> list[str]:
        """Return all keys starting with ``prefix``."""

        # substr avoids LIKE treating "_" in our prefixes as a wildcard.
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT key FROM store WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [row["key"] for row in rows]

    def update(self, key: str, fn: Callable[[Optional[Any]], Optional[Any]]) -> Optional[Any]:
        """Read, transform and write ``key`` inside one write transaction.

        BEGIN IMMEDIATE takes the database write lock before the read, so a
        second process running the same update waits instead of reading a
        value that is about to change.
        """

        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT value FROM store WHERE key = ?", (key,)).fetchone()
            current = json.loads(row["value"]) if row else None
            value = fn(current)
            if value is None:
                if row is not None:
                    conn.execute("DELETE FROM store WHERE key = ?", (key,))
            elif value != current:
                now = datetime.now(timezone.utc)
                conn.execute(_UPSERT, (key, json.dumps(value), now.isoformat()))
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()
        return value
