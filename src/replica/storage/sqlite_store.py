"""
SQLite store for offline collections.

Human-inspectable, ACID-compliant single-file storage. Several logical stores
(offline data, cache table, file locations) can share one database file; they
are separated by ``namespace``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path

from replica.storage.base import BaseStore


class SQLiteStore(BaseStore):
    """
    SQLite-based key/value storage.

    Features:
    - Human-inspectable database
    - ACID transactions per write
    - Namespaces for several logical stores in one file
    """

    def __init__(self, db_path: str | Path, namespace: str = "default"):
        self._db_path = Path(db_path).expanduser()
        self._namespace = namespace
        self._conn: sqlite3.Connection | None = None

    async def initialize(self) -> None:
        """Initialize SQLite database and tables."""
        if self._conn is not None:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row

        # Enable WAL mode for better concurrency
        self._conn.execute("PRAGMA journal_mode=WAL")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS collections (
                namespace TEXT NOT NULL,
                content_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (namespace, content_type)
            )
        """)
        self._conn.commit()

    async def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    async def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            await self.initialize()
        assert self._conn is not None
        return self._conn

    async def get_all_data(self) -> dict[str, str]:
        conn = await self._connection()
        cursor = conn.execute(
            "SELECT content_type, payload FROM collections WHERE namespace = ?",
            (self._namespace,),
        )
        return {row["content_type"]: row["payload"] for row in cursor.fetchall()}

    async def get_data(self, content_type: str) -> str | None:
        conn = await self._connection()
        row = conn.execute(
            "SELECT payload FROM collections WHERE namespace = ? AND content_type = ?",
            (self._namespace, content_type),
        ).fetchone()
        return row["payload"] if row else None

    async def save_data(self, content_type: str, data: str) -> None:
        conn = await self._connection()
        with conn:
            conn.execute(
                """
                INSERT INTO collections (namespace, content_type, payload, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, content_type)
                DO UPDATE SET payload = excluded.payload, updated_at = excluded.updated_at
                """,
                (self._namespace, content_type, data, datetime.now().isoformat()),
            )

    async def purge(self, content_type: str) -> None:
        conn = await self._connection()
        with conn:
            conn.execute(
                "DELETE FROM collections WHERE namespace = ? AND content_type = ?",
                (self._namespace, content_type),
            )

    async def purge_all(self) -> None:
        conn = await self._connection()
        with conn:
            conn.execute("DELETE FROM collections WHERE namespace = ?", (self._namespace,))
