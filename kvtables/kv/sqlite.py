"""
SQLite-backed ordered key-value store.

This module persists the key-value store in a single SQLite file:
- kv table: packed key (BLOB, ordered by memcmp), JSON value, versionstamp
- meta table: store-wide commit counter used to mint versionstamps

Table schema:
    kv:
        - key BLOB PRIMARY KEY
        - value_json TEXT
        - versionstamp TEXT

    meta:
        - name TEXT PRIMARY KEY
        - value INTEGER

Invariants:
    - Every commit runs in one BEGIN IMMEDIATE transaction
    - Checks are evaluated inside the same transaction as the writes
    - The commit counter only ever increases

How to change safely:
    - Schema changes must keep existing files readable
    - Keep value encoding JSON so files stay inspectable with sqlite3
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, AsyncIterator, List, Optional, Sequence

from ..keys import strinc
from .base import (
    AtomicCheck,
    AtomicOperation,
    Consistency,
    KvCommitResult,
    KvEntry,
    KvError,
    KvSerializationError,
    Mutation,
    StoreClosedError,
    format_versionstamp,
)

logger = logging.getLogger(__name__)


class SqliteKvStore:
    """Persistent KvStore backed by one SQLite database file.

    Thread safety:
        One connection is shared by the store. Commits are serialized by
        an asyncio lock within the process and by BEGIN IMMEDIATE across
        processes.

    Example:
        >>> store = SqliteKvStore("/tmp/app.db")
        >>> res = await store.atomic().set(b"k", {"a": 1}).commit()
        >>> (await store.get(b"k")).value
        {'a': 1}
        >>> await store.close()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        read_only: bool = False,
    ) -> None:
        """Open (and create if needed) the store.

        Args:
            path: Database file path, or ":memory:"
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
            read_only: Open the file read-only; commits raise KvError
        """
        self.path = path
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.read_only = read_only
        self._lock = asyncio.Lock()
        self._conn: Optional[sqlite3.Connection] = self._connect()

    def _connect(self) -> sqlite3.Connection:
        if self.read_only:
            conn = sqlite3.connect(
                f"file:{self.path}?mode=ro",
                uri=True,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            return conn

        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            self.path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.wal_mode and self.path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        self._create_schema(conn)
        logger.info("Opened SQLite store", extra={"path": self.path})
        return conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key BLOB PRIMARY KEY,
                value_json TEXT NOT NULL,
                versionstamp TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS meta (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO meta (name, value) VALUES ('version', 0);
            INSERT OR IGNORE INTO meta (name, value) VALUES ('schema_version', 1);
        """)

    @property
    def is_closed(self) -> bool:
        return self._conn is None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreClosedError(f"Store is closed: {self.path}")
        return self._conn

    @staticmethod
    def _encode(value: Any) -> str:
        try:
            return json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise KvSerializationError(f"Value is not JSON serializable: {e}")

    @staticmethod
    def _decode(key: bytes, value_json: str) -> Any:
        try:
            return json.loads(value_json)
        except json.JSONDecodeError as e:
            raise KvSerializationError(f"Failed to parse stored value for key {key.hex()}: {e}")

    def _row_to_entry(self, row: tuple) -> KvEntry:
        key, value_json, versionstamp = row
        key = bytes(key)
        return KvEntry(key=key, value=self._decode(key, value_json), versionstamp=versionstamp)

    async def get(
        self,
        key: bytes,
        consistency: Consistency = Consistency.STRONG,
    ) -> KvEntry:
        conn = self._connection()
        row = conn.execute(
            "SELECT key, value_json, versionstamp FROM kv WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return KvEntry(key=key)
        return self._row_to_entry(row)

    async def get_many(
        self,
        keys: Sequence[bytes],
        consistency: Consistency = Consistency.STRONG,
    ) -> List[KvEntry]:
        conn = self._connection()
        if not keys:
            return []
        placeholders = ", ".join("?" for _ in keys)
        rows = conn.execute(
            f"SELECT key, value_json, versionstamp FROM kv WHERE key IN ({placeholders})",
            tuple(keys),
        ).fetchall()
        found = {bytes(row[0]): self._row_to_entry(row) for row in rows}
        return [found.get(key, KvEntry(key=key)) for key in keys]

    async def list(
        self,
        prefix: bytes,
        *,
        limit: Optional[int] = None,
        reverse: bool = False,
        consistency: Consistency = Consistency.STRONG,
    ) -> AsyncIterator[KvEntry]:
        conn = self._connection()
        end = strinc(prefix)
        sql = "SELECT key, value_json, versionstamp FROM kv WHERE key > ?"
        params: list = [prefix]
        if end is not None:
            sql += " AND key < ?"
            params.append(end)
        sql += " ORDER BY key DESC" if reverse else " ORDER BY key ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        rows = conn.execute(sql, params).fetchall()
        for row in rows:
            yield self._row_to_entry(row)

    def atomic(self) -> AtomicOperation:
        return AtomicOperation(self)

    async def commit_atomic(
        self,
        checks: Sequence[AtomicCheck],
        mutations: Sequence[Mutation],
    ) -> KvCommitResult:
        conn = self._connection()
        if self.read_only:
            raise KvError(f"Store is read-only: {self.path}")

        async with self._lock:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for check in checks:
                    row = conn.execute(
                        "SELECT versionstamp FROM kv WHERE key = ?",
                        (check.key,),
                    ).fetchone()
                    current = row[0] if row is not None else None
                    if current != check.versionstamp:
                        conn.execute("ROLLBACK")
                        logger.debug(
                            "Atomic check failed",
                            extra={"key": check.key.hex(), "expected": check.versionstamp},
                        )
                        return KvCommitResult(ok=False)

                conn.execute("UPDATE meta SET value = value + 1 WHERE name = 'version'")
                version = conn.execute(
                    "SELECT value FROM meta WHERE name = 'version'"
                ).fetchone()[0]
                versionstamp = format_versionstamp(version)

                for mutation in mutations:
                    if mutation.delete:
                        conn.execute("DELETE FROM kv WHERE key = ?", (mutation.key,))
                    else:
                        conn.execute(
                            """
                            INSERT INTO kv (key, value_json, versionstamp)
                            VALUES (?, ?, ?)
                            ON CONFLICT(key) DO UPDATE SET
                                value_json = excluded.value_json,
                                versionstamp = excluded.versionstamp
                            """,
                            (mutation.key, self._encode(mutation.value), versionstamp),
                        )

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        return KvCommitResult(ok=True, versionstamp=versionstamp)

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.info("Closed SQLite store", extra={"path": self.path})
