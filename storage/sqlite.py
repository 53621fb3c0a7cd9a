"""
SQLite-backed KV store.

A durable key/value table with per-row expiry, standing in for the
platform KV service.

Key properties:
- Implements exactly the same interface as InMemoryKVStore
- One table: kv (k PRIMARY KEY, v, expires_at, created_at, updated_at)
- Upsert on put (full overwrite)
- Expired rows read as absent; deletion of the row is best-effort
- Blocking sqlite3 calls run in the default executor

Errors are raised as KVStoreError so callers can fail closed.
"""

import asyncio
import logging
import sqlite3
import time
from functools import partial
from typing import Callable, Optional, Tuple

from observability import best_effort
from storage.base import KVStore, KVStoreError

logger = logging.getLogger(__name__)


class SQLiteKVStore(KVStore):
    """
    SQLite KV store.

    Pure plumbing: SQLite is an implementation detail.
    """

    def __init__(self, db_path: Optional[str] = None, clock: Callable[[], float] = time.time):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file.
                    If None, uses a private in-memory database (kept open).
            clock: Seconds since epoch (injectable for tests)
        """
        self.db_path = db_path or ":memory:"
        self._clock = clock
        # ':memory:' databases live only as long as their connection
        self._shared_conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._shared_conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._initialize_db()

    def _connect(self) -> sqlite3.Connection:
        if self._shared_conn is not None:
            return self._shared_conn
        return sqlite3.connect(self.db_path)

    def _release(self, conn: sqlite3.Connection) -> None:
        if conn is not self._shared_conn:
            conn.close()

    def _initialize_db(self) -> None:
        """
        Create the kv table if needed.

        Enables WAL mode for file databases.
        """
        conn = self._connect()
        try:
            cursor = conn.cursor()
            if self._shared_conn is None:
                cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    k TEXT PRIMARY KEY,
                    v TEXT NOT NULL,
                    expires_at REAL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.commit()
            logger.debug(f"SQLite KV initialized: {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite KV: {e}")
            raise KVStoreError(f"KV initialization failed: {e}") from e
        finally:
            self._release(conn)

    # ------------------------------------------------------------------
    # Blocking primitives
    # ------------------------------------------------------------------

    def _get_sync(self, key: str) -> Optional[Tuple[str, Optional[float]]]:
        conn = self._connect()
        try:
            row = conn.execute("SELECT v, expires_at FROM kv WHERE k = ?", (key,)).fetchone()
            return (row[0], row[1]) if row else None
        finally:
            self._release(conn)

    def _put_sync(self, key: str, value: str, expires_at: Optional[float]) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO kv (k, v, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(k) DO UPDATE SET
                    v = excluded.v,
                    expires_at = excluded.expires_at,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, value, expires_at),
            )
            conn.commit()
        finally:
            self._release(conn)

    def _delete_expired_sync(self, key: str, now: float) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "DELETE FROM kv WHERE k = ? AND expires_at IS NOT NULL AND expires_at <= ?",
                (key, now),
            )
            conn.commit()
        finally:
            self._release(conn)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, partial(func, *args))
        except sqlite3.Error as e:
            logger.error(f"SQLite operational error: {e}")
            raise KVStoreError(f"KV unavailable: {e}") from e

    # ------------------------------------------------------------------
    # KVStore
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Optional[str]:
        row = await self._run(self._get_sync, key)
        if row is None:
            return None

        value, expires_at = row
        now = self._clock()
        if expires_at is not None and expires_at <= now:
            await best_effort(
                lambda: self._run(self._delete_expired_sync, key, now),
                "kv_expired_row_cleanup",
                logger,
            )
            return None
        return value

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None and ttl_seconds > 0:
            expires_at = self._clock() + ttl_seconds
        await self._run(self._put_sync, key, str(value), expires_at)
