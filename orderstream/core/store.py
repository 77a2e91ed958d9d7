"""
orderstream Durable Store

SQLite-backed store holding the only durable copy of each order payload.

Invariants:
- One row per orderId; a repeated orderId replaces the payload (upsert)
- createdAt is assigned on first insert and never changed afterwards
- createdAt is strictly increasing across inserts made by this client
- updatedAt is refreshed on every upsert
- Payload bytes are stored and returned unchanged

Listing order: createdAt DESC, then rowid DESC (insertion order) on ties.

No retries here. Callers own retry policy: the ingestion subscriber defers to
channel redelivery, warm-start boots degraded.

Schema:
    orders(id TEXT PRIMARY KEY, payload BLOB, createdAt TEXT, updatedAt TEXT)

Property of Uncompromising Sensors LLC.
"""

import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Iterator, NamedTuple, Optional

from sdk.logging import getLogger

from .contract import ORDERS_TABLE, DEFAULT_LIST_LIMIT, LOAD_BATCH_SIZE


class StoreError(Exception):
    """Durable store operation failed (transient from the caller's point of view)"""
    pass


class StoredOrder(NamedTuple):
    orderId: str
    payload: bytes
    createdAt: str


class OrderStore:
    """
    Durable order store.

    Writes go through one WAL-mode connection serialized by a lock.
    Every loadAll() call opens its own read connection, so iterators can be
    consumed from any thread while writes continue.
    """

    def __init__(self, dbPath: str):
        """
        Open (and create if needed) the store.

        Args:
            dbPath: Path to the SQLite database file

        Raises:
            StoreError: If the database cannot be opened or initialized
        """
        self.log = getLogger()
        self.dbPath = Path(dbPath)
        self.dbPath.parent.mkdir(parents=True, exist_ok=True)
        self.conn: Optional[sqlite3.Connection] = None
        self._writeLock = threading.Lock()
        self._lastCreatedAt: Optional[datetime] = None
        self._connect()
        self._initSchema()

    def _connect(self):
        try:
            self.conn = sqlite3.connect(
                str(self.dbPath),
                check_same_thread=False,  # Shared by the ingest worker pool, guarded by _writeLock
                timeout=30.0
            )
            self.conn.execute("PRAGMA journal_mode=WAL")
            # NORMAL sync is durable across application crashes in WAL mode
            self.conn.execute("PRAGMA synchronous=NORMAL")
            self.conn.execute("PRAGMA cache_size=-16000")
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open store at {self.dbPath}: {e}")

    def _initSchema(self):
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {ORDERS_TABLE} (
                    id TEXT PRIMARY KEY NOT NULL,
                    payload BLOB NOT NULL,
                    createdAt TEXT NOT NULL,
                    updatedAt TEXT NOT NULL
                )
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{ORDERS_TABLE}_created
                ON {ORDERS_TABLE}(createdAt)
            """)
            self.conn.commit()

            row = cursor.execute(f"SELECT MAX(createdAt) FROM {ORDERS_TABLE}").fetchone()
            if row and row[0]:
                self._lastCreatedAt = datetime.fromisoformat(row[0])
        except sqlite3.Error as e:
            raise StoreError(f"Schema initialization failed: {e}")
        finally:
            cursor.close()

    def _nextTimestamp(self) -> str:
        """Wall-clock UTC, bumped by 1µs when the clock has not advanced. Caller holds _writeLock."""
        now = datetime.now(timezone.utc)
        if self._lastCreatedAt is not None and now <= self._lastCreatedAt:
            now = self._lastCreatedAt + timedelta(microseconds=1)
        return now.isoformat(timespec='microseconds')

    def upsert(self, orderId: str, payload: bytes,
               onCommit: Optional[Callable[[str, bytes], None]] = None) -> None:
        """
        Insert or replace the payload for orderId in one atomic statement.

        Idempotent: repeating the same (orderId, payload) leaves the row as is
        apart from updatedAt.

        Args:
            orderId: Order identifier
            payload: Canonical payload bytes
            onCommit: Called with (orderId, payload) after the commit, still under
                the write lock, so mirrors see writes in commit order

        Raises:
            StoreError: On any database failure (nothing is written)
        """
        if self.conn is None:
            raise StoreError("Store is closed")

        with self._writeLock:
            timestamp = self._nextTimestamp()
            try:
                self.conn.execute(f"""
                    INSERT INTO {ORDERS_TABLE} (id, payload, createdAt, updatedAt)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        payload = excluded.payload,
                        updatedAt = excluded.updatedAt
                """, (orderId, sqlite3.Binary(payload), timestamp, timestamp))
                self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                self.log.error(f'sqlite3.Error in upsert: {e}', orderId=orderId)
                raise StoreError(f"Upsert failed for {orderId}: {e}")

            # Only a committed insert consumes the timestamp
            created = datetime.fromisoformat(timestamp)
            if self._lastCreatedAt is None or created > self._lastCreatedAt:
                self._lastCreatedAt = created

            if onCommit is not None:
                onCommit(orderId, payload)

    def loadAll(self, limit: Optional[int] = DEFAULT_LIST_LIMIT) -> Iterator[StoredOrder]:
        """
        Lazily yield stored orders, newest first.

        Used by warm-start (limit=None loads every row) and by the list read
        path. The iterator is finite and single-use; call again to re-enumerate.

        Args:
            limit: Maximum rows to yield, None for no bound

        Raises:
            StoreError: On open, query, or fetch failure (raised while iterating)
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        return self._iterOrders(limit)

    def _iterOrders(self, limit: Optional[int]) -> Iterator[StoredOrder]:
        sql = f"SELECT id, payload, createdAt FROM {ORDERS_TABLE} ORDER BY createdAt DESC, rowid DESC"
        params = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)

        try:
            readConn = sqlite3.connect(str(self.dbPath), check_same_thread=False, timeout=30.0)
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open read connection: {e}")

        try:
            readConn.execute("PRAGMA query_only=ON")
            cursor = readConn.execute(sql, params)
            while True:
                rows = cursor.fetchmany(LOAD_BATCH_SIZE)
                if not rows:
                    break
                for orderId, payload, createdAt in rows:
                    yield StoredOrder(orderId, bytes(payload), createdAt)
        except sqlite3.Error as e:
            raise StoreError(f"Load failed: {e}")
        finally:
            readConn.close()

    def count(self) -> int:
        """Number of stored orders."""
        if self.conn is None:
            raise StoreError("Store is closed")
        with self._writeLock:
            try:
                return self.conn.execute(f"SELECT COUNT(*) FROM {ORDERS_TABLE}").fetchone()[0]
            except sqlite3.Error as e:
                raise StoreError(f"Count failed: {e}")

    def checkpoint(self, mode: str = 'PASSIVE') -> tuple:
        """
        Checkpoint the WAL file.

        Args:
            mode: PASSIVE (default, non-blocking), FULL, RESTART, or TRUNCATE

        Returns:
            (blocked, logPages, checkpointedPages), or (1, -1, -1) on failure
        """
        if mode not in ('PASSIVE', 'FULL', 'RESTART', 'TRUNCATE'):
            raise ValueError(f"Unknown checkpoint mode: {mode}")
        if not self.conn:
            return (1, -1, -1)

        with self._writeLock:
            try:
                result = self.conn.execute(f"PRAGMA wal_checkpoint({mode})").fetchone()
                return tuple(result) if result else (1, -1, -1)
            except sqlite3.Error as e:
                self.log.warning(f'Checkpoint failed: {e}')
                return (1, -1, -1)

    def close(self):
        """Close the write connection with a final TRUNCATE checkpoint."""
        if self.conn:
            with self._writeLock:
                try:
                    self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
                except sqlite3.Error as e:
                    self.log.warning(f'Final checkpoint failed: {e}')
                self.conn.close()
                self.conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
