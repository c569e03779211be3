"""
SQLite-backed stats store.

Counters survive restarts. Every increment is an
``INSERT ... ON CONFLICT DO UPDATE`` so concurrent writers (threads or
processes sharing the file) never lose updates; the three increments of
one event share a transaction.
"""

import logging
import os
import sqlite3
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import StorageError
from .keys import day_key, endpoint_key
from .store import Clock, StatsStore

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS endpoint_counts (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        endpoint   TEXT NOT NULL UNIQUE,
        count      INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_counts (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        day        TEXT NOT NULL UNIQUE,
        count      INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS global_stats (
        name       TEXT PRIMARY KEY,
        value      TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)

_BUMP_ENDPOINT = (
    "INSERT INTO endpoint_counts (endpoint, count, created_at, updated_at) "
    "VALUES (?, 1, ?, ?) "
    "ON CONFLICT(endpoint) DO UPDATE SET "
    "count = endpoint_counts.count + 1, updated_at = excluded.updated_at"
)
_BUMP_DAY = (
    "INSERT INTO daily_counts (day, count, created_at, updated_at) "
    "VALUES (?, 1, ?, ?) "
    "ON CONFLICT(day) DO UPDATE SET "
    "count = daily_counts.count + 1, updated_at = excluded.updated_at"
)
_BUMP_TOTAL = (
    "INSERT INTO global_stats (name, value, updated_at) "
    "VALUES ('total_requests', '1', ?) "
    "ON CONFLICT(name) DO UPDATE SET "
    "value = CAST(CAST(global_stats.value AS INTEGER) + 1 AS TEXT), "
    "updated_at = excluded.updated_at"
)
_SEED_STAT = (
    "INSERT OR IGNORE INTO global_stats (name, value, updated_at) VALUES (?, ?, ?)"
)
_SET_STAT = (
    "INSERT INTO global_stats (name, value, updated_at) VALUES (?, ?, ?) "
    "ON CONFLICT(name) DO UPDATE SET value = excluded.value, "
    "updated_at = excluded.updated_at"
)


class PersistentStatsStore(StatsStore):
    """Durable store kept in a small SQLite table set.

    Args:
        db_path: SQLite file; parent directories are created.
        clock: Callable returning the current local datetime.
        timeout: Seconds to wait on a locked database before failing.

    Raises:
        StorageError: if the file or schema cannot be set up, and from any
            operation that hits an I/O failure or runs after ``close()``.
    """

    backend = "sqlite"

    def __init__(self, db_path: str, clock: Optional[Clock] = None, timeout: float = 5.0):
        super().__init__(clock)
        self.db_path = db_path
        self._timeout = timeout
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = self._connect()

    def _connect(self) -> sqlite3.Connection:
        try:
            dir_path = os.path.dirname(os.path.abspath(self.db_path))
            os.makedirs(dir_path, exist_ok=True)
            conn = sqlite3.connect(
                self.db_path, timeout=self._timeout, check_same_thread=False
            )
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"cannot open stats database {self.db_path}: {exc}") from exc

        try:
            try:
                conn.execute("PRAGMA journal_mode=WAL")
            except sqlite3.OperationalError:
                logger.debug("WAL journal mode unavailable for %s", self.db_path)
            now = self._stamp()
            with conn:
                for ddl in _SCHEMA:
                    conn.execute(ddl)
                conn.execute(_SEED_STAT, ("total_requests", "0", now))
                # Preserved across restarts: only written when absent
                conn.execute(_SEED_STAT, ("start_time", now, now))
        except sqlite3.Error as exc:
            conn.close()
            raise StorageError(f"cannot initialise stats schema in {self.db_path}: {exc}") from exc

        logger.info("Stats database ready at %s", self.db_path)
        return conn

    def _stamp(self) -> str:
        return self.now().isoformat()

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError("stats store is closed")
        return self._conn

    def _write(self, statements: List[Tuple[str, Tuple[Any, ...]]]) -> None:
        """Run statements in one transaction."""
        with self._lock:
            conn = self._require_conn()
            try:
                with conn:
                    for sql, params in statements:
                        conn.execute(sql, params)
            except sqlite3.Error as exc:
                raise StorageError(f"stats write failed: {exc}") from exc

    def _query(self, sql: str, params: Tuple[Any, ...] = ()) -> List[tuple]:
        with self._lock:
            conn = self._require_conn()
            try:
                return conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise StorageError(f"stats query failed: {exc}") from exc

    # ------------------------------------------------------------------
    # StatsStore API
    # ------------------------------------------------------------------
    def record_event(self, path: str, method: str = "GET") -> None:
        key = endpoint_key(path, method)
        now = self.now()
        stamp = now.isoformat()
        self._write([
            (_BUMP_ENDPOINT, (key, stamp, stamp)),
            (_BUMP_DAY, (day_key(now), stamp, stamp)),
            (_BUMP_TOTAL, (stamp,)),
        ])

    def get_endpoint_count(self, path: str, method: str = "GET") -> int:
        rows = self._query(
            "SELECT count FROM endpoint_counts WHERE endpoint = ?",
            (endpoint_key(path, method),),
        )
        return int(rows[0][0]) if rows else 0

    def get_all_endpoint_counts(self) -> Dict[str, int]:
        rows = self._query(
            "SELECT endpoint, count FROM endpoint_counts ORDER BY count DESC, id ASC"
        )
        return {endpoint: int(count) for endpoint, count in rows}

    def get_total_requests(self) -> int:
        rows = self._query("SELECT value FROM global_stats WHERE name = 'total_requests'")
        return int(rows[0][0]) if rows else 0

    def get_start_time(self) -> datetime:
        rows = self._query("SELECT value FROM global_stats WHERE name = 'start_time'")
        if not rows:
            raise StorageError("start_time row is missing")
        try:
            return datetime.fromisoformat(rows[0][0])
        except ValueError as exc:
            raise StorageError(f"corrupt start_time value {rows[0][0]!r}") from exc

    def _day_counts(self, days: Iterable[str]) -> Dict[str, int]:
        days = list(days)
        if not days:
            return {}
        marks = ",".join("?" for _ in days)
        rows = self._query(
            f"SELECT day, count FROM daily_counts WHERE day IN ({marks})", tuple(days)
        )
        return {day: int(count) for day, count in rows}

    def reset(self) -> None:
        stamp = self._stamp()
        self._write([
            ("DELETE FROM endpoint_counts", ()),
            ("DELETE FROM daily_counts", ()),
            # restart AUTOINCREMENT so first-seen order begins afresh
            ("DELETE FROM sqlite_sequence WHERE name IN ('endpoint_counts', 'daily_counts')", ()),
            (_SET_STAT, ("total_requests", "0", stamp)),
            (_SET_STAT, ("start_time", stamp, stamp)),
        ])
        logger.info("Stats database %s reset", self.db_path)

    def close(self) -> None:
        with self._lock:
            conn, self._conn = self._conn, None
            if conn is None:
                return
            try:
                conn.close()
            except sqlite3.Error:
                logger.exception("Error while closing stats database %s", self.db_path)
