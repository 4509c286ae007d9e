"""
Bounded SQLite connection pool.

Connections are created lazily up to ``max_size`` and handed out through a
queue; a caller that finds the pool exhausted waits up to
``connect_timeout`` seconds before failing with POOL_TIMEOUT. Each borrowed
connection carries a progress handler that interrupts any statement still
running ``query_timeout`` seconds after the borrow began.
"""

import logging
import queue
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from execution.ledger.errors import LedgerError, LedgerErrorKind

logger = logging.getLogger(__name__)

# SQLite VM instructions between progress handler calls
_PROGRESS_STEPS = 1000


class _Deadline:
    """Mutable per-connection statement deadline read by the progress handler."""

    __slots__ = ("expires_at",)

    def __init__(self) -> None:
        self.expires_at: float | None = None

    def __call__(self) -> int:
        # Non-zero aborts the running statement with OperationalError("interrupted")
        if self.expires_at is not None and time.monotonic() > self.expires_at:
            return 1
        return 0


class SQLiteConnectionPool:
    """
    Thread-safe bounded pool of SQLite connections.

    Example:
        >>> pool = SQLiteConnectionPool("data_cache/ledger.db", max_size=4)
        >>> with pool.connection() as conn:
        ...     conn.execute("SELECT 1")
        >>> pool.close()
    """

    def __init__(
        self,
        db_path: str | Path,
        max_size: int = 4,
        connect_timeout: float = 30.0,
        query_timeout: float = 10.0,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")

        self._in_memory = str(db_path) == ":memory:"
        self._db_path = str(db_path) if self._in_memory else str(Path(db_path))
        if not self._in_memory:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        elif max_size > 1:
            # Every in-memory connection is a separate database
            logger.debug("In-memory ledger database: pool size forced to 1")
            max_size = 1

        self.max_size = max_size
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout

        self._idle: queue.Queue[sqlite3.Connection] = queue.Queue(maxsize=max_size)
        self._deadlines: dict[int, _Deadline] = {}
        self._all: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        self._closed = False

        self._stats = {
            "created": 0,
            "acquisitions": 0,
            "releases": 0,
            "timeouts": 0,
        }

    @property
    def db_path(self) -> str:
        return self._db_path

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            timeout=self.connect_timeout,
        )
        if not self._in_memory:
            conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row

        deadline = _Deadline()
        conn.set_progress_handler(deadline, _PROGRESS_STEPS)
        self._deadlines[id(conn)] = deadline
        return conn

    def acquire(self) -> sqlite3.Connection:
        """
        Borrow a connection.

        Raises:
            LedgerError: POOL_TIMEOUT when no connection frees up in time,
                DATABASE_ERROR when the pool is closed or cannot connect
        """
        if self._closed:
            raise LedgerError(LedgerErrorKind.DATABASE_ERROR, "connection pool is closed", retryable=False)

        conn: sqlite3.Connection | None = None
        try:
            conn = self._idle.get_nowait()
        except queue.Empty:
            with self._lock:
                if len(self._all) < self.max_size:
                    try:
                        conn = self._create_connection()
                    except sqlite3.Error as e:
                        raise LedgerError(
                            LedgerErrorKind.DATABASE_ERROR,
                            f"cannot open ledger database {self._db_path}: {e}",
                        ) from e
                    self._all.append(conn)
                    self._stats["created"] += 1

        if conn is None:
            try:
                conn = self._idle.get(timeout=self.connect_timeout)
            except queue.Empty:
                with self._lock:
                    self._stats["timeouts"] += 1
                raise LedgerError(
                    LedgerErrorKind.POOL_TIMEOUT,
                    f"no ledger connection available within {self.connect_timeout:.1f}s "
                    f"(pool size {self.max_size})",
                )

        self._deadlines[id(conn)].expires_at = time.monotonic() + self.query_timeout
        with self._lock:
            self._stats["acquisitions"] += 1
        return conn

    def release(self, conn: sqlite3.Connection) -> None:
        deadline = self._deadlines.get(id(conn))
        if deadline is not None:
            deadline.expires_at = None
        with self._lock:
            self._stats["releases"] += 1
        if self._closed:
            conn.close()
            return
        self._idle.put_nowait(conn)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        conn = self.acquire()
        try:
            yield conn
        finally:
            self.release(conn)

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            stats = self._stats.copy()
            stats["open"] = len(self._all)
        stats["idle"] = self._idle.qsize()
        stats["max_size"] = self.max_size
        return stats

    def close(self) -> None:
        """Close idle connections; borrowed ones close when released."""
        self._closed = True
        while True:
            try:
                conn = self._idle.get_nowait()
            except queue.Empty:
                break
            conn.close()
        logger.debug(f"Connection pool closed: {self._db_path}")
