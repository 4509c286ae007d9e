"""
SQLite-backed append-only decision ledger.

Every decision the pipeline makes is appended here exactly once. The only
permitted write after creation is recording the exit of an executed trade,
and that write happens at most once per entry.

Guarantees:
- APPEND-ONLY: delete() and overwrite() always raise; BEFORE DELETE and
  BEFORE UPDATE triggers enforce the same rules for any other writer
- ATOMIC EXIT: update_exit is one conditional UPDATE, so two concurrent
  exits for the same entry cannot both succeed
- CONSISTENT: a CHECK constraint ties decision = 'EXECUTE' to a present
  execution, so no row holds a decision without its execution
- RETRIES: transient database errors (busy, locked, pool timeout) are
  retried with exponential backoff; constraint violations never are

Usage:
    >>> ledger = SQLiteLedger(Path("data_cache/ledger.db"))
    >>> entry = ledger.append(LedgerEntryCreate(...))
    >>> ledger.update_exit(entry.id, exit_data)
    >>> rows = ledger.query(LedgerQuery(decision=Verdict.EXECUTE, limit=50))
"""

import asyncio
import json
import logging
import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generator, Mapping, Optional, TypeVar, Union

from pydantic import ValidationError

from config.constants import Verdict
from config.logging_config import LogCategory
from config.settings import LedgerConfig
from core.domain.base import ensure_utc, now_utc
from core.domain.ledger import ExitData, LedgerEntry, LedgerEntryCreate, LedgerQuery
from execution.ledger.errors import LedgerError, LedgerErrorKind
from execution.ledger.pool import SQLiteConnectionPool
from execution.ledger.queries import classify_trade_type

logger = logging.getLogger(__name__)

T = TypeVar("T")

SQLITE_SCHEMA_VERSION = 2

# Columns frozen at append time; the update trigger rejects changes to any of them
FROZEN_COLUMNS = (
    "id",
    "created_at",
    "engine_version",
    "ticker",
    "timeframe",
    "quality",
    "direction",
    "decision",
    "decision_reason",
    "confluence_score",
    "dte_bucket",
    "trade_type",
    "regime_volatility",
    "signal",
    "phase_context",
    "decision_breakdown",
    "execution",
    "regime",
    "hypothetical",
    "decision_inputs",
)

_TRANSIENT_MARKERS = ("locked", "busy")

ExitPayload = Union[ExitData, Mapping[str, Any]]


def _iso(value: datetime) -> str:
    """Fixed-width UTC timestamp so text ordering matches time ordering."""
    return ensure_utc(value).isoformat(timespec="microseconds")


def _is_transient(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


class SQLiteLedger:
    """
    Append-only ledger over a pooled SQLite database.

    Design principles:
    - WAL MODE: readers never block the single writer
    - SERIALIZED WRITES: appends and exit updates run under one write lock
    - INDEXED: every query filter has an index
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS ledger_entries (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        engine_version TEXT NOT NULL,
        ticker TEXT NOT NULL,
        timeframe TEXT NOT NULL,
        quality TEXT NOT NULL,
        direction TEXT NOT NULL,
        decision TEXT NOT NULL CHECK (decision IN ('EXECUTE', 'WAIT', 'SKIP')),
        decision_reason TEXT NOT NULL,
        confluence_score REAL NOT NULL,
        dte_bucket TEXT,
        trade_type TEXT NOT NULL,
        regime_volatility TEXT NOT NULL,
        signal TEXT NOT NULL,
        phase_context TEXT,
        decision_breakdown TEXT NOT NULL,
        execution TEXT,
        regime TEXT NOT NULL,
        hypothetical TEXT,
        decision_inputs TEXT,
        exit TEXT,
        exit_recorded_at TEXT,
        CHECK ((decision = 'EXECUTE') = (execution IS NOT NULL))
    )
    """

    CREATE_INDEXES_SQL = [
        "CREATE INDEX IF NOT EXISTS idx_ledger_created_at ON ledger_entries(created_at)",
        "CREATE INDEX IF NOT EXISTS idx_ledger_decision ON ledger_entries(decision)",
        "CREATE INDEX IF NOT EXISTS idx_ledger_ticker ON ledger_entries(ticker)",
        "CREATE INDEX IF NOT EXISTS idx_ledger_timeframe ON ledger_entries(timeframe)",
        "CREATE INDEX IF NOT EXISTS idx_ledger_dte_bucket ON ledger_entries(dte_bucket)",
    ]

    CREATE_DELETE_TRIGGER_SQL = """
    CREATE TRIGGER IF NOT EXISTS ledger_entries_no_delete
    BEFORE DELETE ON ledger_entries
    BEGIN
        SELECT RAISE(ABORT, 'DELETE_NOT_ALLOWED: ledger entries are append-only');
    END
    """

    CREATE_UPDATE_TRIGGER_SQL = f"""
    CREATE TRIGGER IF NOT EXISTS ledger_entries_exit_only
    BEFORE UPDATE ON ledger_entries
    WHEN OLD.exit IS NOT NULL
        OR NEW.exit IS NULL
        OR {" OR ".join(f"NEW.{col} IS NOT OLD.{col}" for col in FROZEN_COLUMNS)}
    BEGIN
        SELECT RAISE(ABORT, 'OVERWRITE_NOT_ALLOWED: only a single exit write is permitted');
    END
    """

    SCHEMA_VERSION_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS schema_meta (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """

    def __init__(self, db_path: str | Path | None = None, config: LedgerConfig | None = None):
        """
        Initialize the ledger.

        Args:
            db_path: Database file; overrides config.db_path when given
            config: Pool, timeout and retry settings
        """
        self.config = config or LedgerConfig()
        self._db_path = str(db_path) if db_path is not None else self.config.db_path
        self._pool = SQLiteConnectionPool(
            self._db_path,
            max_size=self.config.pool_size,
            connect_timeout=self.config.connect_timeout,
            query_timeout=self.config.query_timeout,
        )
        self._write_lock = threading.Lock()
        self._closed = False

        self._with_retry("init_schema", self._init_schema)

        logger.info(
            f"{LogCategory.LEDGER} SQLiteLedger initialized: {self._db_path} "
            f"(db v{SQLITE_SCHEMA_VERSION}, pool={self.config.pool_size})"
        )

    @property
    def db_path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Write transaction: pooled connection, write lock, commit or rollback."""
        with self._pool.connection() as conn:
            with self._write_lock:
                try:
                    yield conn
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

    def _translate(self, operation: str, error: sqlite3.Error, entry_id: str | None) -> LedgerError:
        message = str(error)
        if isinstance(error, sqlite3.IntegrityError):
            if "DELETE_NOT_ALLOWED" in message:
                kind = LedgerErrorKind.DELETE_NOT_ALLOWED
            elif "OVERWRITE_NOT_ALLOWED" in message:
                kind = LedgerErrorKind.OVERWRITE_NOT_ALLOWED
            else:
                kind = LedgerErrorKind.VALIDATION_ERROR
            return LedgerError(kind, f"{operation}: {message}", entry_id=entry_id, retryable=False)
        retryable = isinstance(error, sqlite3.OperationalError) and _is_transient(error)
        return LedgerError(
            LedgerErrorKind.DATABASE_ERROR,
            f"{operation}: {message}",
            entry_id=entry_id,
            retryable=retryable,
        )

    def _with_retry(self, operation: str, func: Callable[[], T], entry_id: str | None = None) -> T:
        """
        Run ``func`` retrying transient failures with exponential backoff.

        Raises:
            LedgerError: The last failure once attempts are exhausted, or
                immediately for non-retryable failures
        """
        attempts = self.config.max_retry_attempts
        for attempt in range(attempts):
            try:
                return func()
            except LedgerError as e:
                error = e
            except sqlite3.Error as e:
                error = self._translate(operation, e, entry_id)
                error.__cause__ = e

            if not error.retryable:
                raise error
            if attempt < attempts - 1:
                delay = self.config.retry_base_delay * (2 ** attempt)
                logger.warning(
                    f"{LogCategory.LEDGER} Transient failure in {operation} "
                    f"(attempt {attempt + 1}/{attempts}), retrying in {delay:.2f}s: {error}"
                )
                time.sleep(delay)
            else:
                logger.error(
                    f"{LogCategory.LEDGER} {operation} failed after {attempts} attempts: {error}"
                )
                raise error
        raise LedgerError(LedgerErrorKind.DATABASE_ERROR, f"{operation}: no attempts made")

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(self.CREATE_TABLE_SQL)
            self._migrate(conn)
            for idx_sql in self.CREATE_INDEXES_SQL:
                conn.execute(idx_sql)
            conn.execute(self.CREATE_DELETE_TRIGGER_SQL)
            conn.execute(self.CREATE_UPDATE_TRIGGER_SQL)
            conn.execute(self.SCHEMA_VERSION_TABLE_SQL)
            conn.execute(
                "INSERT OR REPLACE INTO schema_meta (key, value) VALUES (?, ?)",
                ("sqlite_schema_version", str(SQLITE_SCHEMA_VERSION)),
            )

    def _migrate(self, conn: sqlite3.Connection) -> None:
        """Bring a v1 database up to the current column set."""
        columns = {row["name"] for row in conn.execute("PRAGMA table_info(ledger_entries)")}
        if "decision_inputs" in columns:
            return
        conn.execute("ALTER TABLE ledger_entries ADD COLUMN decision_inputs TEXT")
        # The v1 update trigger does not freeze the new column
        conn.execute("DROP TRIGGER IF EXISTS ledger_entries_exit_only")
        logger.info(f"{LogCategory.LEDGER} Migrated ledger_entries: added decision_inputs column")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntryCreate | Mapping[str, Any]) -> LedgerEntry:
        """
        Append a new entry with a fresh id and UTC creation time.

        Raises:
            LedgerError: VALIDATION_ERROR for an invalid entry, DATABASE_ERROR
                or POOL_TIMEOUT once retries are exhausted
        """
        if not isinstance(entry, LedgerEntryCreate):
            try:
                entry = LedgerEntryCreate.model_validate(entry)
            except ValidationError as e:
                first = e.errors()[0]
                raise LedgerError(
                    LedgerErrorKind.VALIDATION_ERROR,
                    f"invalid ledger entry: {first.get('msg')}",
                    field=".".join(str(part) for part in first.get("loc", ())) or None,
                ) from e

        entry_id = str(uuid.uuid4())
        created_at = now_utc()
        stored = LedgerEntry.model_validate({**entry.model_dump(), "id": entry_id, "created_at": created_at})
        params = self._row_params(stored)

        def _insert() -> None:
            with self._transaction() as conn:
                conn.execute(
                    f"INSERT INTO ledger_entries ({', '.join(FROZEN_COLUMNS)}) "
                    f"VALUES ({', '.join('?' for _ in FROZEN_COLUMNS)})",
                    params,
                )

        self._with_retry("append", _insert, entry_id)
        logger.debug(
            f"{LogCategory.LEDGER} Appended {stored.decision.value} {stored.signal.ticker}/"
            f"{stored.signal.timeframe}: {entry_id}"
        )
        return stored

    @staticmethod
    def _dump(model: Any) -> str | None:
        if model is None:
            return None
        return json.dumps(model.to_dict(), sort_keys=True)

    def _row_params(self, entry: LedgerEntry) -> tuple:
        signal = entry.signal
        return (
            entry.id,
            _iso(entry.created_at),
            entry.engine_version,
            signal.ticker,
            signal.timeframe,
            signal.quality.value,
            signal.direction.value,
            entry.decision.value,
            entry.decision_reason,
            entry.confluence_score,
            entry.execution.dte_bucket.value if entry.execution else None,
            classify_trade_type(signal.timeframe).value,
            entry.regime.volatility.value,
            self._dump(signal),
            self._dump(entry.phase_context),
            self._dump(entry.decision_breakdown),
            self._dump(entry.execution),
            self._dump(entry.regime),
            self._dump(entry.hypothetical),
            self._dump(entry.decision_inputs),
        )

    def _coerce_exit(self, entry_id: str, exit_data: ExitPayload) -> ExitData:
        if isinstance(exit_data, ExitData):
            return exit_data
        unknown = sorted(set(exit_data) - set(ExitData.model_fields))
        if unknown:
            raise LedgerError(
                LedgerErrorKind.INVALID_UPDATE,
                f"exit update may only carry exit fields; got {', '.join(unknown)}",
                entry_id=entry_id,
                field=unknown[0],
            )
        try:
            return ExitData.model_validate(exit_data)
        except ValidationError as e:
            first = e.errors()[0]
            raise LedgerError(
                LedgerErrorKind.VALIDATION_ERROR,
                f"invalid exit data: {first.get('msg')}",
                entry_id=entry_id,
                field=".".join(str(part) for part in first.get("loc", ())) or None,
            ) from e

    def update_exit(self, entry_id: str, exit_data: ExitPayload) -> None:
        """
        Record the exit of an executed entry. Succeeds at most once per entry.

        Raises:
            LedgerError: ENTRY_NOT_FOUND, EXIT_ALREADY_RECORDED, INVALID_UPDATE
                (entry not executed, or non-exit fields supplied) or
                VALIDATION_ERROR (exit fields out of range)
        """
        exit_model = self._coerce_exit(entry_id, exit_data)
        payload = self._dump(exit_model)

        def _update() -> None:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE ledger_entries
                    SET exit = ?, exit_recorded_at = ?
                    WHERE id = ? AND decision = 'EXECUTE' AND exit IS NULL
                    """,
                    (payload, _iso(now_utc()), entry_id),
                )
                if cursor.rowcount == 1:
                    return

                row = conn.execute(
                    "SELECT decision, exit FROM ledger_entries WHERE id = ?", (entry_id,)
                ).fetchone()
                if row is None:
                    raise LedgerError(
                        LedgerErrorKind.ENTRY_NOT_FOUND, "no ledger entry with this id", entry_id=entry_id
                    )
                if row["decision"] != Verdict.EXECUTE.value:
                    raise LedgerError(
                        LedgerErrorKind.INVALID_UPDATE,
                        f"cannot record an exit on a {row['decision']} entry",
                        entry_id=entry_id,
                        field="decision",
                    )
                raise LedgerError(
                    LedgerErrorKind.EXIT_ALREADY_RECORDED,
                    "exit data is already recorded",
                    entry_id=entry_id,
                    field="exit",
                )

        self._with_retry("update_exit", _update, entry_id)
        logger.info(
            f"{LogCategory.LEDGER} Exit recorded for {entry_id}: {exit_model.exit_reason.value} "
            f"net={exit_model.pnl_net:.2f}"
        )

    def delete(self, entry_id: str) -> None:
        """Ledger entries are never deleted."""
        logger.error(f"{LogCategory.LEDGER} Rejected delete of ledger entry {entry_id}")
        raise LedgerError(
            LedgerErrorKind.DELETE_NOT_ALLOWED, "ledger entries are append-only", entry_id=entry_id
        )

    def overwrite(self, entry_id: str, **fields: Any) -> None:
        """Only update_exit may write to an existing entry."""
        logger.error(
            f"{LogCategory.LEDGER} Rejected overwrite of {sorted(fields)} on ledger entry {entry_id}"
        )
        raise LedgerError(
            LedgerErrorKind.OVERWRITE_NOT_ALLOWED,
            "only exit data may be added to an existing entry",
            entry_id=entry_id,
            field=next(iter(sorted(fields)), None),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _row_to_entry(self, row: sqlite3.Row) -> LedgerEntry:
        def _load(column: str) -> Any:
            raw = row[column]
            return json.loads(raw) if raw is not None else None

        return LedgerEntry.model_validate({
            "id": row["id"],
            "created_at": datetime.fromisoformat(row["created_at"]),
            "engine_version": row["engine_version"],
            "signal": _load("signal"),
            "phase_context": _load("phase_context"),
            "decision": row["decision"],
            "decision_reason": row["decision_reason"],
            "decision_breakdown": _load("decision_breakdown"),
            "confluence_score": row["confluence_score"],
            "execution": _load("execution"),
            "regime": _load("regime"),
            "hypothetical": _load("hypothetical"),
            "decision_inputs": _load("decision_inputs"),
            "exit": _load("exit"),
        })

    def get(self, entry_id: str) -> Optional[LedgerEntry]:
        def _select() -> Optional[sqlite3.Row]:
            with self._pool.connection() as conn:
                return conn.execute(
                    "SELECT * FROM ledger_entries WHERE id = ?", (entry_id,)
                ).fetchone()

        row = self._with_retry("get", _select, entry_id)
        return self._row_to_entry(row) if row is not None else None

    @staticmethod
    def _where(filters: LedgerQuery) -> tuple[str, list[Any]]:
        conditions: list[str] = []
        params: list[Any] = []

        equals = (
            ("decision", filters.decision),
            ("timeframe", filters.timeframe),
            ("quality", filters.quality),
            ("engine_version", filters.engine_version),
            ("dte_bucket", filters.dte_bucket),
            ("trade_type", filters.trade_type),
            ("regime_volatility", filters.regime_volatility),
        )
        for column, value in equals:
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value.value if hasattr(value, "value") else value)

        if filters.ticker:
            conditions.append("ticker = ?")
            params.append(filters.ticker.strip().upper())
        if filters.from_date:
            conditions.append("created_at >= ?")
            params.append(_iso(filters.from_date))
        if filters.to_date:
            conditions.append("created_at <= ?")
            params.append(_iso(filters.to_date))
        if filters.has_exit is True:
            conditions.append("exit IS NOT NULL")
        elif filters.has_exit is False:
            conditions.append("exit IS NULL")
        if filters.min_confluence is not None:
            conditions.append("confluence_score >= ?")
            params.append(filters.min_confluence)
        if filters.max_confluence is not None:
            conditions.append("confluence_score <= ?")
            params.append(filters.max_confluence)
        if filters.exit_reason is not None:
            conditions.append("json_extract(exit, '$.exit_reason') = ?")
            params.append(filters.exit_reason.value)
        if filters.has_hypothetical is True:
            conditions.append("hypothetical IS NOT NULL")
        elif filters.has_hypothetical is False:
            conditions.append("hypothetical IS NULL")

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        return where_clause, params

    def query(self, filters: LedgerQuery | None = None) -> list[LedgerEntry]:
        """Entries matching ``filters``, newest first, one page at a time."""
        filters = filters or LedgerQuery()
        where_clause, params = self._where(filters)

        def _select() -> list[sqlite3.Row]:
            with self._pool.connection() as conn:
                return conn.execute(
                    f"SELECT * FROM ledger_entries WHERE {where_clause} "
                    f"ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?",
                    [*params, filters.limit, filters.offset],
                ).fetchall()

        rows = self._with_retry("query", _select)
        return [self._row_to_entry(row) for row in rows]

    def count(self, filters: LedgerQuery | None = None) -> int:
        """Number of entries matching ``filters``, ignoring pagination."""
        where_clause, params = self._where(filters or LedgerQuery())

        def _select() -> int:
            with self._pool.connection() as conn:
                row = conn.execute(
                    f"SELECT COUNT(*) AS n FROM ledger_entries WHERE {where_clause}", params
                ).fetchone()
                return int(row["n"])

        return self._with_retry("count", _select)

    def get_statistics(self) -> dict[str, Any]:
        """Get summary statistics of the ledger."""

        def _select() -> dict[str, Any]:
            with self._pool.connection() as conn:
                total = conn.execute("SELECT COUNT(*) FROM ledger_entries").fetchone()[0]
                by_decision = {
                    row["decision"]: row["n"]
                    for row in conn.execute(
                        "SELECT decision, COUNT(*) AS n FROM ledger_entries GROUP BY decision"
                    )
                }
                with_exit = conn.execute(
                    "SELECT COUNT(*) FROM ledger_entries WHERE exit IS NOT NULL"
                ).fetchone()[0]
                bounds = conn.execute(
                    "SELECT MIN(created_at), MAX(created_at) FROM ledger_entries"
                ).fetchone()
            return {
                "total": total,
                "by_decision": {verdict.value: by_decision.get(verdict.value, 0) for verdict in Verdict},
                "with_exit": with_exit,
                "open_positions": by_decision.get(Verdict.EXECUTE.value, 0) - with_exit,
                "first_entry": bounds[0],
                "last_entry": bounds[1],
                "db_path": self._db_path,
                "pool": self._pool.get_stats(),
            }

        return self._with_retry("get_statistics", _select)

    # ------------------------------------------------------------------
    # Async wrappers
    # ------------------------------------------------------------------

    @property
    def _async_timeout(self) -> float:
        return self.config.connect_timeout + self.config.query_timeout

    async def _run_async(self, func: Callable[[], T]) -> T:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(loop.run_in_executor(None, func), timeout=self._async_timeout)

    async def append_async(self, entry: LedgerEntryCreate | Mapping[str, Any]) -> LedgerEntry:
        """Async append."""
        return await self._run_async(lambda: self.append(entry))

    async def update_exit_async(self, entry_id: str, exit_data: ExitPayload) -> None:
        """Async update exit."""
        await self._run_async(lambda: self.update_exit(entry_id, exit_data))

    async def get_async(self, entry_id: str) -> Optional[LedgerEntry]:
        """Async get."""
        return await self._run_async(lambda: self.get(entry_id))

    async def query_async(self, filters: LedgerQuery | None = None) -> list[LedgerEntry]:
        """Async query."""
        return await self._run_async(lambda: self.query(filters))

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._pool.close()
            logger.debug(f"{LogCategory.LEDGER} Ledger closed: {self._db_path}")

    def __enter__(self) -> "SQLiteLedger":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
