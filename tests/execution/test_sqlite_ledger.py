"""
Unit tests for the SQLite ledger.

Tests include:
- Append and read back
- Single exit update and its failure modes
- Append-only enforcement (API and triggers)
- Query filtering and pagination
- Transient failure retries
- Async wrappers
"""

import re
import sqlite3
from datetime import timedelta

import pytest

from config.constants import DteBucket, ExitReason, TradeType, Verdict
from core.domain.base import now_utc
from core.domain.ledger import LedgerEntry, LedgerQuery
from execution.ledger import LedgerError, LedgerErrorKind, SQLiteConnectionPool, SQLiteLedger
from execution.ledger.sqlite_ledger import FROZEN_COLUMNS, SQLITE_SCHEMA_VERSION
from factories import executed_entry, exit_for, unexecuted_entry


@pytest.fixture
def populated(ledger):
    """One EXECUTE, one WAIT and one SKIP entry, appended in that order."""
    executed = ledger.append(executed_entry())
    waited = ledger.append(unexecuted_entry("WAIT", timeframe="15"))
    skipped = ledger.append(unexecuted_entry("SKIP", timeframe="60", ticker="QQQ"))
    return executed, waited, skipped


class TestAppend:
    def test_append_assigns_identity(self, ledger):
        before = now_utc()
        entry = ledger.append(unexecuted_entry())
        assert len(entry.id) == 36
        assert before <= entry.created_at <= now_utc()
        assert entry.exit is None

    def test_read_back(self, ledger):
        entry = ledger.append(executed_entry())
        fetched = ledger.get(entry.id)
        assert fetched.to_dict() == entry.to_dict()
        assert fetched.execution.dte_bucket == DteBucket.MONTHLY

    def test_unique_ids(self, ledger):
        ids = {ledger.append(unexecuted_entry()).id for _ in range(5)}
        assert len(ids) == 5

    def test_append_mapping(self, ledger):
        entry = ledger.append(unexecuted_entry().model_dump())
        assert ledger.get(entry.id).decision == Verdict.WAIT

    def test_invalid_mapping_rejected(self, ledger):
        payload = {**unexecuted_entry().model_dump(), "confluence_score": 150.0}
        with pytest.raises(LedgerError) as exc:
            ledger.append(payload)
        assert exc.value.kind == LedgerErrorKind.VALIDATION_ERROR
        assert exc.value.field == "confluence_score"
        assert not exc.value.retryable
        assert ledger.count() == 0

    def test_execute_without_execution_rejected(self, ledger):
        payload = {**unexecuted_entry().model_dump(), "decision": "EXECUTE", "hypothetical": None}
        with pytest.raises(LedgerError) as exc:
            ledger.append(payload)
        assert exc.value.kind == LedgerErrorKind.VALIDATION_ERROR

    def test_get_missing(self, ledger):
        assert ledger.get("no-such-id") is None

    def test_persists_across_reopen(self, tmp_path, ledger_config):
        path = tmp_path / "reopen.db"
        with SQLiteLedger(path, config=ledger_config) as first:
            entry = first.append(unexecuted_entry())
        with SQLiteLedger(path, config=ledger_config) as second:
            assert second.get(entry.id).decision_reason == entry.decision_reason


class TestUpdateExit:
    def test_records_exit_once(self, ledger):
        entry = ledger.append(executed_entry())
        exit_data = exit_for(entry.execution)
        ledger.update_exit(entry.id, exit_data)

        fetched = ledger.get(entry.id)
        assert fetched.has_exit
        assert fetched.exit.pnl_net == pytest.approx(exit_data.pnl_net)
        assert fetched.decision_reason == entry.decision_reason

    def test_second_exit_rejected(self, ledger):
        entry = ledger.append(executed_entry())
        ledger.update_exit(entry.id, exit_for(entry.execution))
        with pytest.raises(LedgerError) as exc:
            ledger.update_exit(entry.id, exit_for(entry.execution, underlying=470.0))
        assert exc.value.kind == LedgerErrorKind.EXIT_ALREADY_RECORDED
        assert ledger.get(entry.id).exit.underlying_at_exit == 465.0

    def test_missing_entry(self, ledger):
        entry = executed_entry()
        with pytest.raises(LedgerError) as exc:
            ledger.update_exit("no-such-id", exit_for(entry.execution))
        assert exc.value.kind == LedgerErrorKind.ENTRY_NOT_FOUND
        assert exc.value.entry_id == "no-such-id"

    def test_exit_on_wait_rejected(self, ledger):
        waited = ledger.append(unexecuted_entry())
        execution = executed_entry().execution
        with pytest.raises(LedgerError) as exc:
            ledger.update_exit(waited.id, exit_for(execution))
        assert exc.value.kind == LedgerErrorKind.INVALID_UPDATE
        assert ledger.get(waited.id).exit is None

    def test_non_exit_fields_rejected(self, ledger):
        entry = ledger.append(executed_entry())
        payload = {**exit_for(entry.execution).model_dump(), "decision": "SKIP"}
        with pytest.raises(LedgerError) as exc:
            ledger.update_exit(entry.id, payload)
        assert exc.value.kind == LedgerErrorKind.INVALID_UPDATE
        assert exc.value.field == "decision"

    def test_invalid_exit_values(self, ledger):
        entry = ledger.append(executed_entry())
        payload = {**exit_for(entry.execution).model_dump(), "exit_price": -1.0}
        with pytest.raises(LedgerError) as exc:
            ledger.update_exit(entry.id, payload)
        assert exc.value.kind == LedgerErrorKind.VALIDATION_ERROR
        assert exc.value.field == "exit_price"


class TestAppendOnly:
    def test_delete_rejected(self, ledger):
        entry = ledger.append(unexecuted_entry())
        with pytest.raises(LedgerError) as exc:
            ledger.delete(entry.id)
        assert exc.value.kind == LedgerErrorKind.DELETE_NOT_ALLOWED
        assert ledger.get(entry.id) is not None

    def test_overwrite_rejected(self, ledger):
        entry = ledger.append(unexecuted_entry())
        with pytest.raises(LedgerError) as exc:
            ledger.overwrite(entry.id, decision_reason="edited")
        assert exc.value.kind == LedgerErrorKind.OVERWRITE_NOT_ALLOWED
        assert exc.value.field == "decision_reason"

    def test_delete_trigger(self, ledger):
        entry = ledger.append(unexecuted_entry())
        with ledger._pool.connection() as conn:
            with pytest.raises(sqlite3.IntegrityError, match="DELETE_NOT_ALLOWED"):
                conn.execute("DELETE FROM ledger_entries WHERE id = ?", (entry.id,))
            conn.rollback()
        assert ledger.count() == 1

    def test_update_trigger_blocks_frozen_columns(self, ledger):
        entry = ledger.append(executed_entry())
        with ledger._pool.connection() as conn:
            with pytest.raises(sqlite3.IntegrityError, match="OVERWRITE_NOT_ALLOWED"):
                conn.execute(
                    "UPDATE ledger_entries SET decision_reason = 'edited', exit = '{}' WHERE id = ?",
                    (entry.id,),
                )
            conn.rollback()
        assert ledger.get(entry.id).decision_reason == entry.decision_reason

    def test_update_trigger_blocks_second_exit(self, ledger):
        entry = ledger.append(executed_entry())
        ledger.update_exit(entry.id, exit_for(entry.execution))
        with ledger._pool.connection() as conn:
            with pytest.raises(sqlite3.IntegrityError, match="OVERWRITE_NOT_ALLOWED"):
                conn.execute("UPDATE ledger_entries SET exit = '{}' WHERE id = ?", (entry.id,))
            conn.rollback()

    def test_execution_check_constraint(self, ledger):
        with ledger._pool.connection() as conn:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO ledger_entries (id, created_at, engine_version, ticker, timeframe, "
                    "quality, direction, decision, decision_reason, confluence_score, trade_type, "
                    "regime_volatility, signal, decision_breakdown, regime) VALUES "
                    "('x', '2024-01-10', '1.0.0', 'SPY', '15', 'HIGH', 'LONG', 'EXECUTE', 'r', "
                    "70.0, 'DAY', 'NORMAL', '{}', '{}', '{}')"
                )
            conn.rollback()


class TestMigration:
    @pytest.fixture
    def legacy_db(self, tmp_path, ledger_config):
        """A database written before decision inputs were stored."""
        path = tmp_path / "legacy.db"
        with SQLiteLedger(tmp_path / "scratch.db", config=ledger_config) as scratch:
            entry = LedgerEntry.model_validate(
                {**unexecuted_entry().model_dump(), "id": "legacy-1", "created_at": now_utc()}
            )
            params = scratch._row_params(entry)[:-1]

        v1_columns = FROZEN_COLUMNS[:-1]
        conn = sqlite3.connect(path)
        conn.execute(re.sub(r"\s*decision_inputs TEXT,", "", SQLiteLedger.CREATE_TABLE_SQL))
        conn.execute(
            f"INSERT INTO ledger_entries ({', '.join(v1_columns)}) "
            f"VALUES ({', '.join('?' for _ in v1_columns)})",
            params,
        )
        conn.commit()
        conn.close()
        return path

    def test_legacy_rows_load(self, legacy_db, ledger_config):
        with SQLiteLedger(legacy_db, config=ledger_config) as ledger:
            entry = ledger.get("legacy-1")
            assert entry is not None
            assert entry.decision_inputs is None
            assert ledger.append(unexecuted_entry()).decision_inputs is None
            assert ledger.count() == 2

    def test_migrated_column_is_frozen(self, legacy_db, ledger_config):
        with SQLiteLedger(legacy_db, config=ledger_config) as ledger:
            with ledger._pool.connection() as conn:
                version = conn.execute(
                    "SELECT value FROM schema_meta WHERE key = 'sqlite_schema_version'"
                ).fetchone()[0]
                assert version == str(SQLITE_SCHEMA_VERSION)
                with pytest.raises(sqlite3.IntegrityError, match="OVERWRITE_NOT_ALLOWED"):
                    conn.execute(
                        "UPDATE ledger_entries SET decision_inputs = '{}', exit = '{}' WHERE id = 'legacy-1'"
                    )
                conn.rollback()

    def test_decision_inputs_round_trip(self, ledger):
        stored = ledger.append(executed_entry())
        fetched = ledger.get(stored.id)
        assert fetched.decision_inputs == stored.decision_inputs
        assert sorted(fetched.decision_inputs.signals) == ["240", "30", "60"]


class TestQuery:
    def test_newest_first(self, ledger, populated):
        executed, waited, skipped = populated
        assert [e.id for e in ledger.query()] == [skipped.id, waited.id, executed.id]

    @pytest.mark.parametrize(
        "filters,expected",
        [
            ({"decision": Verdict.EXECUTE}, 1),
            ({"ticker": "qqq"}, 1),
            ({"timeframe": "15"}, 1),
            ({"dte_bucket": DteBucket.MONTHLY}, 1),
            ({"trade_type": TradeType.DAY}, 2),
            ({"quality": "HIGH"}, 2),
            ({"engine_version": "1.0.0"}, 3),
            ({"has_exit": False}, 3),
            ({"has_exit": True}, 0),
            ({"min_confluence": 60.0}, 1),
            ({"max_confluence": 20.0}, 2),
            ({"min_confluence": 20.0, "max_confluence": 20.0}, 2),
            ({"has_hypothetical": True}, 2),
            ({"has_hypothetical": False}, 1),
            ({"exit_reason": ExitReason.TARGET_1}, 0),
        ],
    )
    def test_filters(self, ledger, populated, filters, expected):
        query = LedgerQuery(**filters)
        assert len(ledger.query(query)) == expected
        assert ledger.count(query) == expected

    def test_date_range(self, ledger, populated):
        start = now_utc() - timedelta(minutes=5)
        assert ledger.count(LedgerQuery(from_date=start, to_date=now_utc())) == 3
        assert ledger.count(LedgerQuery(from_date=now_utc() + timedelta(minutes=5))) == 0

    def test_pagination(self, ledger, populated):
        first = ledger.query(LedgerQuery(limit=2))
        rest = ledger.query(LedgerQuery(limit=2, offset=2))
        assert len(first) == 2
        assert len(rest) == 1
        assert {e.id for e in first}.isdisjoint({e.id for e in rest})

    def test_has_exit_after_update(self, ledger, populated):
        executed = populated[0]
        ledger.update_exit(executed.id, exit_for(executed.execution))
        assert [e.id for e in ledger.query(LedgerQuery(has_exit=True))] == [executed.id]

    def test_exit_reason_filter(self, ledger, populated):
        executed = populated[0]
        ledger.update_exit(executed.id, exit_for(executed.execution))
        assert [e.id for e in ledger.query(LedgerQuery(exit_reason=ExitReason.TARGET_1))] == [executed.id]
        assert ledger.count(LedgerQuery(exit_reason=ExitReason.STOP_LOSS)) == 0

    def test_inverted_confluence_range_rejected(self):
        with pytest.raises(ValueError, match="min_confluence"):
            LedgerQuery(min_confluence=70.0, max_confluence=40.0)

    def test_statistics(self, ledger, populated):
        stats = ledger.get_statistics()
        assert stats["total"] == 3
        assert stats["by_decision"] == {"EXECUTE": 1, "WAIT": 1, "SKIP": 1}
        assert stats["open_positions"] == 1
        assert stats["with_exit"] == 0
        assert stats["pool"]["open"] >= 1


class TestRetries:
    def test_transient_error_retried(self, ledger):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "ok"

        assert ledger._with_retry("flaky", flaky) == "ok"
        assert len(calls) == 3

    def test_retries_exhausted(self, ledger):
        calls = []

        def busy():
            calls.append(1)
            raise sqlite3.OperationalError("database is busy")

        with pytest.raises(LedgerError) as exc:
            ledger._with_retry("busy", busy)
        assert exc.value.kind == LedgerErrorKind.DATABASE_ERROR
        assert exc.value.retryable
        assert len(calls) == ledger.config.max_retry_attempts

    def test_permanent_error_not_retried(self, ledger):
        calls = []

        def broken():
            calls.append(1)
            raise sqlite3.OperationalError("no such table: nope")

        with pytest.raises(LedgerError) as exc:
            ledger._with_retry("broken", broken)
        assert not exc.value.retryable
        assert len(calls) == 1

    def test_pool_timeout(self, tmp_path):
        pool = SQLiteConnectionPool(tmp_path / "pool.db", max_size=1, connect_timeout=0.05)
        held = pool.acquire()
        try:
            with pytest.raises(LedgerError) as exc:
                pool.acquire()
            assert exc.value.kind == LedgerErrorKind.POOL_TIMEOUT
            assert exc.value.retryable
            assert pool.get_stats()["timeouts"] == 1
        finally:
            pool.release(held)
            pool.close()

    def test_closed_ledger(self, tmp_path, ledger_config):
        ledger = SQLiteLedger(tmp_path / "closed.db", config=ledger_config)
        ledger.close()
        with pytest.raises(LedgerError) as exc:
            ledger.append(unexecuted_entry())
        assert not exc.value.retryable


class TestAsync:
    @pytest.mark.asyncio
    async def test_async_roundtrip(self, ledger):
        entry = await ledger.append_async(executed_entry())
        await ledger.update_exit_async(entry.id, exit_for(entry.execution))

        fetched = await ledger.get_async(entry.id)
        assert fetched.has_exit

        rows = await ledger.query_async(LedgerQuery(decision=Verdict.EXECUTE))
        assert [e.id for e in rows] == [entry.id]

    @pytest.mark.asyncio
    async def test_async_errors_propagate(self, ledger):
        with pytest.raises(LedgerError) as exc:
            await ledger.update_exit_async("no-such-id", exit_for(executed_entry().execution))
        assert exc.value.kind == LedgerErrorKind.ENTRY_NOT_FOUND
