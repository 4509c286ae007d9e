"""
Tests for replaying ledger decisions through the engine.
"""

import pytest

from config.constants import Verdict
from core.domain.base import now_utc
from core.domain.ledger import DecisionInputs, LedgerEntry
from execution.audit import (
    ReplayStatus,
    generate_audit_report,
    replay_batch,
    replay_decision,
    verify_determinism,
)
from execution.paper import ExecutionError, ExecutionErrorKind, PaperExecutor
from execution.pipeline import DecisionPipeline
from factories import executed_entry, phase_payload, signal_payload, trend_payload, unexecuted_entry


class RejectingExecutor(PaperExecutor):
    def execute(self, signal, decision, as_of=None, iv_rank=None):
        return ExecutionError(ExecutionErrorKind.INVALID_CONTRACT, "no listed strikes", field="strike")


def _stored(create, **updates):
    data = {**create.model_dump(), "id": "entry-1", "created_at": now_utc(), **updates}
    return LedgerEntry.model_validate(data)


class TestReplayDecision:
    def test_executed_entry_matches(self):
        result = replay_decision(_stored(executed_entry()))
        assert result.status == ReplayStatus.MATCH
        assert result.is_match
        assert result.mismatches == ()
        assert result.replayed_decision == Verdict.EXECUTE
        assert result.duration_ms >= 0

    def test_single_signal_wait_matches(self):
        result = replay_decision(_stored(unexecuted_entry("WAIT", timeframe="15")))
        assert result.status == ReplayStatus.MATCH
        assert result.replayed_decision == Verdict.WAIT

    def test_other_engine_version_not_replayed(self):
        result = replay_decision(_stored(executed_entry(), engine_version="0.9.0"))
        assert result.status == ReplayStatus.VERSION_MISMATCH
        assert result.original_version == "0.9.0"
        assert result.replayed_decision is None

    def test_changed_breakdown_reported_by_field(self):
        entry = _stored(executed_entry())
        altered = entry.decision_breakdown.model_copy(update={"quality_multiplier": 0.5})
        result = replay_decision(entry.model_copy(update={"decision_breakdown": altered}))

        assert result.status == ReplayStatus.MISMATCH
        assert [m.field for m in result.mismatches] == ["breakdown.quality_multiplier"]
        assert result.mismatches[0].original == 0.5

    def test_confluence_within_tolerance_matches(self):
        entry = _stored(executed_entry())
        nudged = entry.model_copy(update={"confluence_score": entry.confluence_score + 0.0005})
        assert replay_decision(nudged).is_match

    def test_changed_confluence_and_verdict(self):
        entry = _stored(unexecuted_entry("WAIT", timeframe="15"))
        altered = entry.model_copy(update={"decision": Verdict.SKIP, "confluence_score": 80.0})
        result = replay_decision(altered)

        fields = {m.field: m for m in result.mismatches}
        assert result.status == ReplayStatus.MISMATCH
        assert fields["decision"].original == "SKIP"
        assert fields["decision"].replayed == "WAIT"
        assert fields["confluence_score"].original == 80.0

    def test_entry_without_inputs_replays_entry_signal_only(self):
        create = executed_entry().model_copy(update={"decision_inputs": None})
        result = replay_decision(_stored(create))
        # The 4H entry signal alone stays below the confluence threshold
        assert result.status == ReplayStatus.MISMATCH
        assert result.replayed_decision == Verdict.WAIT

    def test_unreplayable_inputs_reported_as_error(self, make_signal):
        inputs = DecisionInputs(
            signals={"240": make_signal(timeframe="240"), "60": make_signal(timeframe="60", ticker="QQQ")}
        )
        result = replay_decision(_stored(unexecuted_entry(), decision_inputs=inputs))
        assert result.status == ReplayStatus.ERROR
        assert "several tickers" in result.error

    def test_to_dict(self):
        data = replay_decision(_stored(executed_entry())).to_dict()
        assert data["status"] == "MATCH"
        assert data["entry_id"] == "entry-1"
        assert data["replayed_decision"] == "EXECUTE"
        assert data["mismatches"] == []


class TestReplayLedger:
    def test_pipeline_entries_match(self, settings, now):
        with DecisionPipeline(settings) as pipeline:
            pipeline.ingest_trend(trend_payload(), now)
            pipeline.ingest_phase(phase_payload(role="REGIME"), now)
            pipeline.ingest_phase(phase_payload(role="BIAS"), now)
            for tf in ("15", "240", "60", "30"):
                pipeline.ingest_signal(signal_payload(timeframe=tf), now)
                pipeline.evaluate("SPY", now)
            entries = pipeline.ledger.query()

        assert {e.decision for e in entries} >= {Verdict.WAIT, Verdict.EXECUTE}
        assert entries[0].decision_inputs.trend_alignment is not None
        batch = replay_batch(entries)
        assert batch.matches == batch.total == 4
        assert batch.match_rate == 1.0

    def test_rejected_execution_matches_engine_verdict(self, settings, now):
        with DecisionPipeline(settings, executor=RejectingExecutor()) as pipeline:
            for tf in ("240", "60", "30"):
                pipeline.ingest_signal(signal_payload(timeframe=tf), now)
            entry = pipeline.evaluate("SPY", now).entry

        assert entry.decision == Verdict.SKIP
        assert entry.decision_inputs.engine_decision == Verdict.EXECUTE
        assert replay_decision(entry).is_match


class TestBatch:
    @pytest.fixture
    def batch(self):
        good = _stored(executed_entry())
        old = _stored(executed_entry(), id="entry-2", engine_version="0.9.0")
        altered = good.model_copy(update={"id": "entry-3", "confluence_score": 10.0})
        return replay_batch([good, old, altered])

    def test_summary(self, batch):
        assert batch.summary() == {
            "total": 3,
            "matches": 1,
            "mismatches": 1,
            "version_mismatches": 1,
            "errors": 0,
            "match_rate": round(1 / 3, 4),
            "avg_duration_ms": round(batch.avg_duration_ms, 3),
        }

    def test_empty_batch(self):
        batch = replay_batch([])
        assert batch.total == 0
        assert batch.match_rate == 0.0
        assert batch.avg_duration_ms == 0.0

    def test_report(self, batch):
        report = generate_audit_report(batch)
        assert "Total Entries: 3" in report
        assert "Matches: 1 (33.3%)" in report
        assert "Entry: entry-3" in report
        assert "  - confluence_score: 10.0 ->" in report
        assert "=== Errors ===" not in report

    def test_verify_determinism(self):
        assert verify_determinism(_stored(executed_entry()), iterations=5)
        with pytest.raises(ValueError, match="iterations"):
            verify_determinism(_stored(executed_entry()), iterations=0)
