"""
Tests for the signal, phase and trend stores and snapshots.
"""

from datetime import timedelta

import pytest

from config.constants import Quality, TimeframeRole, TrendDirection, TrendStrength
from data.phase_store import PhaseStore, normalize_timeframe, phase_decay_minutes
from data.signal_store import SignalStore
from data.snapshot import MarketSnapshot, take_snapshot
from data.trend_store import TrendStore
from data.validity import calculate_validity_minutes, validity_breakdown


class TestValidity:
    def test_4h_extreme_clamped(self, make_signal):
        # 240 * 2.0 * 1.5 * 1.0 = 720
        assert calculate_validity_minutes(make_signal(timeframe="240")) == 720

    def test_1h_extreme_midday(self, make_signal):
        assert calculate_validity_minutes(make_signal(timeframe="60")) == pytest.approx(135.0)

    def test_floor_at_timeframe(self, make_signal):
        signal = make_signal(
            timeframe="15", quality="MEDIUM", time_context={"market_session": "AFTERHOURS"}
        )
        # 15 * 1.0 * 0.75 * 0.5 = 5.625, floored to the bar length
        assert calculate_validity_minutes(signal) == 15

    def test_breakdown_factors(self, make_signal):
        breakdown = validity_breakdown(make_signal(timeframe="60", quality="HIGH",
                                                   time_context={"market_session": "OPEN"}))
        assert breakdown.role_multiplier == 1.5
        assert breakdown.quality_multiplier == 1.0
        assert breakdown.session_multiplier == 0.8
        assert breakdown.validity_minutes == pytest.approx(72.0)


class TestSignalStore:
    def test_store_and_get(self, make_signal, now):
        store = SignalStore()
        update = store.update(make_signal(timeframe="60"), now)
        assert update.accepted
        assert update.reason == "stored"
        assert store.get("spy", "60", now).signal.timeframe == "60"

    def test_lower_quality_rejected(self, make_signal, now):
        store = SignalStore()
        store.update(make_signal(timeframe="60", quality="HIGH"), now)
        update = store.update(make_signal(timeframe="60", quality="MEDIUM"), now)
        assert not update.accepted
        assert store.get("SPY", "60", now).signal.quality == Quality.HIGH

    def test_equal_quality_rejected(self, make_signal, now):
        store = SignalStore()
        first = make_signal(timeframe="60", quality="HIGH", ai_score=7.0)
        store.update(first, now)
        update = store.update(make_signal(timeframe="60", quality="HIGH", ai_score=9.0), now)
        assert not update.accepted
        assert store.get("SPY", "60", now).signal.signal.ai_score == 7.0

    def test_higher_quality_replaces(self, make_signal, now):
        store = SignalStore()
        store.update(make_signal(timeframe="60", quality="MEDIUM"), now)
        update = store.update(make_signal(timeframe="60", quality="EXTREME"), now)
        assert update.accepted
        assert update.reason == "replaced"
        assert update.replaced.signal.quality == Quality.MEDIUM

    def test_expired_slot_replaced_by_any_quality(self, make_signal, now):
        store = SignalStore()
        store.update(make_signal(timeframe="15", quality="EXTREME"), now)
        later = now + timedelta(hours=2)
        update = store.update(make_signal(timeframe="15", quality="MEDIUM"), later)
        assert update.accepted
        assert store.get("SPY", "15", later).signal.quality == Quality.MEDIUM

    def test_expiry_boundary(self, make_signal, now):
        store = SignalStore()
        stored = store.update(make_signal(timeframe="60"), now).stored
        assert store.get("SPY", "60", stored.expires_at - timedelta(microseconds=1)) is not None
        assert store.get("SPY", "60", stored.expires_at) is None
        assert store.remaining_validity("SPY", "60", stored.expires_at) == 0.0

    def test_active_snapshot_by_ticker(self, make_signal, now):
        store = SignalStore()
        store.update(make_signal(timeframe="240"), now)
        store.update(make_signal(timeframe="60"), now)
        store.update(make_signal(timeframe="60", ticker="QQQ"), now)
        assert set(store.active_snapshot("SPY", now)) == {"240", "60"}
        assert len(store.active_snapshot(now=now)) == 3

    def test_cleanup_expired(self, make_signal, now):
        store = SignalStore()
        store.update(make_signal(timeframe="15"), now)
        store.update(make_signal(timeframe="240"), now)
        assert store.cleanup_expired(now + timedelta(hours=1)) == 1
        assert len(store) == 1


class TestPhaseStore:
    def test_decay_table(self, make_phase):
        assert phase_decay_minutes(make_phase(role="REGIME")) == 720
        assert phase_decay_minutes(make_phase(role="BIAS")) == 180
        assert phase_decay_minutes(make_phase(role="SETUP_FORMATION")) == 45

    def test_explicit_decay_wins(self, make_phase):
        phase = make_phase(risk_hints={"time_decay_minutes": 30})
        assert phase_decay_minutes(phase) == 30

    def test_unknown_timeframe_uses_default(self, make_phase):
        phase = make_phase(timeframe={"event_tf": "2h"})
        assert phase_decay_minutes(phase, default=60) == 60

    def test_normalize_timeframe(self):
        assert normalize_timeframe("240") == "4h"
        assert normalize_timeframe(" 60M ") == "1h"
        assert normalize_timeframe("D") == "1d"

    def test_new_phase_always_replaces(self, make_phase, now):
        store = PhaseStore()
        store.update(make_phase(confidence=90.0), now)
        store.update(make_phase(confidence=20.0), now)
        assert store.get("SPY", TimeframeRole.REGIME, now).phase.confidence.confidence_score == 20.0
        assert len(store) == 1

    def test_active_for_symbol(self, make_phase, now):
        store = PhaseStore()
        store.update(make_phase(role="REGIME"), now)
        store.update(make_phase(role="BIAS"), now)
        store.update(make_phase(role="BIAS", symbol="QQQ"), now)
        active = store.active_for_symbol("spy", now)
        assert set(active) == {TimeframeRole.REGIME, TimeframeRole.BIAS}

    def test_expiry(self, make_phase, now):
        store = PhaseStore()
        store.update(make_phase(role="BIAS"), now)
        assert store.get("SPY", TimeframeRole.BIAS, now + timedelta(minutes=179)) is not None
        assert store.get("SPY", TimeframeRole.BIAS, now + timedelta(minutes=180)) is None
        assert store.cleanup_expired(now + timedelta(minutes=180)) == 1


class TestTrendStore:
    def test_alignment_computed(self, make_trend, now):
        store = TrendStore()
        store.update(make_trend(), now)
        alignment = store.get_alignment("SPY", now)
        assert alignment.dominant_trend == TrendDirection.BULLISH
        assert alignment.strength == TrendStrength.STRONG
        assert alignment.alignment_score == 100.0

    def test_mixed_trend(self, make_trend, now):
        directions = ("bullish", "bearish", "bullish", "bearish", "neutral", "bearish", "bullish", "neutral")
        store = TrendStore()
        store.update(make_trend(directions=directions), now)
        alignment = store.get_alignment("SPY", now)
        # Three bullish, three bearish: ties prefer bullish
        assert alignment.dominant_trend == TrendDirection.BULLISH
        assert alignment.strength == TrendStrength.CHOPPY
        assert alignment.htf_bias == TrendDirection.BEARISH
        assert alignment.ltf_bias == TrendDirection.NEUTRAL

    def test_ttl(self, make_trend, now):
        store = TrendStore(ttl_minutes=60)
        store.update(make_trend(), now)
        assert store.get("SPY", now + timedelta(minutes=59)) is not None
        assert store.get("SPY", now + timedelta(minutes=60)) is None

    def test_replaced_wholesale(self, make_trend, now):
        store = TrendStore()
        store.update(make_trend(), now)
        store.update(make_trend(directions=("bearish",) * 8), now)
        assert store.get_alignment("SPY", now).dominant_trend == TrendDirection.BEARISH
        assert len(store) == 1


class TestSnapshot:
    def test_snapshot_collects_active_state(self, make_signal, make_phase, make_trend, now):
        signals, phases, trends = SignalStore(), PhaseStore(), TrendStore()
        signals.update(make_signal(timeframe="240"), now)
        signals.update(make_signal(timeframe="15"), now)
        phases.update(make_phase(role="REGIME"), now)
        trends.update(make_trend(), now)

        later = now + timedelta(minutes=30)
        snapshot = take_snapshot(signals, phases, trends, "spy", later)
        assert snapshot.ticker == "SPY"
        assert set(snapshot.signals) == {"240"}
        assert TimeframeRole.REGIME in snapshot.phases
        assert snapshot.trend_alignment is not None
        assert snapshot.summary()["signals"] == ["240"]

    def test_snapshot_is_read_only(self, make_signal, make_phase, now):
        signals, phases = SignalStore(), PhaseStore()
        signals.update(make_signal(timeframe="240"), now)
        phases.update(make_phase(role="REGIME"), now)
        snapshot = take_snapshot(signals, phases, TrendStore(), "SPY", now)

        with pytest.raises(TypeError):
            snapshot.signals["60"] = make_signal(timeframe="60")
        with pytest.raises(TypeError):
            del snapshot.phases[TimeframeRole.REGIME]

    def test_snapshot_detached_from_source_dict(self, make_signal, now):
        source = {"240": make_signal(timeframe="240")}
        snapshot = MarketSnapshot(ticker="SPY", taken_at=now, signals=source)
        source["60"] = make_signal(timeframe="60")
        assert set(snapshot.signals) == {"240"}

    def test_empty_snapshot(self, now):
        snapshot = take_snapshot(SignalStore(), PhaseStore(), TrendStore(), "SPY", now)
        assert snapshot.is_empty
        assert snapshot.trend is None
