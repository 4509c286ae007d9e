"""
Tests for the decision engine: gates, multiplier chain and sizing.
"""

import pytest
from pydantic import ValidationError

from config.constants import QUALITY_PRIORITY, Direction, HTFAlignment, Quality, Verdict
from config.settings import DecisionConfig
from data.phase_store import PhaseStore
from data.signal_store import SignalStore
from data.snapshot import take_snapshot
from data.trend_store import TrendStore
from execution.decision import DecisionEngine, calculate_confluence, decide, select_entry_signal
from execution.decision.alignment import determine_htf_alignment, phase_and_trend_boosts
from execution.decision.matrices import (
    CONFLUENCE_WEIGHTS,
    QUALITY_MULTIPLIERS,
    RR_MULTIPLIERS,
    step_lookup,
)


@pytest.fixture
def htf_long(make_signal):
    """240 + 60 + 30 EXTREME LONG signals: 80% confluence."""
    return {tf: make_signal(timeframe=tf) for tf in ("240", "60", "30")}


class TestConfluence:
    def test_weights_sum_to_one(self):
        assert sum(CONFLUENCE_WEIGHTS.values()) == pytest.approx(1.0)

    def test_aligned_weights(self, htf_long):
        result = calculate_confluence(htf_long)
        assert result.direction == Direction.LONG
        assert result.score == 80.0
        assert result.short_score == 0.0
        assert result.contributions["30"].contribution == 15.0

    def test_tie_prefers_long(self, make_signal):
        signals = {
            "60": make_signal(timeframe="60", direction="SHORT"),
            "30": make_signal(timeframe="30"),
            "15": make_signal(timeframe="15"),
        }
        result = calculate_confluence(signals)
        assert result.long_score == result.short_score == 25.0
        assert result.direction == Direction.LONG

    def test_opposing_signal_not_counted(self, make_signal):
        signals = {
            "240": make_signal(timeframe="240", direction="SHORT"),
            "60": make_signal(timeframe="60"),
            "30": make_signal(timeframe="30"),
            "15": make_signal(timeframe="15"),
        }
        result = calculate_confluence(signals)
        assert result.direction == Direction.LONG
        assert result.score == 50.0
        assert not result.contributions["240"].aligned

    def test_empty(self):
        result = calculate_confluence({})
        assert result.direction is None
        assert result.score == 0.0


class TestGates:
    def test_no_signals(self):
        decision = decide({})
        assert decision.decision == Verdict.WAIT
        assert decision.reason == "No active signals"
        assert decision.breakdown.final_multiplier == 1.0

    def test_15m_only_waits(self, make_signal):
        decision = decide({"15": make_signal(timeframe="15")})
        assert decision.decision == Verdict.WAIT
        assert decision.confluence_score == 10.0
        assert decision.reason == "Confluence 10.0% below 60% threshold"
        assert decision.recommended_contracts == 0

    def test_wait_has_neutral_breakdown(self, make_signal):
        decision = decide({"15": make_signal(timeframe="15")})
        breakdown = decision.breakdown
        assert breakdown.quality_multiplier == 1.0
        assert breakdown.phase_confidence_boost == 0.0
        assert breakdown.trend_alignment_boost == 0.0

    def test_exactly_sixty_passes(self, make_signal):
        signals = {
            "240": make_signal(timeframe="240"),
            "15": make_signal(timeframe="15"),
            "5": make_signal(timeframe="5"),
            "3": make_signal(timeframe="3"),
        }
        decision = decide(signals)
        assert decision.confluence_score == 60.0
        assert decision.decision == Verdict.EXECUTE

    def test_htf_ai_score_gate(self, make_signal):
        signals = {
            "240": make_signal(timeframe="240", ai_score=5.9),
            "60": make_signal(timeframe="60", ai_score=5.0),
            "30": make_signal(timeframe="30"),
        }
        decision = decide(signals)
        assert decision.decision == Verdict.WAIT
        assert decision.reason == "No 4H/1H LONG signal with AI score >= 6"
        assert decision.direction == Direction.LONG


class TestMultiplierChain:
    def test_eighty_percent_scenario(self, htf_long):
        decision = decide(htf_long)
        breakdown = decision.breakdown

        assert decision.decision == Verdict.EXECUTE
        assert decision.htf_alignment == HTFAlignment.PERFECT
        assert breakdown.confluence_multiplier == 2.0
        assert breakdown.quality_multiplier == 1.3
        assert breakdown.htf_alignment_multiplier == 1.3
        assert breakdown.rr_multiplier == 1.1
        assert breakdown.volume_multiplier == 1.0
        assert breakdown.trend_multiplier == 1.0
        assert breakdown.session_multiplier == 1.0
        assert breakdown.day_multiplier == 1.0
        assert decision.raw_multiplier == pytest.approx(3.718)
        # Clamped to the maximum
        assert breakdown.final_multiplier == 3.0
        # recommended_contracts=2 on the entry signal
        assert decision.recommended_contracts == 6
        assert decision.entry_signal.timeframe == "240"
        assert decision.reason == "LONG signal with 80.0% confluence, 3.00x multiplier"

    def test_levels_copied_from_entry(self, htf_long):
        decision = decide(htf_long)
        assert decision.stop_loss == 445.0
        assert decision.target_1 == 465.0
        assert decision.target_2 == 475.0

    def test_skip_below_minimum(self, make_signal):
        weak_entry = make_signal(
            timeframe="240",
            quality="MEDIUM",
            risk={"rr_ratio_t1": 1.0},
            market_context={"volume_vs_avg": 0.5},
            trend={"strength": 40.0},
            time_context={"market_session": "AFTERHOURS", "day_of_week": "FRIDAY"},
        )
        decision = decide({"240": weak_entry, "60": make_signal(timeframe="60")})
        assert decision.decision == Verdict.SKIP
        assert decision.raw_multiplier == pytest.approx(1.0 * 1.0 * 1.3 * 0.5 * 0.7 * 0.8 * 0.5 * 0.85)
        assert decision.breakdown.final_multiplier == 0.5
        assert decision.recommended_contracts == 0
        assert decision.reason.startswith("Raw multiplier 0.15x below minimum")

    def test_base_contract_size_when_no_hint(self, make_signal):
        signals = {
            tf: make_signal(timeframe=tf, risk={"recommended_contracts": 0})
            for tf in ("240", "60", "30")
        }
        assert decide(signals, base_contract_size=1).recommended_contracts == 3
        assert decide(signals, base_contract_size=3).recommended_contracts == 9

    def test_contracts_rounded_to_whole(self, make_signal):
        # 240 + 60 = 65% -> 1.0; HIGH 1.1; PERFECT 1.3; rr 2.0 -> 1.0; MONDAY 0.95
        signals = {
            tf: make_signal(
                timeframe=tf,
                quality="HIGH",
                risk={"rr_ratio_t1": 2.0, "recommended_contracts": 1},
                time_context={"day_of_week": "MONDAY"},
            )
            for tf in ("240", "60")
        }
        decision = decide(signals)
        # 1.1 * 1.3 * 0.95 = 1.3585 -> 1 contract
        assert decision.breakdown.final_multiplier == pytest.approx(1.3585)
        assert decision.recommended_contracts == 1

    def test_short_direction(self, make_signal):
        signals = {tf: make_signal(timeframe=tf, direction="SHORT") for tf in ("240", "60", "30")}
        decision = decide(signals)
        assert decision.decision == Verdict.EXECUTE
        assert decision.direction == Direction.SHORT

    def test_step_lookup(self):
        assert step_lookup(RR_MULTIPLIERS, 5.0) == 1.2
        assert step_lookup(RR_MULTIPLIERS, 4.99) == 1.15
        assert step_lookup(RR_MULTIPLIERS, 1.5) == 0.85
        assert step_lookup(RR_MULTIPLIERS, -2.0) == 0.5

    def test_deterministic(self, htf_long, make_phase):
        phases = [make_phase()]
        first = decide(htf_long, phases)
        second = decide(dict(reversed(list(htf_long.items()))), phases)
        assert first == second


class TestBoosts:
    def test_agreeing_regime_phase(self, htf_long, make_phase):
        decision = decide(htf_long, [make_phase(role="REGIME", confidence=75.0)])
        assert decision.breakdown.phase_confidence_boost == 0.2
        assert decision.breakdown.phase_position_boost == 0.1

    def test_low_confidence_no_position_boost(self, htf_long, make_phase):
        decision = decide(htf_long, [make_phase(role="BIAS", confidence=69.9)])
        assert decision.breakdown.phase_confidence_boost == 0.2
        assert decision.breakdown.phase_position_boost == 0.0

    def test_boosts_not_summed_across_phases(self, htf_long, make_phase):
        phases = [make_phase(role="REGIME"), make_phase(role="BIAS")]
        decision = decide(htf_long, phases)
        assert decision.breakdown.phase_confidence_boost == 0.2
        assert decision.breakdown.phase_position_boost == 0.1

    @pytest.mark.parametrize(
        "overrides",
        [
            {"implication": "DOWNSIDE_POTENTIAL"},
            {"implication": "NEUTRAL"},
            {"trade_allowed": False},
            {"htf_alignment": False},
            {"role": "SETUP_FORMATION"},
            {"symbol": "QQQ"},
        ],
    )
    def test_phase_without_boost(self, htf_long, make_phase, overrides):
        decision = decide(htf_long, [make_phase(**overrides)])
        assert decision.breakdown.phase_confidence_boost == 0.0
        assert decision.breakdown.phase_position_boost == 0.0

    def test_strong_aligned_trend(self, htf_long, make_trend, now):
        store = TrendStore()
        store.update(make_trend(), now)
        decision = decide(htf_long, trend_alignment=store.get_alignment("SPY", now))
        assert decision.breakdown.trend_alignment_boost == pytest.approx(0.45)

    def test_strong_opposing_trend_still_boosts(self, htf_long, make_trend, now):
        store = TrendStore()
        store.update(make_trend(directions=("bearish",) * 8), now)
        decision = decide(htf_long, trend_alignment=store.get_alignment("SPY", now))
        assert decision.breakdown.trend_alignment_boost == pytest.approx(0.30)

    def test_htf_match_only(self, htf_long, make_trend, now):
        directions = ("bearish", "bearish", "neutral", "neutral", "bullish", "bullish", "bearish", "neutral")
        store = TrendStore()
        store.update(make_trend(directions=directions), now)
        decision = decide(htf_long, trend_alignment=store.get_alignment("SPY", now))
        assert decision.breakdown.trend_alignment_boost == pytest.approx(0.15)

    def test_missing_context_contributes_nothing(self, make_signal):
        boosts = phase_and_trend_boosts(make_signal(), [], None)
        assert boosts.phase_confidence_boost == 0.0
        assert boosts.trend_alignment_boost == 0.0


class TestHtfAlignment:
    def test_perfect_from_biases(self, make_signal):
        entry = make_signal(timeframe="30")
        assert determine_htf_alignment(entry, {"30": entry}, []) == HTFAlignment.PERFECT

    def test_good_with_one_bias(self, make_signal):
        entry = make_signal(timeframe="30", mtf_context={"4h_bias": "SHORT"})
        assert determine_htf_alignment(entry, {"30": entry}, []) == HTFAlignment.GOOD

    def test_counter_when_both_oppose(self, make_signal):
        entry = make_signal(timeframe="30", mtf_context={"4h_bias": "SHORT", "1h_bias": "SHORT"})
        assert determine_htf_alignment(entry, {"30": entry}, []) == HTFAlignment.COUNTER

    def test_regime_phase_supplies_4h(self, make_signal, make_phase):
        entry = make_signal(timeframe="30", mtf_context={"4h_bias": "SHORT", "1h_bias": "SHORT"})
        assert determine_htf_alignment(entry, {"30": entry}, [make_phase()]) == HTFAlignment.GOOD

    def test_entry_selection_prefers_higher_timeframe(self, make_signal):
        signals = {
            "60": make_signal(timeframe="60"),
            "240": make_signal(timeframe="240", direction="SHORT"),
            "30": make_signal(timeframe="30"),
        }
        assert select_entry_signal(signals, Direction.LONG).timeframe == "60"
        assert select_entry_signal(signals, Direction.SHORT).timeframe == "240"


class TestDecisionEngine:
    def test_statistics(self, htf_long, make_signal):
        engine = DecisionEngine(DecisionConfig(base_contract_size=1))
        engine.decide(htf_long)
        engine.decide({"15": make_signal(timeframe="15")})
        engine.decide({})
        stats = engine.get_statistics()
        assert stats == {"processed": 3, "execute": 1, "wait": 2, "skip": 0}

    def test_decide_snapshot(self, make_signal, make_phase, now):
        signals, phases, trends = SignalStore(), PhaseStore(), TrendStore()
        for tf in ("240", "60", "30"):
            signals.update(make_signal(timeframe=tf), now)
        phases.update(make_phase(), now)
        snapshot = take_snapshot(signals, phases, trends, "SPY", now)

        decision = DecisionEngine().decide_snapshot(snapshot)
        assert decision.decision == Verdict.EXECUTE
        assert decision.breakdown.phase_confidence_boost == 0.2

    def test_decide_on_store_snapshots(self, make_signal, make_phase, now):
        signals, phases = SignalStore(), PhaseStore()
        for tf in ("240", "60", "30"):
            signals.update(make_signal(timeframe=tf), now)
        phases.update(make_phase(), now)

        decision = decide(signals.active_snapshot("SPY", now), phases.active_snapshot(now))
        assert decision.decision == Verdict.EXECUTE
        assert decision.breakdown.phase_confidence_boost == 0.2
        plain = decide(
            {tf: make_signal(timeframe=tf) for tf in ("240", "60", "30")}, [make_phase()]
        )
        assert decision == plain

    def test_full_store_snapshot_single_ticker(self, make_signal, now):
        signals = SignalStore()
        for tf in ("240", "60", "30"):
            signals.update(make_signal(timeframe=tf), now)
        # Keyed by (ticker, timeframe)
        decision = DecisionEngine().decide(signals.active_snapshot(now=now))
        assert decision.decision == Verdict.EXECUTE

    def test_mixed_tickers_rejected(self, make_signal, now):
        signals = SignalStore()
        signals.update(make_signal(timeframe="240"), now)
        signals.update(make_signal(timeframe="60", ticker="QQQ"), now)
        with pytest.raises(ValueError, match="several tickers"):
            decide(signals.active_snapshot(now=now))

    def test_decision_is_frozen(self, htf_long):
        decision = decide(htf_long)
        with pytest.raises(ValidationError):
            decision.reason = "changed"

    def test_confluence_read_only(self, htf_long):
        decision = decide(htf_long)
        with pytest.raises(TypeError):
            decision.confluence["240"] = decision.confluence["60"]
        assert decision.to_dict()["confluence"]["240"]["aligned"] is True
        assert decide({}).confluence == {}

    def test_tables_are_frozen(self):
        with pytest.raises(TypeError):
            QUALITY_MULTIPLIERS[Quality.MEDIUM] = 5.0
        with pytest.raises(TypeError):
            CONFLUENCE_WEIGHTS["240"] = 1.0
        with pytest.raises(TypeError):
            QUALITY_PRIORITY["MEDIUM"] = 99
        assert QUALITY_PRIORITY["MEDIUM"] == 1
