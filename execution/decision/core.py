import logging
import threading
from typing import Any, Iterable, Mapping, Optional, Union

from config.constants import TIMEFRAME_PRIORITY, Direction, Verdict
from config.logging_config import LogCategory
from config.settings import DecisionConfig
from core.domain.decision import Decision, DecisionBreakdown
from core.domain.phase import Phase
from core.domain.signal import Signal
from core.domain.trend import TrendAlignment
from data.phase_store import StoredPhase
from data.signal_store import StoredSignal
from data.snapshot import MarketSnapshot
from execution.decision.alignment import determine_htf_alignment, phase_and_trend_boosts
from execution.decision.confluence import calculate_confluence
from execution.decision.matrices import (
    CONFLUENCE_MULTIPLIERS,
    CONFLUENCE_THRESHOLD,
    DAY_MULTIPLIERS,
    ENGINE_VERSION,
    HTF_ALIGNMENT_MULTIPLIERS,
    HTF_MIN_AI_SCORE,
    HTF_TIMEFRAMES,
    MAX_MULTIPLIER,
    MIN_MULTIPLIER,
    QUALITY_MULTIPLIERS,
    RR_MULTIPLIERS,
    SESSION_MULTIPLIERS,
    TREND_STRENGTH_MULTIPLIERS,
    VOLUME_MULTIPLIERS,
    step_lookup,
)
from utils.numerical_validation import round_half_up

logger = logging.getLogger(__name__)

SignalInput = Union[Mapping[Any, Union[Signal, StoredSignal]], Iterable[Union[Signal, StoredSignal]]]
PhaseInput = Optional[Union[Mapping[Any, Union[Phase, StoredPhase]], Iterable[Union[Phase, StoredPhase]]]]


def _unwrap_signal(item: Signal | StoredSignal) -> Signal:
    return item.signal if isinstance(item, StoredSignal) else item


def _unwrap_phase(item: Phase | StoredPhase) -> Phase:
    return item.phase if isinstance(item, StoredPhase) else item


def _as_signal_map(signals: SignalInput) -> dict[str, Signal]:
    """
    Normalize signals to {timeframe: Signal} for a single ticker.

    Accepts plain signals, the stores' StoredSignal wrappers, and either a
    per-ticker snapshot keyed by timeframe or the full store snapshot
    keyed by (ticker, timeframe).

    Raises:
        ValueError: The signals span more than one ticker
    """
    items = signals.values() if isinstance(signals, Mapping) else signals
    unwrapped = [_unwrap_signal(item) for item in items]
    tickers = {signal.ticker for signal in unwrapped}
    if len(tickers) > 1:
        raise ValueError(f"Signals span several tickers: {sorted(tickers)}; decide one ticker at a time")
    return {signal.timeframe: signal for signal in unwrapped}


def _as_phase_list(phases: PhaseInput) -> list[Phase]:
    if phases is None:
        return []
    items = phases.values() if isinstance(phases, Mapping) else phases
    return [_unwrap_phase(item) for item in items]


def _wait(reason: str, confluence_score: float = 0.0, direction: Optional[Direction] = None,
          confluence: Optional[dict] = None) -> Decision:
    return Decision(
        decision=Verdict.WAIT,
        reason=reason,
        breakdown=DecisionBreakdown.neutral(),
        engine_version=ENGINE_VERSION,
        confluence_score=confluence_score,
        direction=direction,
        confluence=confluence or {},
    )


def select_entry_signal(signals: Mapping[str, Signal], direction: Direction) -> Optional[Signal]:
    """Highest-timeframe signal pointing in ``direction``."""
    for tf in TIMEFRAME_PRIORITY:
        signal = signals.get(tf)
        if signal is not None and signal.direction == direction:
            return signal
    return None


def has_htf_support(signals: Mapping[str, Signal], direction: Direction) -> bool:
    """At least one 4H/1H signal agrees with ``direction`` at the minimum AI score."""
    for tf in HTF_TIMEFRAMES:
        signal = signals.get(tf)
        if (
            signal is not None
            and signal.direction == direction
            and signal.signal.ai_score >= HTF_MIN_AI_SCORE
        ):
            return True
    return False


def decide(
    signals: SignalInput,
    phases: PhaseInput = None,
    trend_alignment: Optional[TrendAlignment] = None,
    base_contract_size: int = 1,
) -> Decision:
    """
    Fuse one ticker's active signals, phases and trend into a verdict.

    Pure: the result depends only on the arguments and the frozen tables
    in ``matrices``. Gates run in order and the first failure returns
    WAIT with a neutral breakdown:

    1. at least one signal
    2. a dominant direction
    3. confluence score >= 60
    4. a 4H or 1H signal in that direction with ai_score >= 6

    Past the gates the multiplier chain runs on the highest-timeframe
    signal in the dominant direction. A raw product below the minimum
    gives SKIP; otherwise EXECUTE with the clamped multiplier applied
    to the base contract count.
    """
    signal_map = _as_signal_map(signals)
    if not signal_map:
        return _wait("No active signals")

    confluence = calculate_confluence(signal_map)
    if confluence.direction is None:
        return _wait("No dominant direction", confluence=confluence.contributions)

    direction = confluence.direction
    score = confluence.score
    if score < CONFLUENCE_THRESHOLD:
        return _wait(
            f"Confluence {score:.1f}% below {CONFLUENCE_THRESHOLD:.0f}% threshold",
            confluence_score=score,
            direction=direction,
            confluence=confluence.contributions,
        )

    if not has_htf_support(signal_map, direction):
        return _wait(
            f"No 4H/1H {direction.value} signal with AI score >= {HTF_MIN_AI_SCORE:.0f}",
            confluence_score=score,
            direction=direction,
            confluence=confluence.contributions,
        )

    entry = select_entry_signal(signal_map, direction)
    phase_list = [phase for phase in _as_phase_list(phases) if phase.symbol == entry.ticker]

    htf_alignment = determine_htf_alignment(entry, signal_map, phase_list)
    boosts = phase_and_trend_boosts(entry, phase_list, trend_alignment)
    breakdown = DecisionBreakdown(
        confluence_multiplier=step_lookup(CONFLUENCE_MULTIPLIERS, score),
        quality_multiplier=QUALITY_MULTIPLIERS[entry.quality],
        htf_alignment_multiplier=HTF_ALIGNMENT_MULTIPLIERS[htf_alignment],
        rr_multiplier=step_lookup(RR_MULTIPLIERS, entry.risk.rr_ratio_t1),
        volume_multiplier=step_lookup(VOLUME_MULTIPLIERS, entry.market_context.volume_vs_avg),
        trend_multiplier=step_lookup(TREND_STRENGTH_MULTIPLIERS, entry.trend.strength),
        session_multiplier=SESSION_MULTIPLIERS[entry.time_context.market_session],
        day_multiplier=DAY_MULTIPLIERS[entry.time_context.day_of_week],
        phase_confidence_boost=boosts.phase_confidence_boost,
        phase_position_boost=boosts.phase_position_boost,
        trend_alignment_boost=boosts.trend_alignment_boost,
    )
    raw = breakdown.raw_multiplier()
    final = min(max(raw, MIN_MULTIPLIER), MAX_MULTIPLIER)
    breakdown = breakdown.model_copy(update={"final_multiplier": final})

    common = dict(
        breakdown=breakdown,
        engine_version=ENGINE_VERSION,
        confluence_score=score,
        direction=direction,
        htf_alignment=htf_alignment,
        raw_multiplier=raw,
        entry_signal=entry,
        confluence=confluence.contributions,
    )

    if raw < MIN_MULTIPLIER:
        return Decision(
            decision=Verdict.SKIP,
            reason=f"Raw multiplier {raw:.2f}x below minimum {MIN_MULTIPLIER:.2f}x",
            **common,
        )

    base = entry.risk.recommended_contracts or base_contract_size
    contracts = max(1, int(round_half_up(base * final)))
    return Decision(
        decision=Verdict.EXECUTE,
        reason=f"{direction.value} signal with {score:.1f}% confluence, {final:.2f}x multiplier",
        recommended_contracts=contracts,
        stop_loss=entry.entry.stop_loss,
        target_1=entry.entry.target_1,
        target_2=entry.entry.target_2,
        **common,
    )


class DecisionEngine:
    """
    Stateless verdicts with per-verdict counters.

    The engine holds no market state; callers pass a snapshot taken from
    the stores (snapshot-then-decide). Counters are the only mutable
    state and are guarded by a lock so the engine can be shared across
    request handlers.
    """

    def __init__(self, config: DecisionConfig | None = None):
        self.config = config or DecisionConfig()
        self._lock = threading.Lock()
        self._stats = {
            "processed": 0,
            "execute": 0,
            "wait": 0,
            "skip": 0,
        }
        logger.info(
            f"{LogCategory.DECISION} DecisionEngine initialized: engine_version={ENGINE_VERSION}, "
            f"base_contract_size={self.config.base_contract_size}"
        )

    def decide(
        self,
        signals: SignalInput,
        phases: PhaseInput = None,
        trend_alignment: Optional[TrendAlignment] = None,
    ) -> Decision:
        decision = decide(signals, phases, trend_alignment, self.config.base_contract_size)
        self._record(decision)
        return decision

    def decide_snapshot(self, snapshot: MarketSnapshot) -> Decision:
        """Decide on a store snapshot for one ticker."""
        return self.decide(snapshot.signals, snapshot.phases, snapshot.trend_alignment)

    def _record(self, decision: Decision) -> None:
        with self._lock:
            self._stats["processed"] += 1
            self._stats[decision.decision.value.lower()] += 1

        ticker = decision.entry_signal.ticker if decision.entry_signal else "-"
        if decision.is_execute:
            logger.info(
                f"{LogCategory.DECISION} EXECUTE {ticker}: {decision.reason} "
                f"-> {decision.recommended_contracts} contracts"
            )
        else:
            logger.debug(f"{LogCategory.DECISION} {decision.decision.value} {ticker}: {decision.reason}")

    def get_statistics(self) -> dict[str, Any]:
        """Get verdict counters."""
        with self._lock:
            return self._stats.copy()
