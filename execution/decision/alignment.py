"""
Higher-timeframe alignment and regime boosts.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from config.constants import Direction, HTFAlignment, TimeframeRole, TrendStrength
from core.domain.phase import Phase
from core.domain.signal import Signal
from core.domain.trend import TrendAlignment
from execution.decision.matrices import (
    HTF_MIN_AI_SCORE,
    PHASE_CONFIDENCE_BOOST,
    PHASE_POSITION_BOOST,
    PHASE_POSITION_MIN_CONFIDENCE,
    TREND_HTF_BOOST,
    TREND_STRONG_BOOST,
)

HTF_ROLES = frozenset({TimeframeRole.REGIME, TimeframeRole.BIAS})


@dataclass(frozen=True)
class Boosts:
    phase_confidence_boost: float = 0.0
    phase_position_boost: float = 0.0
    trend_alignment_boost: float = 0.0


def _signal_supports(signal: Optional[Signal], direction: Direction) -> bool:
    return (
        signal is not None
        and signal.direction == direction
        and signal.signal.ai_score >= HTF_MIN_AI_SCORE
    )


def determine_htf_alignment(
    entry: Signal,
    signals: Mapping[str, Signal],
    phases: Iterable[Phase],
) -> HTFAlignment:
    """
    Classify how the 4H and 1H context supports the entry direction.

    4H support comes from an aligned 4H signal, the entry's 4H bias, or any
    agreeing REGIME/BIAS phase; 1H support from an aligned 1H signal or the
    entry's 1H bias. COUNTER requires both indicator biases to oppose.
    """
    direction = entry.direction
    mtf = entry.mtf_context

    phase_aligned = any(
        phase.role in HTF_ROLES and phase.agrees_with(direction) for phase in phases
    )
    aligned_4h = _signal_supports(signals.get("240"), direction) or mtf.bias_4h == direction or phase_aligned
    aligned_1h = _signal_supports(signals.get("60"), direction) or mtf.bias_1h == direction

    if aligned_4h and aligned_1h:
        return HTFAlignment.PERFECT
    if aligned_4h or aligned_1h:
        return HTFAlignment.GOOD
    if mtf.bias_4h != direction and mtf.bias_1h != direction:
        return HTFAlignment.COUNTER
    return HTFAlignment.WEAK


def phase_and_trend_boosts(
    entry: Signal,
    phases: Iterable[Phase],
    trend_alignment: Optional[TrendAlignment],
) -> Boosts:
    """Regime boosts. Missing phases or trends simply contribute zero."""
    direction = entry.direction
    confidence_boost = 0.0
    position_boost = 0.0

    for phase in phases:
        if phase.role not in HTF_ROLES or not phase.agrees_with(direction):
            continue
        if not phase.execution_guidance.trade_allowed:
            continue
        if not phase.confidence.htf_alignment:
            continue
        confidence_boost = max(confidence_boost, PHASE_CONFIDENCE_BOOST)
        if phase.confidence.confidence_score >= PHASE_POSITION_MIN_CONFIDENCE:
            position_boost = max(position_boost, PHASE_POSITION_BOOST)

    trend_boost = 0.0
    if trend_alignment is not None:
        if trend_alignment.strength == TrendStrength.STRONG:
            trend_boost += TREND_STRONG_BOOST
        if trend_alignment.htf_matches(direction):
            trend_boost += TREND_HTF_BOOST

    return Boosts(
        phase_confidence_boost=confidence_boost,
        phase_position_boost=position_boost,
        trend_alignment_boost=round(trend_boost, 6),
    )
