"""
Timeframe confluence.

Each active signal contributes its timeframe weight to the direction it
points. The dominant direction is the one with the larger weighted sum;
the confluence score is that sum as a percentage.
"""

from dataclasses import dataclass, field
from typing import Mapping, Optional

from config.constants import TIMEFRAME_PRIORITY, Direction
from core.domain.decision import TimeframeContribution
from core.domain.signal import Signal
from execution.decision.matrices import CONFLUENCE_WEIGHTS

# Scores are rounded so that table thresholds (60, 80, ...) compare exactly
_SCORE_PRECISION = 6


@dataclass(frozen=True)
class ConfluenceResult:
    direction: Optional[Direction]
    score: float
    long_score: float
    short_score: float
    contributions: dict[str, TimeframeContribution] = field(default_factory=dict)


def _weighted_score(signals: Mapping[str, Signal], direction: Direction) -> float:
    total = 0.0
    for tf in TIMEFRAME_PRIORITY:
        signal = signals.get(tf)
        if signal is not None and signal.direction == direction:
            total += CONFLUENCE_WEIGHTS[tf]
    return round(min(max(total * 100.0, 0.0), 100.0), _SCORE_PRECISION)


def calculate_confluence(signals: Mapping[str, Signal]) -> ConfluenceResult:
    """
    Score both directions over a {timeframe: signal} map.

    Ties above zero resolve to LONG. With no signals, or only zero-weight
    ones, the result has no direction and a score of 0.
    """
    long_score = _weighted_score(signals, Direction.LONG)
    short_score = _weighted_score(signals, Direction.SHORT)

    if long_score == 0.0 and short_score == 0.0:
        direction = None
    elif long_score >= short_score:
        direction = Direction.LONG
    else:
        direction = Direction.SHORT

    score = 0.0
    if direction is not None:
        score = long_score if direction == Direction.LONG else short_score

    contributions: dict[str, TimeframeContribution] = {}
    for tf in TIMEFRAME_PRIORITY:
        signal = signals.get(tf)
        if signal is None:
            continue
        aligned = direction is not None and signal.direction == direction
        weight = CONFLUENCE_WEIGHTS[tf]
        contributions[tf] = TimeframeContribution(
            aligned=aligned,
            weight=weight,
            contribution=round(weight * 100.0, _SCORE_PRECISION) if aligned else 0.0,
        )

    return ConfluenceResult(
        direction=direction,
        score=score,
        long_score=long_score,
        short_score=short_score,
        contributions=contributions,
    )
