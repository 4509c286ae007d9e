"""
Frozen decision tables.

Every table is a read-only mapping or a tuple of (threshold, value) steps
evaluated top-down; the first step whose threshold is met wins. Editing a
table means bumping ENGINE_VERSION so ledger rows stay replayable against
the tables that produced them.
"""

from types import MappingProxyType
from typing import Final, Mapping

from config.constants import (
    ENGINE_VERSION,
    DayOfWeek,
    HTFAlignment,
    MarketSession,
    Quality,
)

__all__ = [
    "ENGINE_VERSION",
    "CONFLUENCE_WEIGHTS",
    "CONFLUENCE_THRESHOLD",
    "HTF_MIN_AI_SCORE",
    "HTF_TIMEFRAMES",
    "MIN_MULTIPLIER",
    "MAX_MULTIPLIER",
    "CONFLUENCE_MULTIPLIERS",
    "QUALITY_MULTIPLIERS",
    "HTF_ALIGNMENT_MULTIPLIERS",
    "RR_MULTIPLIERS",
    "VOLUME_MULTIPLIERS",
    "TREND_STRENGTH_MULTIPLIERS",
    "SESSION_MULTIPLIERS",
    "DAY_MULTIPLIERS",
    "PHASE_CONFIDENCE_BOOST",
    "PHASE_POSITION_BOOST",
    "PHASE_POSITION_MIN_CONFIDENCE",
    "TREND_STRONG_BOOST",
    "TREND_HTF_BOOST",
    "step_lookup",
]

CONFLUENCE_WEIGHTS: Mapping[str, float] = MappingProxyType({
    "240": 0.40,
    "60": 0.25,
    "30": 0.15,
    "15": 0.10,
    "5": 0.07,
    "3": 0.03,
})
"""Per-timeframe weight of an aligned signal. Sums to 1.0."""

CONFLUENCE_THRESHOLD: Final[float] = 60.0
HTF_MIN_AI_SCORE: Final[float] = 6.0
HTF_TIMEFRAMES: Final[tuple[str, ...]] = ("240", "60")

MIN_MULTIPLIER: Final[float] = 0.5
MAX_MULTIPLIER: Final[float] = 3.0

CONFLUENCE_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (90.0, 2.5),
    (80.0, 2.0),
    (70.0, 1.5),
    (60.0, 1.0),
    (50.0, 0.7),
    (0.0, 0.5),
)

QUALITY_MULTIPLIERS: Mapping[Quality, float] = MappingProxyType({
    Quality.EXTREME: 1.3,
    Quality.HIGH: 1.1,
    Quality.MEDIUM: 1.0,
})

HTF_ALIGNMENT_MULTIPLIERS: Mapping[HTFAlignment, float] = MappingProxyType({
    HTFAlignment.PERFECT: 1.3,
    HTFAlignment.GOOD: 1.15,
    HTFAlignment.WEAK: 0.85,
    HTFAlignment.COUNTER: 0.5,
})

RR_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (5.0, 1.2),
    (4.0, 1.15),
    (3.0, 1.1),
    (2.0, 1.0),
    (1.5, 0.85),
    (float("-inf"), 0.5),
)
"""Keyed on risk.rr_ratio_t1."""

VOLUME_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (1.5, 1.1),
    (0.8, 1.0),
    (float("-inf"), 0.7),
)
"""Keyed on market_context.volume_vs_avg."""

TREND_STRENGTH_MULTIPLIERS: tuple[tuple[float, float], ...] = (
    (80.0, 1.2),
    (60.0, 1.0),
    (float("-inf"), 0.8),
)
"""Keyed on trend.strength."""

SESSION_MULTIPLIERS: Mapping[MarketSession, float] = MappingProxyType({
    MarketSession.OPEN: 0.9,
    MarketSession.MIDDAY: 1.0,
    MarketSession.POWER_HOUR: 0.85,
    MarketSession.AFTERHOURS: 0.5,
})

DAY_MULTIPLIERS: Mapping[DayOfWeek, float] = MappingProxyType({
    DayOfWeek.MONDAY: 0.95,
    DayOfWeek.TUESDAY: 1.1,
    DayOfWeek.WEDNESDAY: 1.0,
    DayOfWeek.THURSDAY: 0.95,
    DayOfWeek.FRIDAY: 0.85,
})

# Phase and trend boosts, applied as (1 + boost)
PHASE_CONFIDENCE_BOOST: Final[float] = 0.20
PHASE_POSITION_BOOST: Final[float] = 0.10
PHASE_POSITION_MIN_CONFIDENCE: Final[float] = 70.0
TREND_STRONG_BOOST: Final[float] = 0.30
TREND_HTF_BOOST: Final[float] = 0.15


def step_lookup(table: tuple[tuple[float, float], ...], value: float) -> float:
    """Value of the first step whose threshold ``value`` reaches."""
    for threshold, multiplier in table:
        if value >= threshold:
            return multiplier
    return table[-1][1]
