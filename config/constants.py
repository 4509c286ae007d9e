"""
Configuration constants for the options decision pipeline.

This module defines core constants used throughout the application including:
- Closed enumerations for signals, phases, decisions and option contracts
- Engine version carried on every decision and ledger entry
- Contract economics (multiplier, commission)
- Default timeouts and retry counts

Example:
    >>> from config.constants import Direction, Quality, ENGINE_VERSION
    >>> direction = Direction.LONG
    >>> assert Quality.EXTREME.value == "EXTREME"
"""

from enum import Enum
from types import MappingProxyType
from typing import Final, Mapping


class Direction(str, Enum):
    """
    Trade direction of a signal.

    Attributes:
        LONG: Bullish signal, traded with CALL options
        SHORT: Bearish signal, traded with PUT options
    """

    LONG = "LONG"
    SHORT = "SHORT"


class Quality(str, Enum):
    """Signal quality tiers, ordered by QUALITY_PRIORITY."""

    EXTREME = "EXTREME"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


class MarketSession(str, Enum):
    OPEN = "OPEN"
    MIDDAY = "MIDDAY"
    POWER_HOUR = "POWER_HOUR"
    AFTERHOURS = "AFTERHOURS"


class DayOfWeek(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"


class TimeframeRole(str, Enum):
    """
    Role of the timeframe a phase event was generated on.

    REGIME phases come from the 4H chart and BIAS phases from the 1H chart;
    only those two roles feed the decision engine's alignment checks.
    """

    REGIME = "REGIME"
    BIAS = "BIAS"
    SETUP_FORMATION = "SETUP_FORMATION"
    STRUCTURAL = "STRUCTURAL"


class DirectionalImplication(str, Enum):
    UPSIDE_POTENTIAL = "UPSIDE_POTENTIAL"
    DOWNSIDE_POTENTIAL = "DOWNSIDE_POTENTIAL"
    NEUTRAL = "NEUTRAL"


class TrendDirection(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class TrendStrength(str, Enum):
    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"
    CHOPPY = "CHOPPY"


class Verdict(str, Enum):
    """
    Decision engine verdicts.

    Attributes:
        EXECUTE: Open a paper position sized by the multiplier chain
        WAIT: Gate failed (no direction, low confluence, no HTF bias)
        SKIP: Setup passed the gates but the raw multiplier is below minimum
    """

    EXECUTE = "EXECUTE"
    WAIT = "WAIT"
    SKIP = "SKIP"


class HTFAlignment(str, Enum):
    PERFECT = "PERFECT"
    GOOD = "GOOD"
    WEAK = "WEAK"
    COUNTER = "COUNTER"


class OptionType(str, Enum):
    CALL = "CALL"
    PUT = "PUT"


class DteBucket(str, Enum):
    ZERO_DTE = "0DTE"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    LEAP = "LEAP"


class FillQuality(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class ExitReason(str, Enum):
    TARGET_1 = "TARGET_1"
    TARGET_2 = "TARGET_2"
    STOP_LOSS = "STOP_LOSS"
    THETA_DECAY = "THETA_DECAY"
    MANUAL = "MANUAL"


class VolatilityRegime(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    EXTREME = "EXTREME"


class TrendRegime(str, Enum):
    STRONG_BULL = "STRONG_BULL"
    BULL = "BULL"
    NEUTRAL = "NEUTRAL"
    BEAR = "BEAR"
    STRONG_BEAR = "STRONG_BEAR"


class LiquidityRegime(str, Enum):
    HIGH = "HIGH"
    NORMAL = "NORMAL"
    LOW = "LOW"


class TradeType(str, Enum):
    SCALP = "SCALP"
    DAY = "DAY"
    SWING = "SWING"


# Timeframes
TIMEFRAMES: Final[tuple[str, ...]] = ("3", "5", "15", "30", "60", "240")
"""Accepted signal timeframes, in minutes, as they arrive on the wire."""

TIMEFRAME_PRIORITY: Final[tuple[str, ...]] = ("240", "60", "30", "15", "5", "3")
"""Entry-signal selection order: higher timeframes first."""

QUALITY_PRIORITY: Final[Mapping[str, int]] = MappingProxyType({"EXTREME": 3, "HIGH": 2, "MEDIUM": 1})
"""Rank used for store conflict resolution. Higher rank wins."""

# Engine
ENGINE_VERSION: Final[str] = "1.0.0"
"""
Version of the decision tables.

Stamped on every Decision and LedgerEntry so that a ledger row can be
replayed against the exact tables that produced it.
"""

# Contract economics
CONTRACT_MULTIPLIER: Final[int] = 100
"""Shares controlled by one equity option contract."""

COMMISSION_PER_CONTRACT: Final[float] = 0.65
"""Broker commission per contract, per side."""

MIN_OPTION_PRICE: Final[float] = 0.01
"""Price floor for any simulated option quote."""

DEFAULT_RISK_FREE_RATE: Final[float] = 0.05
"""Annualized risk-free rate for Black-Scholes."""

DEFAULT_IV_RANK: Final[float] = 50.0
"""IV rank assumed when no market context provides one."""

DEFAULT_LEAP_DTE: Final[int] = 365
"""Days to expiry used for timeframes above 4H."""

# Stores
MAX_VALIDITY_MINUTES: Final[int] = 720
"""Upper clamp for signal validity windows (12 hours)."""

TREND_TTL_MINUTES: Final[int] = 60
"""Lifetime of a trend snapshot."""

DEFAULT_PHASE_DECAY_MINUTES: Final[int] = 60
"""Phase decay when neither the payload nor the timeframe table give one."""

# Ledger
DEFAULT_QUERY_LIMIT: Final[int] = 100
"""Default page size for ledger queries."""

MAX_QUERY_LIMIT: Final[int] = 1000
"""Maximum page size for ledger queries."""

DEFAULT_MAX_RETRIES: Final[int] = 3
"""Default retry attempts for ledger writes."""

DEFAULT_DB_TIMEOUT: Final[float] = 30.0
"""SQLite connection timeout in seconds."""

DEFAULT_QUERY_TIMEOUT: Final[float] = 10.0
"""Maximum wall time for a single ledger statement in seconds."""

# Events
EVENT_HISTORY_SIZE: Final[int] = 1000
"""Number of events retained by the event bus for inspection."""
