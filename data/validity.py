"""
Signal validity windows.

A stored signal stays active for

    clamp(tf_minutes * role * quality * session, tf_minutes, 720) minutes

where role rewards higher timeframes (4H=2.0, 1H=1.5, else 1.0), quality
rewards stronger setups (EXTREME=1.5, HIGH=1.0, MEDIUM=0.75) and session
shortens validity when liquidity is thin (OPEN=0.8, MIDDAY=1.0,
POWER_HOUR=0.7, AFTERHOURS=0.5).

Expiry is lazy: stores compare expires_at against the caller's clock on
every read; nothing is evicted on a timer.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping

from config.constants import MAX_VALIDITY_MINUTES, MarketSession, Quality
from core.domain.signal import Signal

ROLE_MULTIPLIERS: Mapping[int, float] = MappingProxyType({240: 2.0, 60: 1.5})
"""Timeframe role multipliers; timeframes not listed use 1.0."""

QUALITY_VALIDITY_MULTIPLIERS: Mapping[Quality, float] = MappingProxyType({
    Quality.EXTREME: 1.5,
    Quality.HIGH: 1.0,
    Quality.MEDIUM: 0.75,
})

SESSION_VALIDITY_MULTIPLIERS: Mapping[MarketSession, float] = MappingProxyType({
    MarketSession.OPEN: 0.8,
    MarketSession.MIDDAY: 1.0,
    MarketSession.POWER_HOUR: 0.7,
    MarketSession.AFTERHOURS: 0.5,
})


@dataclass(frozen=True)
class ValidityBreakdown:
    base_minutes: int
    role_multiplier: float
    quality_multiplier: float
    session_multiplier: float
    raw_minutes: float
    validity_minutes: float

    def to_dict(self) -> dict:
        return {
            "base_minutes": self.base_minutes,
            "role_multiplier": self.role_multiplier,
            "quality_multiplier": self.quality_multiplier,
            "session_multiplier": self.session_multiplier,
            "raw_minutes": self.raw_minutes,
            "validity_minutes": self.validity_minutes,
        }


def validity_breakdown(signal: Signal, max_minutes: int = MAX_VALIDITY_MINUTES) -> ValidityBreakdown:
    """Compute every factor of a signal's validity window."""
    base = signal.timeframe_minutes
    role = ROLE_MULTIPLIERS.get(base, 1.0)
    quality = QUALITY_VALIDITY_MULTIPLIERS[signal.quality]
    session = SESSION_VALIDITY_MULTIPLIERS[signal.time_context.market_session]
    raw = base * role * quality * session
    # A 4H signal must survive at least its own bar even if max_minutes is lower
    upper = max(base, max_minutes)
    return ValidityBreakdown(
        base_minutes=base,
        role_multiplier=role,
        quality_multiplier=quality,
        session_multiplier=session,
        raw_minutes=raw,
        validity_minutes=min(max(raw, base), upper),
    )


def calculate_validity_minutes(signal: Signal, max_minutes: int = MAX_VALIDITY_MINUTES) -> float:
    """Validity window in minutes, within [timeframe, max_minutes]."""
    return validity_breakdown(signal, max_minutes).validity_minutes


def expires_at(received_at: datetime, minutes: float) -> datetime:
    return received_at + timedelta(minutes=minutes)


def is_expired(expiry: datetime, now: datetime) -> bool:
    """An item is expired from the instant its expiry is reached."""
    return now >= expiry


def remaining_minutes(expiry: datetime, now: datetime) -> float:
    """Minutes until expiry, never negative."""
    return max(0.0, (expiry - now).total_seconds() / 60.0)
