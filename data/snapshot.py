"""
Point-in-time view of the three stores for one ticker.

The decision engine never reads the stores directly; it receives a
MarketSnapshot so that one evaluation sees a consistent set of signals,
phases and trend state taken at a single instant.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from config.constants import TimeframeRole
from core.domain.base import ensure_utc
from core.domain.phase import Phase
from core.domain.signal import Signal
from core.domain.trend import TrendAlignment, TrendSnapshot
from data.phase_store import PhaseStore
from data.signal_store import SignalStore
from data.trend_store import TrendStore


@dataclass(frozen=True)
class MarketSnapshot:
    ticker: str
    taken_at: datetime
    signals: Mapping[str, Signal] = field(default_factory=dict)
    phases: Mapping[TimeframeRole, Phase] = field(default_factory=dict)
    trend: Optional[TrendSnapshot] = None
    trend_alignment: Optional[TrendAlignment] = None

    def __post_init__(self):
        # Read-only views over private copies
        object.__setattr__(self, "signals", MappingProxyType(dict(self.signals)))
        object.__setattr__(self, "phases", MappingProxyType(dict(self.phases)))

    @property
    def is_empty(self) -> bool:
        return not self.signals

    def summary(self) -> dict:
        return {
            "ticker": self.ticker,
            "taken_at": self.taken_at.isoformat(),
            "signals": sorted(self.signals, key=int, reverse=True),
            "phases": sorted(role.value for role in self.phases),
            "trend": self.trend_alignment.dominant_trend.value if self.trend_alignment else None,
        }


def take_snapshot(
    signal_store: SignalStore,
    phase_store: PhaseStore,
    trend_store: TrendStore,
    ticker: str,
    now: datetime | None = None,
) -> MarketSnapshot:
    """Collect every active item for a ticker as of ``now``."""
    now = ensure_utc(now)
    ticker = ticker.upper()
    signals = {tf: stored.signal for tf, stored in signal_store.active_snapshot(ticker, now).items()}
    phases = {role: stored.phase for role, stored in phase_store.active_for_symbol(ticker, now).items()}
    stored_trend = trend_store.get(ticker, now)
    return MarketSnapshot(
        ticker=ticker,
        taken_at=now,
        signals=signals,
        phases=phases,
        trend=stored_trend.snapshot if stored_trend else None,
        trend_alignment=stored_trend.alignment if stored_trend else None,
    )
