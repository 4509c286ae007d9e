"""
Enriched trading signal.

A Signal describes one trading opportunity on one timeframe, together with
the entry/stop/target levels, risk sizing hints and the market, trend and
multi-timeframe context captured when the bar closed.
"""
from typing import Literal

from pydantic import Field, field_validator

from config.constants import (
    DayOfWeek,
    Direction,
    MarketSession,
    Quality,
)
from core.domain.base import DomainEntity

Timeframe = Literal["3", "5", "15", "30", "60", "240"]


class SignalInfo(DomainEntity):
    type: Direction
    timeframe: Timeframe
    quality: Quality
    ai_score: float = Field(..., ge=0.0, le=10.5)
    timestamp: int = Field(..., ge=0, description="Bar timestamp, epoch milliseconds")
    bar_time: str = ""

    @field_validator("timeframe", mode="before")
    @classmethod
    def coerce_timeframe(cls, v):
        """Accept numeric timeframes (240 -> "240")."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class Instrument(DomainEntity):
    exchange: str
    ticker: str = Field(..., min_length=1)
    current_price: float = Field(..., gt=0)

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.strip().upper()


class Entry(DomainEntity):
    price: float = Field(..., gt=0)
    stop_loss: float = Field(..., gt=0)
    target_1: float = Field(..., gt=0)
    target_2: float = Field(..., gt=0)
    stop_reason: str = ""


class Risk(DomainEntity):
    amount: float
    rr_ratio_t1: float
    rr_ratio_t2: float
    stop_distance_pct: float
    recommended_shares: int = Field(..., ge=0)
    recommended_contracts: int = Field(..., ge=0)
    position_multiplier: float
    account_risk_pct: float
    max_loss_dollars: float


class MarketContext(DomainEntity):
    vwap: float
    pmh: float
    pml: float
    day_open: float
    day_change_pct: float
    price_vs_vwap_pct: float
    distance_to_pmh_pct: float
    distance_to_pml_pct: float
    atr: float = Field(..., gt=0)
    volume_vs_avg: float = Field(..., ge=0)
    candle_direction: Literal["GREEN", "RED"]
    candle_size_atr: float


class TrendContext(DomainEntity):
    ema_8: float
    ema_21: float
    ema_50: float
    alignment: Literal["BULLISH", "BEARISH", "NEUTRAL"]
    strength: float = Field(..., ge=0, le=100)
    rsi: float = Field(..., ge=0, le=100)
    macd_signal: Literal["BULLISH", "BEARISH"]


class MtfContext(DomainEntity):
    """Higher-timeframe bias as seen by the indicator that fired the signal."""

    bias_4h: Direction = Field(..., alias="4h_bias")
    rsi_4h: float = Field(..., alias="4h_rsi", ge=0, le=100)
    bias_1h: Direction = Field(..., alias="1h_bias")


class TimeContext(DomainEntity):
    market_session: MarketSession
    day_of_week: DayOfWeek


class Signal(DomainEntity):
    """
    Enriched signal as delivered by the alerting webhook.

    Immutable once stored; the signal store supersedes it only with a
    strictly higher quality signal for the same ticker and timeframe.
    """

    signal: SignalInfo
    instrument: Instrument
    entry: Entry
    risk: Risk
    market_context: MarketContext
    trend: TrendContext
    mtf_context: MtfContext
    score_breakdown: dict[str, float] = Field(default_factory=dict)
    components: tuple[str, ...] = ()
    time_context: TimeContext

    @property
    def direction(self) -> Direction:
        return self.signal.type

    @property
    def timeframe(self) -> str:
        return self.signal.timeframe

    @property
    def timeframe_minutes(self) -> int:
        return int(self.signal.timeframe)

    @property
    def quality(self) -> Quality:
        return self.signal.quality

    @property
    def ticker(self) -> str:
        return self.instrument.ticker
