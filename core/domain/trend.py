"""
Multi-timeframe trend snapshots and their alignment summary.
"""
from pydantic import Field, field_validator

from config.constants import Direction, TrendDirection, TrendStrength
from core.domain.base import DomainEntity


class TimeframeTrend(DomainEntity):
    direction: TrendDirection
    open: float = Field(..., gt=0)
    close: float = Field(..., gt=0)


class TrendTimeframes(DomainEntity):
    tf3min: TimeframeTrend
    tf5min: TimeframeTrend
    tf15min: TimeframeTrend
    tf30min: TimeframeTrend
    tf60min: TimeframeTrend
    tf240min: TimeframeTrend
    tf1week: TimeframeTrend
    tf1month: TimeframeTrend

    def directions(self) -> list[TrendDirection]:
        """Directions in fixed order, shortest timeframe first."""
        return [
            self.tf3min.direction,
            self.tf5min.direction,
            self.tf15min.direction,
            self.tf30min.direction,
            self.tf60min.direction,
            self.tf240min.direction,
            self.tf1week.direction,
            self.tf1month.direction,
        ]


class TrendSnapshot(DomainEntity):
    """Per-ticker trend across eight fixed timeframes. Replaced wholesale."""

    ticker: str = Field(..., min_length=1)
    exchange: str = Field(..., min_length=1)
    timestamp: str
    price: float = Field(..., gt=0)
    timeframes: TrendTimeframes

    @field_validator("ticker")
    @classmethod
    def normalize_ticker(cls, v: str) -> str:
        return v.strip().upper()


class TrendAlignment(DomainEntity):
    bullish_count: int = Field(..., ge=0, le=8)
    bearish_count: int = Field(..., ge=0, le=8)
    neutral_count: int = Field(..., ge=0, le=8)
    alignment_score: float = Field(..., ge=0, le=100)
    dominant_trend: TrendDirection
    strength: TrendStrength
    htf_bias: TrendDirection
    ltf_bias: TrendDirection

    def htf_matches(self, direction: Direction) -> bool:
        """4H trend agrees with the trade direction. Neutral never matches."""
        if direction == Direction.LONG:
            return self.htf_bias == TrendDirection.BULLISH
        return self.htf_bias == TrendDirection.BEARISH


def calculate_trend_alignment(snapshot: TrendSnapshot) -> TrendAlignment:
    """
    Summarize a trend snapshot.

    The dominant direction is the most frequent one across the eight
    timeframes; ties prefer bullish, then bearish, then neutral.
    """
    directions = snapshot.timeframes.directions()
    bullish = directions.count(TrendDirection.BULLISH)
    bearish = directions.count(TrendDirection.BEARISH)
    neutral = directions.count(TrendDirection.NEUTRAL)

    top = max(bullish, bearish, neutral)
    if bullish == top:
        dominant = TrendDirection.BULLISH
    elif bearish == top:
        dominant = TrendDirection.BEARISH
    else:
        dominant = TrendDirection.NEUTRAL

    score = top / 8 * 100
    if score >= 75:
        strength = TrendStrength.STRONG
    elif score >= 62.5:
        strength = TrendStrength.MODERATE
    elif score >= 50:
        strength = TrendStrength.WEAK
    else:
        strength = TrendStrength.CHOPPY

    ltf = directions[:2]
    ltf_bull = ltf.count(TrendDirection.BULLISH)
    ltf_bear = ltf.count(TrendDirection.BEARISH)
    if ltf_bull > ltf_bear:
        ltf_bias = TrendDirection.BULLISH
    elif ltf_bear > ltf_bull:
        ltf_bias = TrendDirection.BEARISH
    else:
        ltf_bias = TrendDirection.NEUTRAL

    return TrendAlignment(
        bullish_count=bullish,
        bearish_count=bearish,
        neutral_count=neutral,
        alignment_score=score,
        dominant_trend=dominant,
        strength=strength,
        htf_bias=snapshot.timeframes.tf240min.direction,
        ltf_bias=ltf_bias,
    )
