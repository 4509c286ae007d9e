"""
Ledger records: the durable audit trail of every decision.
"""
from datetime import datetime
from typing import Optional

from pydantic import Field, model_validator

from config.constants import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    DteBucket,
    ExitReason,
    LiquidityRegime,
    Quality,
    TradeType,
    TrendDirection,
    TrendRegime,
    TrendStrength,
    Verdict,
    VolatilityRegime,
)
from core.domain.base import DomainEntity
from core.domain.decision import DecisionBreakdown
from core.domain.options import Execution
from core.domain.phase import Phase
from core.domain.signal import Signal, Timeframe
from core.domain.trend import TrendAlignment


class PhaseContext(DomainEntity):
    regime_phase: Optional[Phase] = None
    bias_phase: Optional[Phase] = None


class RegimeSnapshot(DomainEntity):
    volatility: VolatilityRegime = VolatilityRegime.NORMAL
    trend: TrendRegime = TrendRegime.NEUTRAL
    liquidity: LiquidityRegime = LiquidityRegime.NORMAL
    iv_rank: float = Field(default=50.0, ge=0, le=100)

    @classmethod
    def from_alignment(
        cls,
        alignment: Optional[TrendAlignment],
        iv_rank: float = 50.0,
        volatility: VolatilityRegime = VolatilityRegime.NORMAL,
        liquidity: LiquidityRegime = LiquidityRegime.NORMAL,
    ) -> "RegimeSnapshot":
        """Derive the trend regime from a trend alignment summary."""
        trend = TrendRegime.NEUTRAL
        if alignment is not None and alignment.strength != TrendStrength.CHOPPY:
            strong = alignment.strength == TrendStrength.STRONG
            if alignment.dominant_trend == TrendDirection.BULLISH:
                trend = TrendRegime.STRONG_BULL if strong else TrendRegime.BULL
            elif alignment.dominant_trend == TrendDirection.BEARISH:
                trend = TrendRegime.STRONG_BEAR if strong else TrendRegime.BEAR
        return cls(volatility=volatility, trend=trend, liquidity=liquidity, iv_rank=iv_rank)


class Hypothetical(DomainEntity):
    """What a non-executed signal would have done."""

    would_have_executed: bool


class ExitData(DomainEntity):
    """Exit fields appended once to an executed ledger entry."""

    exit_time: datetime
    exit_price: float = Field(..., gt=0)
    exit_iv: float = Field(..., gt=0)
    exit_delta: float = Field(..., ge=-1.0, le=1.0)
    underlying_at_exit: float = Field(..., gt=0)
    pnl_gross: float
    pnl_net: float
    hold_time_seconds: int = Field(..., ge=0)
    exit_reason: ExitReason
    pnl_from_delta: float
    pnl_from_iv: float
    pnl_from_theta: float
    pnl_from_gamma: float
    total_commission: float = Field(..., ge=0)
    total_spread_cost: float = Field(..., ge=0)
    total_slippage: float = Field(..., ge=0)
    realized_r: float

    @property
    def attribution_total(self) -> float:
        return self.pnl_from_delta + self.pnl_from_iv + self.pnl_from_theta + self.pnl_from_gamma


class DecisionInputs(DomainEntity):
    """
    Engine inputs captured at decision time.

    Phases are not repeated here; the entry's phase_context already holds
    every phase the engine saw.
    """

    signals: dict[Timeframe, Signal] = Field(default_factory=dict)
    trend_alignment: Optional[TrendAlignment] = None
    # Verdict before execution; a rejected fill turns EXECUTE into SKIP
    engine_decision: Optional[Verdict] = None


class LedgerEntryCreate(DomainEntity):
    """Everything a caller supplies when appending to the ledger."""

    engine_version: str = Field(..., min_length=1)
    signal: Signal
    phase_context: Optional[PhaseContext] = None
    decision: Verdict
    decision_reason: str
    decision_breakdown: DecisionBreakdown
    confluence_score: float = Field(..., ge=0, le=100)
    execution: Optional[Execution] = None
    regime: RegimeSnapshot = Field(default_factory=RegimeSnapshot)
    hypothetical: Optional[Hypothetical] = None
    decision_inputs: Optional[DecisionInputs] = None

    @model_validator(mode="after")
    def validate_execution_presence(self) -> "LedgerEntryCreate":
        """Executed decisions carry an execution; nothing else does."""
        if (self.decision == Verdict.EXECUTE) != (self.execution is not None):
            raise ValueError(
                f"execution must be present iff decision is EXECUTE (decision={self.decision.value})"
            )
        return self


class LedgerEntry(LedgerEntryCreate):
    """A persisted ledger row: the create payload plus identity and exit."""

    id: str
    created_at: datetime
    exit: Optional[ExitData] = None

    @property
    def has_exit(self) -> bool:
        return self.exit is not None


class LedgerQuery(DomainEntity):
    """Ledger filters. Unset fields do not constrain the result."""

    decision: Optional[Verdict] = None
    timeframe: Optional[Timeframe] = None
    quality: Optional[Quality] = None
    ticker: Optional[str] = None
    engine_version: Optional[str] = None
    dte_bucket: Optional[DteBucket] = None
    trade_type: Optional[TradeType] = None
    regime_volatility: Optional[VolatilityRegime] = None
    min_confluence: Optional[float] = Field(default=None, ge=0, le=100)
    max_confluence: Optional[float] = Field(default=None, ge=0, le=100)
    exit_reason: Optional[ExitReason] = None
    has_exit: Optional[bool] = None
    has_hypothetical: Optional[bool] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: int = Field(default=DEFAULT_QUERY_LIMIT, ge=1, le=MAX_QUERY_LIMIT)
    offset: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_confluence_range(self) -> "LedgerQuery":
        if (
            self.min_confluence is not None
            and self.max_confluence is not None
            and self.min_confluence > self.max_confluence
        ):
            raise ValueError("min_confluence must not exceed max_confluence")
        return self
