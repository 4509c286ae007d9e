"""
Options contract, Greeks, fill and execution models.
"""
from datetime import date, datetime
from typing import Optional

from pydantic import Field

from config.constants import DteBucket, FillQuality, OptionType
from core.domain.base import DomainEntity, now_utc


def classify_dte_bucket(dte: int) -> DteBucket:
    """0 -> 0DTE, <=7 -> WEEKLY, <=45 -> MONTHLY, else LEAP."""
    if dte <= 0:
        return DteBucket.ZERO_DTE
    if dte <= 7:
        return DteBucket.WEEKLY
    if dte <= 45:
        return DteBucket.MONTHLY
    return DteBucket.LEAP


class OptionContract(DomainEntity):
    option_type: OptionType
    strike: float = Field(..., gt=0)
    expiry: date
    dte: int = Field(..., ge=0)
    ticker: str = ""

    @property
    def dte_bucket(self) -> DteBucket:
        return classify_dte_bucket(self.dte)


class Greeks(DomainEntity):
    delta: float = Field(..., ge=-1.0, le=1.0)
    gamma: float = Field(..., ge=0.0)
    theta: float = Field(..., le=0.0)
    vega: float = Field(..., ge=0.0)
    iv: float = Field(..., gt=0.0)


class Fill(DomainEntity):
    """Simulated fill. Dollar costs are totals across filled contracts."""

    price: float = Field(..., gt=0)
    theoretical_price: float = Field(..., gt=0)
    ask: float = Field(..., gt=0)
    contracts: int = Field(..., ge=1)
    filled_contracts: int = Field(..., ge=1)
    fill_quality: FillQuality
    spread_pct: float = Field(..., ge=0)
    spread_cost: float = Field(..., ge=0)
    slippage: float = Field(..., ge=0)
    commission: float = Field(..., ge=0)


class ExitFill(DomainEntity):
    price: float = Field(..., gt=0)
    theoretical_price: float = Field(..., gt=0)
    bid: float = Field(..., gt=0)
    slippage: float = Field(..., ge=0)
    commission: float = Field(..., ge=0)


class Execution(DomainEntity):
    """
    A simulated options trade.

    spread_cost, slippage and commission are dollar totals for the
    filled quantity; entry_price is per share of the contract.
    """

    option_type: OptionType
    strike: float = Field(..., gt=0)
    expiry: date
    dte: int = Field(..., ge=0)
    contracts: int = Field(..., ge=1)
    entry_price: float = Field(..., gt=0)
    entry_iv: float = Field(..., gt=0)
    entry_delta: float = Field(..., ge=-1.0, le=1.0)
    entry_theta: float = Field(..., le=0.0)
    entry_gamma: float = Field(..., ge=0.0)
    entry_vega: float = Field(..., ge=0.0)
    spread_cost: float = Field(..., ge=0)
    slippage: float = Field(..., ge=0)
    fill_quality: FillQuality
    filled_contracts: int = Field(..., ge=1)
    commission: float = Field(..., ge=0)
    underlying_at_entry: float = Field(..., gt=0)
    risk_amount: float = Field(..., ge=0)
    entry_time: datetime = Field(default_factory=now_utc)
    greeks_fallback: bool = False

    @property
    def dte_bucket(self) -> DteBucket:
        return classify_dte_bucket(self.dte)

    @property
    def contract(self) -> OptionContract:
        return OptionContract(
            option_type=self.option_type,
            strike=self.strike,
            expiry=self.expiry,
            dte=self.dte,
        )

    @property
    def entry_greeks(self) -> Greeks:
        return Greeks(
            delta=self.entry_delta,
            gamma=self.entry_gamma,
            theta=self.entry_theta,
            vega=self.entry_vega,
            iv=self.entry_iv,
        )


class ExecutionPreview(DomainEntity):
    contract: OptionContract
    greeks: Greeks
    estimated_price: float
    estimated_cost: float
    contracts: int
    greeks_fallback: bool = False
    warning: Optional[str] = None
