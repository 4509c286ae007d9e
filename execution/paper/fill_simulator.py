"""
Fill simulation for paper trades.

Buys fill at ask plus size-dependent slippage and sells at bid minus
slippage, so paper results are never better than the quoted market.
Spread and slippage are deterministic: the spread is the midpoint of the
DTE bucket's range and slippage scales linearly with order size.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from config.constants import (
    COMMISSION_PER_CONTRACT,
    CONTRACT_MULTIPLIER,
    MIN_OPTION_PRICE,
    DteBucket,
    FillQuality,
    OptionType,
)
from core.domain.options import ExitFill, Fill, Greeks, OptionContract, classify_dte_bucket
from utils.numerical_validation import round_cents, round_down_cents, round_half_up, round_up_cents

logger = logging.getLogger(__name__)

SPREAD_RANGES: Mapping[DteBucket, tuple[float, float]] = MappingProxyType({
    DteBucket.ZERO_DTE: (0.03, 0.05),
    DteBucket.WEEKLY: (0.02, 0.03),
    DteBucket.MONTHLY: (0.01, 0.02),
    DteBucket.LEAP: (0.005, 0.01),
})

MIN_SLIPPAGE_PCT = 0.005
MAX_SLIPPAGE_PCT = 0.02
SLIPPAGE_FULL_SIZE = 100
PARTIAL_FILL_THRESHOLD = 50
PARTIAL_FILL_RATIO = 0.85


@dataclass(frozen=True)
class Quote:
    theoretical: float
    bid: float
    ask: float
    spread_pct: float


def intrinsic_value(option_type: OptionType, strike: float, underlying_price: float) -> float:
    if option_type == OptionType.CALL:
        return max(0.0, underlying_price - strike)
    return max(0.0, strike - underlying_price)


def theoretical_price(contract: OptionContract, underlying_price: float, greeks: Greeks) -> float:
    """Intrinsic value plus a vega-scaled time value, floored at one cent."""
    intrinsic = intrinsic_value(contract.option_type, contract.strike, underlying_price)
    time_value = greeks.vega * greeks.iv * 100.0
    return max(MIN_OPTION_PRICE, intrinsic + time_value)


def spread_pct_for(dte: int) -> float:
    low, high = SPREAD_RANGES[classify_dte_bucket(dte)]
    return (low + high) / 2.0


def quote(contract: OptionContract, underlying_price: float, greeks: Greeks) -> Quote:
    theo = theoretical_price(contract, underlying_price, greeks)
    spread = spread_pct_for(contract.dte)
    half = theo * spread / 2.0
    return Quote(
        theoretical=theo,
        bid=max(MIN_OPTION_PRICE, theo - half),
        ask=theo + half,
        spread_pct=spread,
    )


def slippage_pct(contracts: int) -> float:
    """0.5% for a single lot rising linearly to 2% at 100+ contracts."""
    size = min(1.0, contracts / SLIPPAGE_FULL_SIZE)
    return MIN_SLIPPAGE_PCT + (MAX_SLIPPAGE_PCT - MIN_SLIPPAGE_PCT) * size


def determine_fill_quality(contracts: int) -> tuple[FillQuality, int]:
    """Orders above 50 contracts fill about 85%."""
    if contracts <= PARTIAL_FILL_THRESHOLD:
        return FillQuality.FULL, contracts
    return FillQuality.PARTIAL, max(1, int(round_half_up(contracts * PARTIAL_FILL_RATIO)))


def simulate_fill(
    contract: OptionContract,
    contracts: int,
    underlying_price: float,
    greeks: Greeks,
    commission_per_contract: float = COMMISSION_PER_CONTRACT,
) -> Fill:
    """
    Simulate a buy-to-open fill.

    Args:
        contract: Contract being bought
        contracts: Requested quantity (>= 1)
        underlying_price: Spot price of the underlying
        greeks: Greeks used for the theoretical price
        commission_per_contract: Fee per filled contract

    Returns:
        Fill priced at ask + slippage, rounded up to the cent
    """
    if contracts < 1:
        raise ValueError(f"contracts must be >= 1, got {contracts}")

    q = quote(contract, underlying_price, greeks)
    slip_per_share = q.ask * slippage_pct(contracts)
    price = round_up_cents(q.ask + slip_per_share)
    fill_quality, filled = determine_fill_quality(contracts)

    fill = Fill(
        price=price,
        theoretical_price=q.theoretical,
        ask=q.ask,
        contracts=contracts,
        filled_contracts=filled,
        fill_quality=fill_quality,
        spread_pct=q.spread_pct,
        spread_cost=round_cents(q.theoretical * q.spread_pct * filled * CONTRACT_MULTIPLIER),
        slippage=round_cents(slip_per_share * filled * CONTRACT_MULTIPLIER),
        commission=round_cents(filled * commission_per_contract),
    )
    if fill_quality == FillQuality.PARTIAL:
        logger.debug(f"Partial fill: {filled}/{contracts} {contract.option_type.value} {contract.strike}")
    return fill


def simulate_exit_fill(
    contract: OptionContract,
    contracts: int,
    underlying_price: float,
    greeks: Greeks,
    commission_per_contract: float = COMMISSION_PER_CONTRACT,
) -> ExitFill:
    """Simulate a sell-to-close fill at bid - slippage, rounded down."""
    if contracts < 1:
        raise ValueError(f"contracts must be >= 1, got {contracts}")

    q = quote(contract, underlying_price, greeks)
    slip_per_share = q.bid * slippage_pct(contracts)
    price = max(MIN_OPTION_PRICE, round_down_cents(q.bid - slip_per_share))

    return ExitFill(
        price=price,
        theoretical_price=q.theoretical,
        bid=q.bid,
        slippage=round_cents(slip_per_share * contracts * CONTRACT_MULTIPLIER),
        commission=round_cents(contracts * commission_per_contract),
    )
