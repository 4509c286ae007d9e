"""
Option contract selection.

Maps a signal to a single at-the-money contract:
- LONG -> CALL, SHORT -> PUT
- DTE by signal timeframe: scalps (<=5m) trade 0DTE, intraday (<=1h)
  trades the weekly expiring next Friday, 4H swings trade 30-44 DTE and
  anything slower trades a LEAP
- strike = underlying rounded half-up to the listed strike increment

All choices are deterministic given the signal and the as-of date.
"""

from datetime import date, datetime, timedelta
from typing import Optional

from config.constants import DEFAULT_LEAP_DTE, Direction, OptionType
from core.domain.base import now_utc
from core.domain.decision import Decision
from core.domain.options import OptionContract, classify_dte_bucket
from core.domain.signal import Signal
from utils.numerical_validation import round_half_up

__all__ = [
    "calculate_dte",
    "classify_dte_bucket",
    "days_to_next_friday",
    "select_contract",
    "select_option_type",
    "select_strike",
    "strike_increment",
]

_FRIDAY = 4


def select_option_type(direction: Direction) -> OptionType:
    return OptionType.CALL if direction == Direction.LONG else OptionType.PUT


def days_to_next_friday(as_of: date) -> int:
    """0 on a Friday, otherwise days until the coming Friday."""
    return (_FRIDAY - as_of.weekday()) % 7


def calculate_dte(timeframe_minutes: int, as_of: date, leap_dte: int = DEFAULT_LEAP_DTE) -> int:
    if timeframe_minutes <= 5:
        return 0
    if timeframe_minutes <= 60:
        return days_to_next_friday(as_of)
    if timeframe_minutes <= 240:
        return 30 + as_of.day % 15
    return leap_dte


def strike_increment(underlying_price: float) -> float:
    if underlying_price < 50:
        return 0.5
    if underlying_price < 200:
        return 1.0
    if underlying_price < 500:
        return 5.0
    return 10.0


def select_strike(underlying_price: float) -> float:
    """Nearest listed strike, rounding half-up."""
    increment = strike_increment(underlying_price)
    return round_half_up(underlying_price / increment) * increment


def select_contract(
    signal: Signal,
    decision: Optional[Decision] = None,
    as_of: datetime | date | None = None,
    leap_dte: int = DEFAULT_LEAP_DTE,
) -> OptionContract:
    """
    Select the contract to trade for a signal.

    Args:
        signal: Entry signal; its entry price is the underlying reference
        decision: The verdict being executed; unused by ATM selection
        as_of: Trade date (defaults to today, UTC)
        leap_dte: Days to expiry for timeframes above 4H

    Returns:
        OptionContract with expiry = as_of + dte
    """
    if as_of is None:
        trade_date = now_utc().date()
    elif isinstance(as_of, datetime):
        trade_date = as_of.date()
    else:
        trade_date = as_of

    dte = calculate_dte(signal.timeframe_minutes, trade_date, leap_dte)
    return OptionContract(
        option_type=select_option_type(signal.direction),
        strike=select_strike(signal.entry.price),
        expiry=trade_date + timedelta(days=dte),
        dte=dte,
        ticker=signal.ticker,
    )
