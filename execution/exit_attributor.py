"""
Exit P&L attribution.

Splits the gross P&L of a closed paper trade into four first-order
buckets using the Greeks captured at entry:

    delta = entry_delta * (underlying_exit - underlying_entry)
    theta = entry_theta * hold_days
    iv    = entry_vega  * (exit_iv - entry_iv) * 100
    gamma = gross - (delta + theta + iv)

each scaled by 100 shares per contract and the filled quantity. Gamma is
the residual, so the four buckets always reconcile to gross P&L.
"""

import logging
from datetime import datetime
from typing import Optional

from config.constants import CONTRACT_MULTIPLIER, Direction, ExitReason
from config.logging_config import LogCategory
from core.domain.base import ensure_utc
from core.domain.ledger import ExitData
from core.domain.options import Execution
from utils.numerical_validation import require_finite

logger = logging.getLogger(__name__)

THETA_DECAY_THRESHOLD = 0.5
SECONDS_PER_DAY = 86_400.0


def attribute_pnl(
    execution: Execution,
    exit_price: float,
    underlying_at_exit: float,
    exit_time: datetime,
    exit_iv: float,
    exit_delta: float,
    exit_reason: ExitReason,
    exit_commission: Optional[float] = None,
) -> ExitData:
    """
    Build the exit record for an execution.

    Args:
        execution: The open trade
        exit_price: Per-share exit premium
        underlying_at_exit: Spot price at exit
        exit_time: Exit timestamp (naive values are treated as UTC)
        exit_iv: Implied volatility at exit
        exit_delta: Delta at exit
        exit_reason: Why the position was closed
        exit_commission: Exit-side commission; defaults to the entry commission

    Returns:
        ExitData whose four attribution buckets sum to pnl_gross

    Raises:
        ValueError: An input or a computed P&L figure is NaN or infinite
    """
    exit_time = ensure_utc(exit_time)
    exit_price = require_finite(exit_price, "exit_price")
    underlying_at_exit = require_finite(underlying_at_exit, "underlying_at_exit")
    exit_iv = require_finite(exit_iv, "exit_iv")
    exit_delta = require_finite(exit_delta, "exit_delta")

    entry_time = ensure_utc(execution.entry_time)
    held_seconds = max(0.0, (exit_time - entry_time).total_seconds())
    hold_days = held_seconds / SECONDS_PER_DAY
    scale = CONTRACT_MULTIPLIER * execution.filled_contracts

    pnl_gross = require_finite((exit_price - execution.entry_price) * scale, "pnl_gross")
    pnl_from_delta = require_finite(
        execution.entry_delta * (underlying_at_exit - execution.underlying_at_entry) * scale,
        "pnl_from_delta",
    )
    pnl_from_theta = require_finite(execution.entry_theta * hold_days * scale, "pnl_from_theta")
    pnl_from_iv = require_finite(
        execution.entry_vega * (exit_iv - execution.entry_iv) * 100.0 * scale, "pnl_from_iv"
    )
    pnl_from_gamma = pnl_gross - (pnl_from_delta + pnl_from_theta + pnl_from_iv)

    if exit_commission is None:
        exit_commission = execution.commission
    total_commission = execution.commission + require_finite(exit_commission, "exit_commission")
    pnl_net = pnl_gross - (total_commission + execution.spread_cost + execution.slippage)
    realized_r = pnl_net / execution.risk_amount if execution.risk_amount > 0 else 0.0

    exit_data = ExitData(
        exit_time=exit_time,
        exit_price=exit_price,
        exit_iv=exit_iv,
        exit_delta=exit_delta,
        underlying_at_exit=underlying_at_exit,
        pnl_gross=pnl_gross,
        pnl_net=require_finite(pnl_net, "pnl_net"),
        hold_time_seconds=int(held_seconds),
        exit_reason=exit_reason,
        pnl_from_delta=pnl_from_delta,
        pnl_from_iv=pnl_from_iv,
        pnl_from_theta=pnl_from_theta,
        pnl_from_gamma=require_finite(pnl_from_gamma, "pnl_from_gamma"),
        total_commission=total_commission,
        total_spread_cost=execution.spread_cost,
        total_slippage=execution.slippage,
        realized_r=require_finite(realized_r, "realized_r"),
    )
    logger.debug(
        f"{LogCategory.TRADE} Attributed {exit_reason.value}: gross={pnl_gross:.2f} "
        f"net={exit_data.pnl_net:.2f} delta={pnl_from_delta:.2f} theta={pnl_from_theta:.2f} "
        f"iv={pnl_from_iv:.2f} gamma={pnl_from_gamma:.2f}"
    )
    return exit_data


def determine_exit_reason(
    direction: Direction,
    underlying_price: float,
    stop_loss: float,
    target_1: float,
    target_2: float,
    entry_price: float,
    exit_price: float,
    theta_decay_threshold: float = THETA_DECAY_THRESHOLD,
) -> ExitReason:
    """
    Classify an exit from the underlying's position relative to the levels.

    Targets are checked before the stop. When no level was reached, a
    premium loss of at least ``theta_decay_threshold`` of the entry price
    is THETA_DECAY; anything else is MANUAL.
    """
    if direction == Direction.LONG:
        if underlying_price >= target_2:
            return ExitReason.TARGET_2
        if underlying_price >= target_1:
            return ExitReason.TARGET_1
        if underlying_price <= stop_loss:
            return ExitReason.STOP_LOSS
    else:
        if underlying_price <= target_2:
            return ExitReason.TARGET_2
        if underlying_price <= target_1:
            return ExitReason.TARGET_1
        if underlying_price >= stop_loss:
            return ExitReason.STOP_LOSS

    premium_lost = entry_price - exit_price
    if entry_price > 0 and premium_lost > 0 and premium_lost / entry_price >= theta_decay_threshold:
        return ExitReason.THETA_DECAY
    return ExitReason.MANUAL
