"""
Centralized numerical validation for the options decision pipeline.

Provides utilities to ensure that prices, Greeks and P&L figures are
finite before they are propagated to the ledger, plus the deterministic
rounding helpers shared by the decision engine and fill simulator.
"""

import logging
import math
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal
from typing import Any, Union

logger = logging.getLogger(__name__)

Numeric = Union[float, int]


def ensure_finite(
    value: Numeric,
    name: str,
    default: Numeric = 0.0,
    log_level: int = logging.WARNING
) -> Numeric:
    """
    Validates that a numeric value is finite (not NaN or Inf).

    Args:
        value: The numeric value to check.
        name: Name of the variable for logging context.
        default: fallback value to return if check fails. Defaults to 0.0.
        log_level: Logging level to use if check fails.

    Returns:
        The original value if finite, otherwise the default value.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.log(
            log_level,
            f"Non-numeric value detected for {name}: {type(value)}. Using default: {default}"
        )
        return default

    if not math.isfinite(value):
        logger.log(
            log_level,
            f"Non-finite value detected for {name}: {value}. Using default: {default}"
        )
        return default

    return value


def is_finite_number(value: Any) -> bool:
    """True for int/float values that are neither NaN nor infinite."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def round_half_up(value: float, places: int = 0) -> float:
    """
    Round half away from zero for positive values (0.5 -> 1, 2.5 -> 3).

    Python's round() is banker's rounding; contract counts and strikes
    must not depend on the parity of the integer part.
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_up_cents(value: float) -> float:
    """Round a price up to the next cent."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_CEILING))


def round_down_cents(value: float) -> float:
    """Round a price down to the previous cent."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_FLOOR))


def round_cents(value: float) -> float:
    """Round a dollar amount to the nearest cent."""
    return round_half_up(value, 2)


def require_finite(value: Numeric, name: str) -> float:
    """
    Strict counterpart of ensure_finite for values written to the ledger.

    Raises:
        ValueError: ``value`` is not a finite number
    """
    if not is_finite_number(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return float(value)
