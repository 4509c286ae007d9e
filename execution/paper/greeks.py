"""
Black-Scholes Greeks for paper execution.

Implied volatility is not observed; it is estimated from the contract's
DTE bucket and an IV rank:

    iv = base_iv[bucket] * (0.5 + iv_rank / 100)

so IV rank 50 gives the base IV, 0 halves it and 100 scales it by 1.5.

The normal CDF is computed from math.erf, which is accurate to machine
precision and well inside the 1e-7 tolerance the pricing relies on.
Theta is per calendar day and vega per one volatility point.
"""

import logging
import math
from types import MappingProxyType
from typing import Mapping

from config.constants import (
    DEFAULT_IV_RANK,
    DEFAULT_RISK_FREE_RATE,
    DteBucket,
    OptionType,
)
from core.domain.options import Greeks, OptionContract, classify_dte_bucket
from execution.paper.errors import GreeksCalculationError
from utils.numerical_validation import is_finite_number

logger = logging.getLogger(__name__)

BASE_IV_BY_BUCKET: Mapping[DteBucket, float] = MappingProxyType({
    DteBucket.ZERO_DTE: 0.25,
    DteBucket.WEEKLY: 0.20,
    DteBucket.MONTHLY: 0.18,
    DteBucket.LEAP: 0.15,
})

MIN_SQRT_T = 0.001
DAYS_PER_YEAR = 365.0
_SQRT_2 = math.sqrt(2.0)
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)


def normal_cdf(x: float) -> float:
    return 0.5 * (1.0 + math.erf(x / _SQRT_2))


def normal_pdf(x: float) -> float:
    return _INV_SQRT_2PI * math.exp(-0.5 * x * x)


def implied_volatility_for(dte: int, iv_rank: float = DEFAULT_IV_RANK) -> float:
    """Estimated IV for a contract with ``dte`` days left."""
    return BASE_IV_BY_BUCKET[classify_dte_bucket(dte)] * (0.5 + iv_rank / 100.0)


def _require_positive(value: float, name: str) -> None:
    if not is_finite_number(value) or value <= 0:
        raise GreeksCalculationError(f"{name} must be finite and positive, got {value}")


def calculate_greeks(
    contract: OptionContract,
    underlying_price: float,
    iv_rank: float = DEFAULT_IV_RANK,
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE,
) -> Greeks:
    """
    Black-Scholes Greeks for a long position in ``contract``.

    Args:
        contract: Contract to price
        underlying_price: Spot price of the underlying
        iv_rank: IV rank 0-100 used to scale the bucket's base IV
        risk_free_rate: Annualized risk-free rate

    Returns:
        Greeks with delta, gamma, theta (per day), vega (per vol point), iv

    Raises:
        GreeksCalculationError: On non-finite or non-positive inputs, or if
            the model produces a non-finite result
    """
    _require_positive(underlying_price, "underlying_price")
    _require_positive(contract.strike, "strike")
    if not math.isfinite(iv_rank) or not 0.0 <= iv_rank <= 100.0:
        raise GreeksCalculationError(f"iv_rank must be within [0, 100], got {iv_rank}")
    if not math.isfinite(risk_free_rate):
        raise GreeksCalculationError(f"risk_free_rate must be finite, got {risk_free_rate}")
    if contract.dte < 0:
        raise GreeksCalculationError(f"dte must be non-negative, got {contract.dte}")

    S = float(underlying_price)
    K = float(contract.strike)
    r = float(risk_free_rate)
    sigma = implied_volatility_for(contract.dte, iv_rank)
    _require_positive(sigma, "iv")

    T = contract.dte / DAYS_PER_YEAR
    sqrt_t = max(math.sqrt(T), MIN_SQRT_T)

    d1 = (math.log(S / K) + (r + sigma * sigma / 2.0) * T) / (sigma * sqrt_t)
    d2 = d1 - sigma * sqrt_t
    pdf_d1 = normal_pdf(d1)
    discount = K * math.exp(-r * T)

    theta_base = -(S * pdf_d1 * sigma) / (2.0 * sqrt_t)
    if contract.option_type == OptionType.CALL:
        delta = normal_cdf(d1)
        theta = (theta_base - r * discount * normal_cdf(d2)) / DAYS_PER_YEAR
    else:
        delta = normal_cdf(d1) - 1.0
        theta = (theta_base + r * discount * normal_cdf(-d2)) / DAYS_PER_YEAR

    gamma = pdf_d1 / (S * sigma * sqrt_t)
    vega = S * pdf_d1 * sqrt_t / 100.0

    for name, value in (("delta", delta), ("gamma", gamma), ("theta", theta), ("vega", vega)):
        if not math.isfinite(value):
            raise GreeksCalculationError(f"{name} is not finite for strike={K} underlying={S}")

    # Deep ITM puts can carry positive theta; clamp to the long-position bound
    return Greeks(
        delta=round(min(max(delta, -1.0), 1.0), 4),
        gamma=round(max(gamma, 0.0), 6),
        theta=round(min(theta, 0.0), 4),
        vega=round(max(vega, 0.0), 4),
        iv=round(sigma, 4),
    )


def conservative_greeks(option_type: OptionType, dte: int, iv_rank: float = DEFAULT_IV_RANK) -> Greeks:
    """
    Fallback Greeks used when the model cannot price a contract.

    An at-the-money delta of +/-0.5 with no convexity, decay or vega
    exposure, at the bucket's IV estimate.
    """
    try:
        iv = implied_volatility_for(max(dte, 0), iv_rank)
    except (KeyError, TypeError):
        iv = BASE_IV_BY_BUCKET[DteBucket.MONTHLY]
    if not math.isfinite(iv) or iv <= 0:
        iv = BASE_IV_BY_BUCKET[DteBucket.MONTHLY]
    return Greeks(
        delta=0.5 if option_type == OptionType.CALL else -0.5,
        gamma=0.0,
        theta=0.0,
        vega=0.0,
        iv=round(iv, 4),
    )
