"""
Utility modules for the options decision pipeline.

Public API:
    - ensure_finite: Replace NaN/Inf with a logged default
    - require_finite: Raise on NaN/Inf instead
    - is_finite_number: True for real, finite int/float values
    - round_half_up: Deterministic half-up rounding
    - round_cents / round_up_cents / round_down_cents: Price rounding
"""

from utils.numerical_validation import (
    ensure_finite,
    is_finite_number,
    require_finite,
    round_cents,
    round_down_cents,
    round_half_up,
    round_up_cents,
)

__all__ = [
    "ensure_finite",
    "is_finite_number",
    "require_finite",
    "round_cents",
    "round_down_cents",
    "round_half_up",
    "round_up_cents",
]
