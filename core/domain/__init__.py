"""
Domain models for the options decision pipeline.
"""
from core.domain.decision import Decision, DecisionBreakdown
from core.domain.ledger import (
    DecisionInputs,
    ExitData,
    Hypothetical,
    LedgerEntry,
    LedgerEntryCreate,
    LedgerQuery,
    PhaseContext,
    RegimeSnapshot,
)
from core.domain.options import Execution, Fill, Greeks, OptionContract
from core.domain.phase import Phase
from core.domain.signal import Signal
from core.domain.trend import TrendAlignment, TrendSnapshot, calculate_trend_alignment

__all__ = [
    "Decision",
    "DecisionBreakdown",
    "DecisionInputs",
    "ExitData",
    "Execution",
    "Fill",
    "Greeks",
    "Hypothetical",
    "LedgerEntry",
    "LedgerEntryCreate",
    "LedgerQuery",
    "OptionContract",
    "Phase",
    "PhaseContext",
    "RegimeSnapshot",
    "Signal",
    "TrendAlignment",
    "TrendSnapshot",
    "calculate_trend_alignment",
]
