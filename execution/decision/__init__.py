from .confluence import ConfluenceResult, calculate_confluence
from .core import DecisionEngine, decide, select_entry_signal

__all__ = [
    "ConfluenceResult",
    "DecisionEngine",
    "calculate_confluence",
    "decide",
    "select_entry_signal",
]
