"""
Paper options execution: contract selection, Greeks and fill simulation.
"""

from execution.paper.contract_selector import select_contract
from execution.paper.errors import ExecutionError, ExecutionErrorKind, GreeksCalculationError
from execution.paper.executor import ExitSimulation, PaperExecutor, Repricing
from execution.paper.fill_simulator import simulate_exit_fill, simulate_fill
from execution.paper.greeks import calculate_greeks, conservative_greeks

__all__ = [
    "ExecutionError",
    "ExecutionErrorKind",
    "ExitSimulation",
    "GreeksCalculationError",
    "PaperExecutor",
    "Repricing",
    "calculate_greeks",
    "conservative_greeks",
    "select_contract",
    "simulate_exit_fill",
    "simulate_fill",
]
