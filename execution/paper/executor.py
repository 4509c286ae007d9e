"""
Paper options executor.

Turns an EXECUTE decision into a simulated options trade:
contract selection -> Greeks -> fill. The executor never raises past its
boundary for pricing problems; Greeks failures fall back to
conservative_greeks() and invalid inputs come back as ExecutionError
values for the caller to log next to the decision.
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Union

from pydantic import ValidationError

from config.constants import CONTRACT_MULTIPLIER, Verdict
from config.logging_config import LogCategory
from config.settings import PaperTradingConfig
from core.domain.base import ensure_utc
from core.domain.decision import Decision
from core.domain.options import Execution, ExecutionPreview, ExitFill, Greeks, OptionContract
from core.domain.signal import Signal
from execution.paper.contract_selector import select_contract
from execution.paper.errors import ExecutionError, ExecutionErrorKind, GreeksCalculationError
from execution.paper.fill_simulator import simulate_exit_fill, simulate_fill, theoretical_price
from execution.paper.greeks import calculate_greeks, conservative_greeks
from utils.numerical_validation import ensure_finite, round_cents

logger = logging.getLogger(__name__)

ExecutionResult = Union[Execution, ExecutionError]


@dataclass(frozen=True)
class Repricing:
    """Mark of an open execution at a later time."""

    contract: OptionContract
    greeks: Greeks
    theoretical_price: float
    greeks_fallback: bool


@dataclass(frozen=True)
class ExitSimulation:
    repricing: Repricing
    fill: ExitFill


class PaperExecutor:
    """
    Simulated options execution.

    Example:
        >>> executor = PaperExecutor(settings.paper)
        >>> result = executor.execute(signal, decision)
        >>> if isinstance(result, ExecutionError):
        ...     logger.warning(result)
    """

    def __init__(self, config: PaperTradingConfig | None = None):
        self.config = config or PaperTradingConfig()

    def can_execute(self, decision: Decision) -> bool:
        return (
            decision.decision == Verdict.EXECUTE
            and decision.recommended_contracts > 0
            and decision.entry_signal is not None
        )

    def _validate(self, signal: Signal, decision: Decision) -> Optional[ExecutionError]:
        if decision.decision != Verdict.EXECUTE:
            return ExecutionError(
                ExecutionErrorKind.INVALID_DECISION,
                f"cannot execute a {decision.decision.value} decision",
                field="decision",
            )
        if decision.recommended_contracts < 1:
            return ExecutionError(
                ExecutionErrorKind.INVALID_QUANTITY,
                f"recommended_contracts must be >= 1, got {decision.recommended_contracts}",
                field="recommended_contracts",
            )
        price = signal.entry.price
        if not math.isfinite(price) or price <= 0:
            return ExecutionError(
                ExecutionErrorKind.INVALID_UNDERLYING,
                f"underlying price must be finite and positive, got {price}",
                field="entry.price",
            )
        return None

    def _select(
        self, signal: Signal, decision: Optional[Decision], as_of: datetime | date | None
    ) -> Union[OptionContract, ExecutionError]:
        try:
            contract = select_contract(signal, decision, as_of=as_of, leap_dte=self.config.leap_dte)
        except ValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ())) or None
            return ExecutionError(
                ExecutionErrorKind.INVALID_CONTRACT,
                f"no valid contract for underlying {signal.entry.price}: {first.get('msg', e)}",
                field=field,
            )
        if contract.strike <= 0 or contract.dte < 0:
            return ExecutionError(
                ExecutionErrorKind.INVALID_CONTRACT,
                f"invalid contract strike={contract.strike} dte={contract.dte}",
                field="strike" if contract.strike <= 0 else "dte",
            )
        return contract

    def _greeks(
        self, contract: OptionContract, underlying_price: float, iv_rank: float
    ) -> tuple[Greeks, bool]:
        """Black-Scholes Greeks, or the conservative fallback on failure."""
        try:
            return (
                calculate_greeks(
                    contract,
                    underlying_price,
                    iv_rank=iv_rank,
                    risk_free_rate=self.config.risk_free_rate,
                ),
                False,
            )
        except (GreeksCalculationError, ValidationError, ArithmeticError) as e:
            logger.warning(
                f"{LogCategory.TRADE} Greeks calculation failed for {contract.ticker} "
                f"{contract.option_type.value} {contract.strike} dte={contract.dte}: {e}. "
                f"Using conservative defaults."
            )
            return conservative_greeks(contract.option_type, contract.dte, iv_rank), True

    def execute(
        self,
        signal: Signal,
        decision: Decision,
        as_of: datetime | None = None,
        iv_rank: float | None = None,
    ) -> ExecutionResult:
        """
        Execute a decision on paper.

        Args:
            signal: The entry signal (normally decision.entry_signal)
            decision: An EXECUTE decision
            as_of: Trade time; defaults to now (UTC)
            iv_rank: IV rank 0-100; defaults to the configured rank

        Returns:
            Execution on success, ExecutionError when the inputs cannot be traded
        """
        error = self._validate(signal, decision)
        if error is not None:
            logger.warning(f"{LogCategory.TRADE} Execution rejected for {signal.ticker}: {error}")
            return error

        entry_time = ensure_utc(as_of)
        contract = self._select(signal, decision, entry_time)
        if isinstance(contract, ExecutionError):
            logger.warning(f"{LogCategory.TRADE} Execution rejected for {signal.ticker}: {contract}")
            return contract

        underlying = signal.entry.price
        rank = self.config.default_iv_rank if iv_rank is None else iv_rank
        greeks, fallback = self._greeks(contract, underlying, rank)
        fill = simulate_fill(
            contract,
            decision.recommended_contracts,
            underlying,
            greeks,
            commission_per_contract=self.config.commission_per_contract,
        )

        risk_amount = ensure_finite(
            round_cents(fill.price * fill.filled_contracts * CONTRACT_MULTIPLIER), "risk_amount"
        )
        execution = Execution(
            option_type=contract.option_type,
            strike=contract.strike,
            expiry=contract.expiry,
            dte=contract.dte,
            contracts=decision.recommended_contracts,
            entry_price=fill.price,
            entry_iv=greeks.iv,
            entry_delta=greeks.delta,
            entry_theta=greeks.theta,
            entry_gamma=greeks.gamma,
            entry_vega=greeks.vega,
            spread_cost=ensure_finite(fill.spread_cost, "spread_cost"),
            slippage=ensure_finite(fill.slippage, "slippage"),
            fill_quality=fill.fill_quality,
            filled_contracts=fill.filled_contracts,
            commission=ensure_finite(fill.commission, "commission"),
            underlying_at_entry=underlying,
            risk_amount=risk_amount,
            entry_time=entry_time,
            greeks_fallback=fallback,
        )
        logger.info(
            f"{LogCategory.TRADE} Opened {signal.ticker} {contract.option_type.value} "
            f"{contract.strike} exp {contract.expiry.isoformat()} ({contract.dte}DTE): "
            f"{fill.filled_contracts}/{decision.recommended_contracts} @ {fill.price:.2f} "
            f"[{fill.fill_quality.value}]"
        )
        return execution

    def execute_or_raise(
        self,
        signal: Signal,
        decision: Decision,
        as_of: datetime | None = None,
        iv_rank: float | None = None,
    ) -> Execution:
        result = self.execute(signal, decision, as_of=as_of, iv_rank=iv_rank)
        if isinstance(result, ExecutionError):
            raise result
        return result

    def preview_execution(
        self,
        signal: Signal,
        decision: Decision,
        as_of: datetime | None = None,
        iv_rank: float | None = None,
    ) -> ExecutionPreview:
        """Contract, Greeks and estimated cost without simulating a fill."""
        contract = self._select(signal, decision, ensure_utc(as_of))
        if isinstance(contract, ExecutionError):
            raise contract

        rank = self.config.default_iv_rank if iv_rank is None else iv_rank
        greeks, fallback = self._greeks(contract, signal.entry.price, rank)
        contracts = max(1, decision.recommended_contracts)
        price = theoretical_price(contract, signal.entry.price, greeks)
        return ExecutionPreview(
            contract=contract,
            greeks=greeks,
            estimated_price=round_cents(price),
            estimated_cost=round_cents(price * contracts * CONTRACT_MULTIPLIER),
            contracts=contracts,
            greeks_fallback=fallback,
            warning="conservative Greeks in use" if fallback else None,
        )

    def reprice(
        self,
        execution: Execution,
        underlying_price: float,
        as_of: datetime | None = None,
        iv_rank: float | None = None,
    ) -> Repricing:
        """Greeks and theoretical price of an open execution with its remaining DTE."""
        as_of = ensure_utc(as_of)
        remaining = max(0, (execution.expiry - as_of.date()).days)
        contract = OptionContract(
            option_type=execution.option_type,
            strike=execution.strike,
            expiry=execution.expiry,
            dte=remaining,
        )
        rank = self.config.default_iv_rank if iv_rank is None else iv_rank
        greeks, fallback = self._greeks(contract, underlying_price, rank)
        return Repricing(
            contract=contract,
            greeks=greeks,
            theoretical_price=theoretical_price(contract, underlying_price, greeks),
            greeks_fallback=fallback,
        )

    def simulate_exit(
        self,
        execution: Execution,
        underlying_price: float,
        as_of: datetime | None = None,
        iv_rank: float | None = None,
    ) -> ExitSimulation:
        """Sell-to-close fill for the filled quantity of an execution."""
        repricing = self.reprice(execution, underlying_price, as_of, iv_rank)
        fill = simulate_exit_fill(
            repricing.contract,
            execution.filled_contracts,
            underlying_price,
            repricing.greeks,
            commission_per_contract=self.config.commission_per_contract,
        )
        return ExitSimulation(repricing=repricing, fill=fill)
