"""
End-to-end decision pipeline: stores -> engine -> executor -> ledger.

Every evaluation works on one MarketSnapshot, so the engine never sees a
store change half way through a decision. Each stage publishes its
outcome on the event bus; subscribers (metrics, dashboards, learning
tools) observe the pipeline but never feed back into it.

Ledger writes that still fail after the ledger's own retries are kept in
``pending_entries`` for a later ``flush_pending()`` and announced with a
SAFETY_ALERT before the error propagates.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from config.constants import TIMEFRAME_PRIORITY, ExitReason, TimeframeRole, Verdict
from config.logging_config import LogCategory
from config.settings import Settings
from core.domain.base import ensure_utc
from core.domain.decision import Decision
from core.domain.ledger import (
    DecisionInputs,
    ExitData,
    Hypothetical,
    LedgerEntry,
    LedgerEntryCreate,
    PhaseContext,
    RegimeSnapshot,
)
from core.domain.options import Execution
from core.domain.signal import Signal
from data.payloads import parse_phase_payload, parse_signal_payload, parse_trend_payload
from data.phase_store import PhaseStore, StoredPhase
from data.signal_store import SignalStore, StoreUpdate
from data.snapshot import MarketSnapshot, take_snapshot
from data.trend_store import StoredTrend, TrendStore
from execution.decision import DecisionEngine
from execution.exit_attributor import attribute_pnl, determine_exit_reason
from execution.ledger import LedgerError, LedgerErrorKind, SQLiteLedger
from execution.paper import ExecutionError, PaperExecutor
from observability.event_bus import EventBus, EventType
from utils.numerical_validation import require_finite

logger = logging.getLogger(__name__)

SOURCE = "pipeline"


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one evaluation. ``entry`` is None when nothing was recorded."""

    snapshot: MarketSnapshot
    decision: Decision
    execution: Optional[Execution] = None
    execution_error: Optional[ExecutionError] = None
    entry: Optional[LedgerEntry] = None

    @property
    def verdict(self) -> Verdict:
        """Verdict as recorded; an EXECUTE whose execution was rejected is recorded as SKIP."""
        if self.entry is not None:
            return self.entry.decision
        if self.execution_error is not None:
            return Verdict.SKIP
        return self.decision.decision


def _ledger_signal(snapshot: MarketSnapshot, decision: Decision) -> Optional[Signal]:
    """The entry signal, or the highest-timeframe signal when the engine picked none."""
    if decision.entry_signal is not None:
        return decision.entry_signal
    for timeframe in TIMEFRAME_PRIORITY:
        if timeframe in snapshot.signals:
            return snapshot.signals[timeframe]
    return None


def _phase_context(snapshot: MarketSnapshot) -> Optional[PhaseContext]:
    regime = snapshot.phases.get(TimeframeRole.REGIME)
    bias = snapshot.phases.get(TimeframeRole.BIAS)
    if regime is None and bias is None:
        return None
    return PhaseContext(regime_phase=regime, bias_phase=bias)


class DecisionPipeline:
    """
    Wires the stores, engine, executor, ledger and event bus together.

    Any collaborator not supplied is built from ``settings``. The pipeline
    owns the ledger it creates and closes it in close().

    Example:
        >>> pipeline = DecisionPipeline(load_settings())
        >>> pipeline.ingest_signal(raw_signal)
        >>> result = pipeline.evaluate("SPY")
        >>> if result.execution:
        ...     pipeline.close_position(result.entry.id, underlying_at_exit=455.0)
    """

    def __init__(
        self,
        settings: Settings | None = None,
        signal_store: SignalStore | None = None,
        phase_store: PhaseStore | None = None,
        trend_store: TrendStore | None = None,
        engine: DecisionEngine | None = None,
        executor: PaperExecutor | None = None,
        ledger: SQLiteLedger | None = None,
        bus: EventBus | None = None,
    ):
        self.settings = settings or Settings()
        stores = self.settings.stores
        self.signal_store = signal_store or SignalStore(stores.max_validity_minutes)
        self.phase_store = phase_store or PhaseStore(stores.default_phase_decay_minutes)
        self.trend_store = trend_store or TrendStore(stores.trend_ttl_minutes)
        self.engine = engine or DecisionEngine(self.settings.decision)
        self.executor = executor or PaperExecutor(self.settings.paper)
        self._owns_ledger = ledger is None
        self.ledger = ledger or SQLiteLedger(config=self.settings.ledger)
        self.bus = bus or EventBus(self.settings.events.history_size)

        self.pending_entries: deque[LedgerEntryCreate] = deque()
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_signal(self, raw: Any, now: datetime | None = None) -> StoreUpdate:
        """
        Validate and store a signal payload.

        Raises:
            PayloadValidationError: The payload is rejected; no store changes
        """
        signal = parse_signal_payload(raw)
        update = self.signal_store.update(signal, now)
        self.bus.publish(
            EventType.SIGNAL_RECEIVED,
            {
                "ticker": signal.ticker,
                "timeframe": signal.timeframe,
                "direction": signal.direction.value,
                "quality": signal.quality.value,
                "accepted": update.accepted,
                "reason": update.reason,
                "expires_at": update.stored.expires_at.isoformat() if update.stored else None,
            },
            source=SOURCE,
        )
        return update

    def ingest_phase(self, raw: Any, now: datetime | None = None) -> StoredPhase:
        phase = parse_phase_payload(raw)
        stored = self.phase_store.update(phase, now)
        self.bus.publish(
            EventType.PHASE_RECEIVED,
            {
                "symbol": phase.symbol,
                "role": phase.role.value,
                "event": phase.event.name,
                "implication": phase.event.directional_implication.value,
                "confidence": phase.confidence.confidence_score,
                "expires_at": stored.expires_at.isoformat(),
            },
            source=SOURCE,
        )
        return stored

    def ingest_trend(self, raw: Any, now: datetime | None = None) -> StoredTrend:
        # Trend snapshots have no event type of their own
        snapshot = parse_trend_payload(raw)
        return self.trend_store.update(snapshot, now)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        ticker: str,
        now: datetime | None = None,
        regime: RegimeSnapshot | None = None,
    ) -> PipelineResult:
        """
        Snapshot, decide, execute on EXECUTE, then append to the ledger.

        Raises:
            LedgerError: The ledger append failed. Retryable failures are
                queued in pending_entries first.
        """
        now = ensure_utc(now)
        snapshot = take_snapshot(self.signal_store, self.phase_store, self.trend_store, ticker, now)
        decision = self.engine.decide_snapshot(snapshot)
        self.bus.publish(
            EventType.DECISION_MADE,
            {
                "ticker": snapshot.ticker,
                "decision": decision.decision.value,
                "reason": decision.reason,
                "direction": decision.direction.value if decision.direction else None,
                "confluence_score": decision.confluence_score,
                "final_multiplier": decision.breakdown.final_multiplier,
                "recommended_contracts": decision.recommended_contracts,
                "engine_version": decision.engine_version,
            },
            source=SOURCE,
        )

        signal = _ledger_signal(snapshot, decision)
        if signal is None:
            logger.debug(f"{LogCategory.DECISION} Nothing to record for {snapshot.ticker}: no active signals")
            return PipelineResult(snapshot=snapshot, decision=decision)

        regime = regime or RegimeSnapshot.from_alignment(
            snapshot.trend_alignment, iv_rank=self.settings.paper.default_iv_rank
        )

        verdict = decision.decision
        reason = decision.reason
        execution: Optional[Execution] = None
        execution_error: Optional[ExecutionError] = None
        if decision.is_execute:
            result = self.executor.execute(signal, decision, as_of=now, iv_rank=regime.iv_rank)
            if isinstance(result, ExecutionError):
                execution_error = result
                verdict = Verdict.SKIP
                reason = f"Execution rejected ({result.kind.value}): {result.message}"
                self.bus.publish(
                    EventType.SAFETY_ALERT,
                    {"alert": "execution_rejected", "ticker": snapshot.ticker, **result.to_dict()},
                    source=SOURCE,
                )
            else:
                execution = result

        hypothetical = None
        if verdict != Verdict.EXECUTE:
            hypothetical = Hypothetical(would_have_executed=verdict == Verdict.SKIP)

        create = LedgerEntryCreate(
            engine_version=decision.engine_version,
            signal=signal,
            phase_context=_phase_context(snapshot),
            decision=verdict,
            decision_reason=reason,
            decision_breakdown=decision.breakdown,
            confluence_score=decision.confluence_score,
            execution=execution,
            regime=regime,
            hypothetical=hypothetical,
            decision_inputs=DecisionInputs(
                signals=dict(snapshot.signals),
                trend_alignment=snapshot.trend_alignment,
                engine_decision=decision.decision,
            ),
        )
        entry = self._append(create)

        if execution is not None:
            self.bus.publish(
                EventType.TRADE_OPENED,
                {
                    "entry_id": entry.id,
                    "ticker": signal.ticker,
                    "execution": execution,
                },
                source=SOURCE,
            )
        self.bus.publish(
            EventType.LEDGER_ENTRY_CREATED,
            {"entry_id": entry.id, "ticker": signal.ticker, "decision": entry.decision.value},
            source=SOURCE,
        )
        return PipelineResult(
            snapshot=snapshot,
            decision=decision,
            execution=execution,
            execution_error=execution_error,
            entry=entry,
        )

    def _append(self, create: LedgerEntryCreate) -> LedgerEntry:
        try:
            return self.ledger.append(create)
        except LedgerError as e:
            if e.retryable:
                with self._pending_lock:
                    self.pending_entries.append(create)
                    pending = len(self.pending_entries)
                logger.error(
                    f"{LogCategory.LEDGER} Append failed for {create.signal.ticker}, "
                    f"queued for retry ({pending} pending): {e}"
                )
                self.bus.publish(
                    EventType.SAFETY_ALERT,
                    {"alert": "ledger_write_failed", "pending": pending, **e.to_dict()},
                    source=SOURCE,
                )
            raise

    def flush_pending(self) -> int:
        """
        Retry queued ledger appends in arrival order.

        Stops at the first failure and leaves it at the head of the queue.

        Returns:
            Number of entries written
        """
        written = 0
        with self._pending_lock:
            while self.pending_entries:
                create = self.pending_entries[0]
                try:
                    entry = self.ledger.append(create)
                except LedgerError as e:
                    logger.warning(
                        f"{LogCategory.LEDGER} Flush stopped with {len(self.pending_entries)} pending: {e}"
                    )
                    break
                self.pending_entries.popleft()
                written += 1
                self.bus.publish(
                    EventType.LEDGER_ENTRY_CREATED,
                    {"entry_id": entry.id, "ticker": create.signal.ticker, "decision": entry.decision.value},
                    source=SOURCE,
                )
        if written:
            logger.info(f"{LogCategory.LEDGER} Flushed {written} pending ledger entries")
        return written

    # ------------------------------------------------------------------
    # Exits
    # ------------------------------------------------------------------

    def close_position(
        self,
        entry_id: str,
        underlying_at_exit: float,
        exit_time: datetime | None = None,
        exit_reason: ExitReason | None = None,
    ) -> ExitData:
        """
        Close an executed entry on paper and record its exit.

        The exit is repriced with the remaining DTE, filled at the bid less
        slippage, attributed, and written with update_exit.

        Raises:
            LedgerError: ENTRY_NOT_FOUND, INVALID_UPDATE for a non-executed
                entry, or EXIT_ALREADY_RECORDED
            ValueError: underlying_at_exit or a computed exit figure is not finite
        """
        underlying_at_exit = require_finite(underlying_at_exit, "underlying_at_exit")
        entry = self.ledger.get(entry_id)
        if entry is None:
            raise LedgerError(LedgerErrorKind.ENTRY_NOT_FOUND, "no ledger entry with this id", entry_id=entry_id)
        if entry.execution is None:
            raise LedgerError(
                LedgerErrorKind.INVALID_UPDATE,
                f"cannot close a {entry.decision.value} entry",
                entry_id=entry_id,
                field="decision",
            )
        if entry.exit is not None:
            raise LedgerError(
                LedgerErrorKind.EXIT_ALREADY_RECORDED, "exit data is already recorded", entry_id=entry_id
            )

        exit_time = ensure_utc(exit_time)
        execution = entry.execution
        simulation = self.executor.simulate_exit(
            execution, underlying_at_exit, as_of=exit_time, iv_rank=entry.regime.iv_rank
        )
        fill = simulation.fill
        greeks = simulation.repricing.greeks

        if exit_reason is None:
            levels = entry.signal.entry
            exit_reason = determine_exit_reason(
                entry.signal.direction,
                underlying_at_exit,
                levels.stop_loss,
                levels.target_1,
                levels.target_2,
                execution.entry_price,
                fill.price,
            )

        exit_data = attribute_pnl(
            execution,
            exit_price=fill.price,
            underlying_at_exit=underlying_at_exit,
            exit_time=exit_time,
            exit_iv=greeks.iv,
            exit_delta=greeks.delta,
            exit_reason=exit_reason,
            exit_commission=fill.commission,
        )
        self.ledger.update_exit(entry_id, exit_data)

        self.bus.publish(
            EventType.TRADE_CLOSED,
            {"entry_id": entry_id, "ticker": entry.signal.ticker, "exit": exit_data},
            source=SOURCE,
        )
        logger.info(
            f"{LogCategory.TRADE} Closed {entry.signal.ticker} {execution.option_type.value} "
            f"{execution.strike} ({exit_reason.value}): net {exit_data.pnl_net:.2f}, "
            f"R={exit_data.realized_r:.2f}"
        )
        return exit_data

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def cleanup_expired(self, now: datetime | None = None) -> dict[str, int]:
        """Drop expired store entries and publish the expiry counts."""
        now = ensure_utc(now)
        removed = {
            "signals": self.signal_store.cleanup_expired(now),
            "phases": self.phase_store.cleanup_expired(now),
            "trends": self.trend_store.cleanup_expired(now),
        }
        if removed["signals"]:
            self.bus.publish(EventType.SIGNAL_EXPIRED, {"count": removed["signals"]}, source=SOURCE)
        if removed["phases"]:
            self.bus.publish(EventType.PHASE_EXPIRED, {"count": removed["phases"]}, source=SOURCE)
        return removed

    def get_statistics(self) -> dict[str, Any]:
        with self._pending_lock:
            pending = len(self.pending_entries)
        return {
            "engine": self.engine.get_statistics(),
            "ledger": self.ledger.get_statistics(),
            "events": self.bus.get_stats(),
            "stores": {
                "signals": len(self.signal_store),
                "phases": len(self.phase_store),
                "trends": len(self.trend_store),
            },
            "pending_entries": pending,
        }

    def close(self) -> None:
        if self._owns_ledger:
            self.ledger.close()

    def __enter__(self) -> "DecisionPipeline":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
