"""
Decision replay for audit.

Re-runs the decision engine on the inputs a ledger entry recorded and
compares the result with what was stored. A deterministic engine at the
same version reproduces every entry exactly.

Statuses:
- MATCH: verdict, confluence score and every breakdown field agree
- MISMATCH: at least one field differs (see ``mismatches``)
- VERSION_MISMATCH: the entry was written by another engine version and
  is not replayed
- ERROR: the recorded inputs could not be replayed

Entries written before decision inputs were stored are replayed from the
entry signal and phase context alone, so multi-timeframe decisions from
that period are expected to MISMATCH.

Usage:
    >>> entries = ledger.query(LedgerQuery(limit=500))
    >>> batch = replay_batch(entries)
    >>> print(generate_audit_report(batch))
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from config.constants import ENGINE_VERSION, Verdict
from config.logging_config import LogCategory
from core.domain.decision import Decision, DecisionBreakdown
from core.domain.ledger import LedgerEntry
from core.domain.phase import Phase
from execution.decision import decide

logger = logging.getLogger(__name__)

FLOAT_TOLERANCE = 0.001


class ReplayStatus(str, Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"
    VERSION_MISMATCH = "VERSION_MISMATCH"
    ERROR = "ERROR"


@dataclass(frozen=True)
class FieldMismatch:
    field: str
    original: Any
    replayed: Any


@dataclass(frozen=True)
class ReplayResult:
    status: ReplayStatus
    entry_id: str
    original_version: str
    replay_version: str
    original_decision: Verdict
    original_confluence: float
    original_breakdown: DecisionBreakdown
    replayed_decision: Optional[Verdict] = None
    replayed_confluence: Optional[float] = None
    replayed_breakdown: Optional[DecisionBreakdown] = None
    mismatches: tuple[FieldMismatch, ...] = ()
    error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def is_match(self) -> bool:
        return self.status == ReplayStatus.MATCH

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "entry_id": self.entry_id,
            "original_version": self.original_version,
            "replay_version": self.replay_version,
            "original_decision": self.original_decision.value,
            "original_confluence": self.original_confluence,
            "replayed_decision": self.replayed_decision.value if self.replayed_decision else None,
            "replayed_confluence": self.replayed_confluence,
            "mismatches": [
                {"field": m.field, "original": m.original, "replayed": m.replayed}
                for m in self.mismatches
            ],
            "error": self.error,
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass(frozen=True)
class BatchReplayResult:
    results: tuple[ReplayResult, ...] = field(default_factory=tuple)

    def _count(self, status: ReplayStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def matches(self) -> int:
        return self._count(ReplayStatus.MATCH)

    @property
    def mismatches(self) -> int:
        return self._count(ReplayStatus.MISMATCH)

    @property
    def version_mismatches(self) -> int:
        return self._count(ReplayStatus.VERSION_MISMATCH)

    @property
    def errors(self) -> int:
        return self._count(ReplayStatus.ERROR)

    @property
    def match_rate(self) -> float:
        return self.matches / self.total if self.total else 0.0

    @property
    def avg_duration_ms(self) -> float:
        return sum(r.duration_ms for r in self.results) / self.total if self.total else 0.0

    def summary(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "matches": self.matches,
            "mismatches": self.mismatches,
            "version_mismatches": self.version_mismatches,
            "errors": self.errors,
            "match_rate": round(self.match_rate, 4),
            "avg_duration_ms": round(self.avg_duration_ms, 3),
        }


def _recorded_phases(entry: LedgerEntry) -> list[Phase]:
    context = entry.phase_context
    if context is None:
        return []
    return [phase for phase in (context.regime_phase, context.bias_phase) if phase is not None]


def _rebuild(entry: LedgerEntry) -> Decision:
    inputs = entry.decision_inputs
    if inputs is None or not inputs.signals:
        return decide({entry.signal.timeframe: entry.signal}, _recorded_phases(entry))
    return decide(inputs.signals, _recorded_phases(entry), inputs.trend_alignment)


def _expected_verdict(entry: LedgerEntry) -> Verdict:
    inputs = entry.decision_inputs
    if inputs is not None and inputs.engine_decision is not None:
        return inputs.engine_decision
    return entry.decision


def _differs(original: Any, replayed: Any) -> bool:
    if isinstance(original, float) and isinstance(replayed, float):
        return abs(original - replayed) > FLOAT_TOLERANCE
    return original != replayed


def compare_decision(entry: LedgerEntry, replayed: Decision) -> list[FieldMismatch]:
    """Field-level differences between a stored entry and a fresh decision."""
    mismatches: list[FieldMismatch] = []

    expected = _expected_verdict(entry)
    if replayed.decision != expected:
        mismatches.append(FieldMismatch("decision", expected.value, replayed.decision.value))

    if _differs(entry.confluence_score, replayed.confluence_score):
        mismatches.append(
            FieldMismatch("confluence_score", entry.confluence_score, replayed.confluence_score)
        )

    for name in DecisionBreakdown.model_fields:
        original = getattr(entry.decision_breakdown, name)
        fresh = getattr(replayed.breakdown, name)
        if _differs(original, fresh):
            mismatches.append(FieldMismatch(f"breakdown.{name}", original, fresh))

    return mismatches


def replay_decision(entry: LedgerEntry, engine_version: str = ENGINE_VERSION) -> ReplayResult:
    """
    Replay one ledger entry through the current engine.

    Args:
        entry: Stored ledger entry
        engine_version: Version of the engine doing the replay

    Returns:
        ReplayResult. Failures are reported as ERROR, never raised.
    """
    started = time.perf_counter()
    base = dict(
        entry_id=entry.id,
        original_version=entry.engine_version,
        replay_version=engine_version,
        original_decision=entry.decision,
        original_confluence=entry.confluence_score,
        original_breakdown=entry.decision_breakdown,
    )

    def _elapsed() -> float:
        return (time.perf_counter() - started) * 1000.0

    if entry.engine_version != engine_version:
        return ReplayResult(status=ReplayStatus.VERSION_MISMATCH, duration_ms=_elapsed(), **base)

    try:
        replayed = _rebuild(entry)
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"{LogCategory.DECISION} Replay of {entry.id} failed: {e}")
        return ReplayResult(status=ReplayStatus.ERROR, error=str(e), duration_ms=_elapsed(), **base)

    mismatches = compare_decision(entry, replayed)
    if mismatches:
        logger.warning(
            f"{LogCategory.DECISION} Replay mismatch for {entry.id}: "
            f"{', '.join(m.field for m in mismatches)}"
        )

    return ReplayResult(
        status=ReplayStatus.MISMATCH if mismatches else ReplayStatus.MATCH,
        replayed_decision=replayed.decision,
        replayed_confluence=replayed.confluence_score,
        replayed_breakdown=replayed.breakdown,
        mismatches=tuple(mismatches),
        duration_ms=_elapsed(),
        **base,
    )


def replay_batch(entries: Iterable[LedgerEntry], engine_version: str = ENGINE_VERSION) -> BatchReplayResult:
    batch = BatchReplayResult(tuple(replay_decision(entry, engine_version) for entry in entries))
    logger.info(
        f"{LogCategory.DECISION} Replayed {batch.total} entries: "
        f"{batch.matches} match, {batch.mismatches} mismatch, "
        f"{batch.version_mismatches} other version, {batch.errors} error"
    )
    return batch


def verify_determinism(entry: LedgerEntry, iterations: int = 10) -> bool:
    """True when repeated replays of ``entry`` all agree with each other."""
    if iterations < 1:
        raise ValueError(f"iterations must be at least 1, got {iterations}")

    outcomes = {
        (r.status, r.replayed_decision, r.replayed_confluence, r.replayed_breakdown)
        for r in (replay_decision(entry) for _ in range(iterations))
    }
    return len(outcomes) == 1


def generate_audit_report(batch: BatchReplayResult) -> str:
    """Plain-text report of a batch replay, listing every mismatch and error."""
    lines = [
        "=== Decision Replay Audit Report ===",
        "",
        f"Total Entries: {batch.total}",
        f"Matches: {batch.matches} ({batch.match_rate * 100:.1f}%)",
        f"Mismatches: {batch.mismatches}",
        f"Version Mismatches: {batch.version_mismatches}",
        f"Errors: {batch.errors}",
        f"Avg Replay Duration: {batch.avg_duration_ms:.2f}ms",
        "",
    ]

    mismatched = [r for r in batch.results if r.status == ReplayStatus.MISMATCH]
    if mismatched:
        lines += ["=== Mismatches ===", ""]
        for result in mismatched:
            lines.append(f"Entry: {result.entry_id}")
            lines.append(
                f"  Original: {result.original_decision.value} (confluence: {result.original_confluence})"
            )
            lines.append(
                f"  Replayed: {result.replayed_decision.value} (confluence: {result.replayed_confluence})"
            )
            lines.extend(f"  - {m.field}: {m.original} -> {m.replayed}" for m in result.mismatches)
            lines.append("")

    failed = [r for r in batch.results if r.status == ReplayStatus.ERROR]
    if failed:
        lines += ["=== Errors ===", ""]
        for result in failed:
            lines += [f"Entry: {result.entry_id}", f"  Error: {result.error}", ""]

    return "\n".join(lines)
