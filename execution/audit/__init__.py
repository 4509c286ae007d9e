"""
Ledger audit: replay stored decisions through the current engine.
"""

from execution.audit.replayer import (
    BatchReplayResult,
    FieldMismatch,
    ReplayResult,
    ReplayStatus,
    compare_decision,
    generate_audit_report,
    replay_batch,
    replay_decision,
    verify_determinism,
)

__all__ = [
    "BatchReplayResult",
    "FieldMismatch",
    "ReplayResult",
    "ReplayStatus",
    "compare_decision",
    "generate_audit_report",
    "replay_batch",
    "replay_decision",
    "verify_determinism",
]
