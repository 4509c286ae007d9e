"""
Inbound data for the options decision pipeline.

This module provides:
- parse_signal_payload / parse_phase_payload / parse_trend_payload:
  validate webhook payloads into frozen domain models
- SignalStore, PhaseStore, TrendStore: TTL-bound state per ticker
- take_snapshot: consistent point-in-time view for the decision engine

>>> from data import SignalStore, parse_signal_payload
>>> store = SignalStore()
>>> store.update(parse_signal_payload(raw_body))
"""

from data.payloads import (
    PayloadErrorKind,
    PayloadValidationError,
    parse_phase_payload,
    parse_signal_payload,
    parse_trend_payload,
)
from data.phase_store import PhaseStore, StoredPhase
from data.signal_store import SignalStore, StoredSignal, StoreUpdate
from data.snapshot import MarketSnapshot, take_snapshot
from data.trend_store import StoredTrend, TrendStore
from data.validity import calculate_validity_minutes, validity_breakdown

__all__ = [
    # Validation
    "PayloadErrorKind",
    "PayloadValidationError",
    "parse_signal_payload",
    "parse_phase_payload",
    "parse_trend_payload",
    # Stores
    "SignalStore",
    "StoredSignal",
    "StoreUpdate",
    "PhaseStore",
    "StoredPhase",
    "TrendStore",
    "StoredTrend",
    # Snapshots
    "MarketSnapshot",
    "take_snapshot",
    # Validity
    "calculate_validity_minutes",
    "validity_breakdown",
]
