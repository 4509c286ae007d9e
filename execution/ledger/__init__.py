"""
Append-only decision ledger backed by SQLite.
"""

from execution.ledger.errors import RETRYABLE_KINDS, LedgerError, LedgerErrorKind
from execution.ledger.pool import SQLiteConnectionPool
from execution.ledger.queries import calculate_aggregates, classify_trade_type
from execution.ledger.sqlite_ledger import SQLiteLedger

__all__ = [
    "RETRYABLE_KINDS",
    "LedgerError",
    "LedgerErrorKind",
    "SQLiteConnectionPool",
    "SQLiteLedger",
    "calculate_aggregates",
    "classify_trade_type",
]
