"""
Ledger errors.
"""

from enum import Enum
from typing import Any


class LedgerErrorKind(str, Enum):
    DELETE_NOT_ALLOWED = "DELETE_NOT_ALLOWED"
    OVERWRITE_NOT_ALLOWED = "OVERWRITE_NOT_ALLOWED"
    ENTRY_NOT_FOUND = "ENTRY_NOT_FOUND"
    EXIT_ALREADY_RECORDED = "EXIT_ALREADY_RECORDED"
    INVALID_UPDATE = "INVALID_UPDATE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    POOL_TIMEOUT = "POOL_TIMEOUT"


# Kinds that may succeed if the same write is attempted again later
RETRYABLE_KINDS = frozenset([LedgerErrorKind.DATABASE_ERROR, LedgerErrorKind.POOL_TIMEOUT])


class LedgerError(Exception):
    """
    Raised by every ledger operation that cannot complete.

    Attributes:
        kind: Failure class
        entry_id: Ledger entry involved, if any
        field: Offending field, if any
        retryable: True for transient failures (busy database, pool timeout)
    """

    def __init__(
        self,
        kind: LedgerErrorKind,
        message: str,
        entry_id: str | None = None,
        field: str | None = None,
        retryable: bool | None = None,
    ):
        self.kind = kind
        self.entry_id = entry_id
        self.field = field
        self.message = message
        self.retryable = kind in RETRYABLE_KINDS if retryable is None else retryable
        location = f" [{entry_id}]" if entry_id else ""
        super().__init__(f"{kind.value}{location}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "entry_id": self.entry_id,
            "field": self.field,
            "retryable": self.retryable,
            "message": self.message,
        }
