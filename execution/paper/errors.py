"""
Paper execution errors.
"""

from enum import Enum
from typing import Any


class ExecutionErrorKind(str, Enum):
    INVALID_CONTRACT = "INVALID_CONTRACT"
    INVALID_DECISION = "INVALID_DECISION"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_UNDERLYING = "INVALID_UNDERLYING"


class ExecutionError(Exception):
    """
    A rejected paper execution.

    PaperExecutor.execute returns this instead of raising it so that the
    pipeline can log the rejection next to the decision that caused it.
    """

    def __init__(self, kind: ExecutionErrorKind, message: str, field: str | None = None):
        self.kind = kind
        self.field = field
        self.message = message
        location = f" at '{field}'" if field else ""
        super().__init__(f"{kind.value}{location}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "field": self.field, "message": self.message}


class GreeksCalculationError(ValueError):
    """Raised by the Black-Scholes path on degenerate inputs."""
    pass
