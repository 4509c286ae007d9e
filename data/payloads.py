"""
Inbound payload validation.

Signal, phase and trend payloads arrive from the webhook receiver either
as raw JSON, as a bare object, or wrapped in the alerting envelope
``{"text": "<json string>"}``. Every payload is validated against its
schema here, before any store sees it; a rejected payload never mutates
state.

Failures raise PayloadValidationError with a kind that distinguishes a
broken envelope from a schema violation from an out-of-range value, and
the dotted path of the first offending field.

Example:
    >>> signal = parse_signal_payload({"text": raw_alert_json})
    >>> try:
    ...     parse_phase_payload(b"not json")
    ... except PayloadValidationError as e:
    ...     assert e.kind == PayloadErrorKind.MALFORMED_ENVELOPE
"""

import json
import logging
from enum import Enum
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from config.logging_config import LogCategory
from core.domain.phase import Phase
from core.domain.signal import Signal
from core.domain.trend import TrendSnapshot

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# pydantic error types that mean "right type, wrong value"
_RANGE_ERROR_TYPES = frozenset([
    "greater_than",
    "greater_than_equal",
    "less_than",
    "less_than_equal",
    "finite_number",
    "too_short",
    "too_long",
    "string_too_short",
    "string_too_long",
])


class PayloadErrorKind(str, Enum):
    MALFORMED_ENVELOPE = "MALFORMED_ENVELOPE"
    SCHEMA_VIOLATION = "SCHEMA_VIOLATION"
    OUT_OF_RANGE = "OUT_OF_RANGE"


class PayloadValidationError(ValueError):
    """
    Raised when an inbound payload is rejected.

    Attributes:
        kind: Which class of failure rejected the payload
        field: Dotted path of the first offending field (None for envelope errors)
        payload_type: "signal", "phase" or "trend"
        details: Every failing field as (kind, field, message) tuples
    """

    def __init__(
        self,
        kind: PayloadErrorKind,
        message: str,
        field: str | None = None,
        payload_type: str = "",
        details: list[tuple[str, str, str]] | None = None,
    ):
        self.kind = kind
        self.field = field
        self.payload_type = payload_type
        self.details = details or []
        location = f" at '{field}'" if field else ""
        super().__init__(f"{kind.value}{location}: {message}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "field": self.field,
            "payload_type": self.payload_type,
            "message": str(self),
        }


def _unwrap_envelope(raw: Any, payload_type: str) -> dict[str, Any]:
    """Decode the transport layer down to a JSON object."""
    data = raw
    if isinstance(data, (bytes, bytearray)):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise PayloadValidationError(
                PayloadErrorKind.MALFORMED_ENVELOPE, f"body is not UTF-8: {e}",
                payload_type=payload_type,
            ) from e

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise PayloadValidationError(
                PayloadErrorKind.MALFORMED_ENVELOPE, f"body is not valid JSON: {e.msg}",
                payload_type=payload_type,
            ) from e

    if not isinstance(data, Mapping):
        raise PayloadValidationError(
            PayloadErrorKind.MALFORMED_ENVELOPE,
            f"expected a JSON object, got {type(data).__name__}",
            payload_type=payload_type,
        )

    # Alerting envelope: {"text": "<json>"}
    if "text" in data:
        text = data["text"]
        if not isinstance(text, str):
            raise PayloadValidationError(
                PayloadErrorKind.MALFORMED_ENVELOPE, "envelope 'text' must be a string",
                field="text", payload_type=payload_type,
            )
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise PayloadValidationError(
                PayloadErrorKind.MALFORMED_ENVELOPE, f"envelope 'text' is not valid JSON: {e.msg}",
                field="text", payload_type=payload_type,
            ) from e
        if not isinstance(data, Mapping):
            raise PayloadValidationError(
                PayloadErrorKind.MALFORMED_ENVELOPE, "envelope 'text' must encode a JSON object",
                field="text", payload_type=payload_type,
            )

    return dict(data)


def _classify(error_type: str) -> PayloadErrorKind:
    if error_type in _RANGE_ERROR_TYPES:
        return PayloadErrorKind.OUT_OF_RANGE
    return PayloadErrorKind.SCHEMA_VIOLATION


def _from_validation_error(e: ValidationError, payload_type: str) -> PayloadValidationError:
    details = []
    for err in e.errors():
        path = ".".join(str(part) for part in err["loc"])
        details.append((_classify(err["type"]).value, path, err["msg"]))

    # Schema violations outrank range errors when both are present
    details.sort(key=lambda d: d[0] != PayloadErrorKind.SCHEMA_VIOLATION.value)
    kind, field, message = details[0]
    return PayloadValidationError(
        PayloadErrorKind(kind), message, field=field,
        payload_type=payload_type, details=details,
    )


def _parse(raw: Any, model: type[ModelT], payload_type: str) -> ModelT:
    data = _unwrap_envelope(raw, payload_type)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        error = _from_validation_error(e, payload_type)
        logger.warning(f"{LogCategory.INGEST} {payload_type} payload rejected: {error}")
        raise error from None


def parse_signal_payload(raw: Any) -> Signal:
    """Validate an enriched signal payload."""
    return _parse(raw, Signal, "signal")


def parse_phase_payload(raw: Any) -> Phase:
    """Validate a phase event payload."""
    return _parse(raw, Phase, "phase")


def parse_trend_payload(raw: Any) -> TrendSnapshot:
    """Validate a multi-timeframe trend payload."""
    return _parse(raw, TrendSnapshot, "trend")
