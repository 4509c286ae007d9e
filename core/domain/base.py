"""
Base classes for domain entities.
"""
from typing import Any
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict

class DomainEntity(BaseModel):
    """Base class for all domain entities.

    Entities are immutable and reject NaN/Inf in every float field.
    """
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        allow_inf_nan=False,
        populate_by_name=True,
    )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode='json', by_alias=True)

def now_utc() -> datetime:
    """Returns current UTC time."""
    return datetime.now(timezone.utc)

def ensure_utc(value: datetime | None) -> datetime:
    """Returns value as an aware UTC datetime, defaulting to now."""
    if value is None:
        return now_utc()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
