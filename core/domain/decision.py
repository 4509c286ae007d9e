"""
Decision engine value objects.
"""
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic import Field, field_serializer, field_validator

from config.constants import ENGINE_VERSION, Direction, HTFAlignment, Verdict
from core.domain.base import DomainEntity
from core.domain.signal import Signal


class DecisionBreakdown(DomainEntity):
    """
    Fixed-shape multiplier breakdown.

    One field per factor of the multiplier chain. A WAIT decision carries
    the neutral breakdown (multipliers 1.0, boosts 0.0).
    """

    confluence_multiplier: float = 1.0
    quality_multiplier: float = 1.0
    htf_alignment_multiplier: float = 1.0
    rr_multiplier: float = 1.0
    volume_multiplier: float = 1.0
    trend_multiplier: float = 1.0
    session_multiplier: float = 1.0
    day_multiplier: float = 1.0
    phase_confidence_boost: float = 0.0
    phase_position_boost: float = 0.0
    trend_alignment_boost: float = 0.0
    final_multiplier: float = 1.0

    @classmethod
    def neutral(cls) -> "DecisionBreakdown":
        return cls()

    def raw_multiplier(self) -> float:
        """Product of every factor before clamping, in chain order."""
        raw = 1.0
        raw *= self.confluence_multiplier
        raw *= self.quality_multiplier
        raw *= self.htf_alignment_multiplier
        raw *= self.rr_multiplier
        raw *= self.volume_multiplier
        raw *= self.trend_multiplier
        raw *= self.session_multiplier
        raw *= self.day_multiplier
        raw *= 1 + self.phase_confidence_boost
        raw *= 1 + self.phase_position_boost
        raw *= 1 + self.trend_alignment_boost
        return raw


class TimeframeContribution(DomainEntity):
    aligned: bool
    weight: float
    contribution: float


class Decision(DomainEntity):
    """The engine's verdict. Never mutated after creation."""

    decision: Verdict
    reason: str
    breakdown: DecisionBreakdown = Field(default_factory=DecisionBreakdown)
    engine_version: str = ENGINE_VERSION
    confluence_score: float = Field(default=0.0, ge=0, le=100)
    direction: Optional[Direction] = None
    htf_alignment: Optional[HTFAlignment] = None
    raw_multiplier: Optional[float] = None
    recommended_contracts: int = Field(default=0, ge=0)
    entry_signal: Optional[Signal] = None
    stop_loss: Optional[float] = None
    target_1: Optional[float] = None
    target_2: Optional[float] = None
    confluence: Mapping[str, TimeframeContribution] = Field(default_factory=lambda: MappingProxyType({}))

    @field_validator("confluence", mode="after")
    @classmethod
    def freeze_confluence(cls, value: Mapping[str, TimeframeContribution]) -> Mapping[str, TimeframeContribution]:
        return MappingProxyType(dict(value))

    @field_serializer("confluence")
    def serialize_confluence(self, value: Mapping[str, TimeframeContribution]) -> dict[str, TimeframeContribution]:
        return dict(value)

    @property
    def is_execute(self) -> bool:
        return self.decision == Verdict.EXECUTE
