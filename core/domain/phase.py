"""
Regime/phase events produced by the phase oscillator.
"""
from typing import Literal, Optional

from pydantic import Field, field_validator

from config.constants import Direction, DirectionalImplication, TimeframeRole
from core.domain.base import DomainEntity

ConfidenceTier = Literal["LOW", "MEDIUM", "HIGH", "EXTREME"]
Bias = Literal["BULLISH", "BEARISH", "NEUTRAL"]


class PhaseMeta(DomainEntity):
    engine: str = "SATY_PO"
    engine_version: str = ""
    event_id: str = ""
    event_type: Literal["REGIME_PHASE_EXIT", "REGIME_PHASE_ENTRY", "REGIME_REVERSAL"]
    generated_at: str = ""


class PhaseInstrument(DomainEntity):
    symbol: str = Field(..., min_length=1)
    exchange: str = ""
    asset_class: str = ""
    session: str = ""

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()


class PhaseTimeframe(DomainEntity):
    chart_tf: str
    event_tf: str
    tf_role: TimeframeRole
    bar_close_time: str = ""

    @field_validator("tf_role", mode="before")
    @classmethod
    def normalize_role(cls, v):
        # Older alert templates send the short form
        if v == "SETUP":
            return TimeframeRole.SETUP_FORMATION.value
        return v


class PhaseEvent(DomainEntity):
    name: Literal[
        "EXIT_ACCUMULATION",
        "ENTER_ACCUMULATION",
        "EXIT_DISTRIBUTION",
        "ENTER_DISTRIBUTION",
        "ZERO_CROSS_UP",
        "ZERO_CROSS_DOWN",
    ]
    description: str = ""
    directional_implication: DirectionalImplication
    event_priority: int = Field(..., ge=1, le=10)


class OscillatorState(DomainEntity):
    value: float
    previous_value: float
    zone_from: str
    zone_to: str
    distance_from_zero: float
    distance_from_extreme: float
    velocity: Literal["INCREASING", "DECREASING"]


class HtfBias(DomainEntity):
    tf: str
    bias: Bias
    osc_value: float


class MacroBias(DomainEntity):
    tf: str
    bias: Bias


class RegimeContext(DomainEntity):
    local_bias: Bias
    htf_bias: HtfBias
    macro_bias: MacroBias


class PhaseConfidence(DomainEntity):
    raw_strength: float
    htf_alignment: bool
    confidence_score: float = Field(..., ge=0, le=100)
    confidence_tier: ConfidenceTier


class ExecutionGuidance(DomainEntity):
    trade_allowed: bool
    allowed_directions: tuple[Direction, ...] = ()
    recommended_execution_tf: tuple[str, ...] = ()
    requires_confirmation: tuple[str, ...] = ()


class RiskHints(DomainEntity):
    avoid_if: tuple[str, ...] = ()
    time_decay_minutes: int = Field(default=0, ge=0)
    cooldown_tf: str = ""


class Phase(DomainEntity):
    """
    A regime event for one symbol and timeframe role.

    One phase is active per (symbol, tf_role); a new phase for the same
    slot replaces the previous one unconditionally.
    """

    meta: PhaseMeta
    instrument: PhaseInstrument
    timeframe: PhaseTimeframe
    event: PhaseEvent
    oscillator_state: Optional[OscillatorState] = None
    regime_context: Optional[RegimeContext] = None
    confidence: PhaseConfidence
    execution_guidance: ExecutionGuidance
    risk_hints: RiskHints = Field(default_factory=RiskHints)

    @property
    def symbol(self) -> str:
        return self.instrument.symbol

    @property
    def role(self) -> TimeframeRole:
        return self.timeframe.tf_role

    def agrees_with(self, direction: Direction) -> bool:
        """True when the phase's implication supports the trade direction.

        NEUTRAL phases agree with nothing.
        """
        implication = self.event.directional_implication
        if direction == Direction.LONG:
            return implication == DirectionalImplication.UPSIDE_POTENTIAL
        return implication == DirectionalImplication.DOWNSIDE_POTENTIAL
