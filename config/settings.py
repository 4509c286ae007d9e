"""
Configuration management using Pydantic v2.

This module provides type-safe configuration management for the decision
pipeline. Configuration is loaded from environment variables and validated
on initialization.

Environment variables use double underscore for nesting:
    LEDGER__DB_PATH=data_cache/ledger.db
    LEDGER__POOL_SIZE=8
    PAPER__RISK_FREE_RATE=0.045

Example:
    >>> from config.settings import load_settings
    >>> settings = load_settings()
    >>> print(settings.ledger.db_path)
"""

import logging
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from config.constants import (
    COMMISSION_PER_CONTRACT,
    DEFAULT_DB_TIMEOUT,
    DEFAULT_IV_RANK,
    DEFAULT_LEAP_DTE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PHASE_DECAY_MINUTES,
    DEFAULT_QUERY_TIMEOUT,
    DEFAULT_RISK_FREE_RATE,
    EVENT_HISTORY_SIZE,
    MAX_VALIDITY_MINUTES,
    TREND_TTL_MINUTES,
)

logger = logging.getLogger(__name__)


class StoreConfig(BaseModel):
    """State store configuration.

    Attributes:
        max_validity_minutes: Upper clamp for computed signal validity
        trend_ttl_minutes: Lifetime of a trend snapshot
        default_phase_decay_minutes: Decay when the timeframe table has no entry
    """

    max_validity_minutes: int = Field(
        default=MAX_VALIDITY_MINUTES, description="Signal validity clamp", ge=1, le=1440
    )
    trend_ttl_minutes: int = Field(
        default=TREND_TTL_MINUTES, description="Trend snapshot TTL", ge=1, le=1440
    )
    default_phase_decay_minutes: int = Field(
        default=DEFAULT_PHASE_DECAY_MINUTES, description="Fallback phase decay", ge=1
    )


class DecisionConfig(BaseModel):
    """Decision engine configuration.

    The multiplier tables themselves are frozen in code and versioned by
    ENGINE_VERSION; only sizing inputs are configurable here.

    Attributes:
        base_contract_size: Contracts used when a signal carries no sizing hint
    """

    base_contract_size: int = Field(
        default=1, description="Base contracts before the multiplier chain", ge=1, le=1000
    )


class PaperTradingConfig(BaseModel):
    """Paper execution configuration.

    Attributes:
        risk_free_rate: Annualized rate used by Black-Scholes
        default_iv_rank: IV rank used when the caller supplies none
        leap_dte: Days to expiry for timeframes above 4H
        commission_per_contract: Fee charged per contract per side
    """

    risk_free_rate: float = Field(
        default=DEFAULT_RISK_FREE_RATE, description="Risk-free rate", ge=0.0, le=0.25
    )
    default_iv_rank: float = Field(
        default=DEFAULT_IV_RANK, description="Default IV rank (0-100)", ge=0.0, le=100.0
    )
    leap_dte: int = Field(default=DEFAULT_LEAP_DTE, description="LEAP horizon in days", ge=46)
    commission_per_contract: float = Field(
        default=COMMISSION_PER_CONTRACT, description="Commission per contract", ge=0.0
    )


class LedgerConfig(BaseModel):
    """Ledger storage configuration.

    Attributes:
        db_path: Path to the SQLite ledger database
        pool_size: Maximum pooled connections
        connect_timeout: Seconds to wait for a pooled connection / busy database
        query_timeout: Seconds before a running statement is interrupted
        max_retry_attempts: Attempts for transient write failures
        retry_base_delay: Base delay in seconds for exponential backoff
    """

    db_path: str = Field(default="data_cache/ledger.db", description="Ledger database path")
    pool_size: int = Field(default=4, description="Connection pool size", ge=1, le=32)
    connect_timeout: float = Field(
        default=DEFAULT_DB_TIMEOUT, description="Connection timeout in seconds", gt=0, le=300
    )
    query_timeout: float = Field(
        default=DEFAULT_QUERY_TIMEOUT, description="Statement timeout in seconds", gt=0, le=300
    )
    max_retry_attempts: int = Field(
        default=DEFAULT_MAX_RETRIES, description="Write retry attempts", ge=1, le=10
    )
    retry_base_delay: float = Field(
        default=0.1, description="Base delay in seconds for exponential backoff", gt=0, le=30
    )

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: str) -> str:
        """Reject empty database paths."""
        if not v.strip():
            raise ValueError("db_path must not be empty")
        return v


class EventBusConfig(BaseModel):
    """Event bus configuration.

    Attributes:
        history_size: Events retained for inspection
    """

    history_size: int = Field(
        default=EVENT_HISTORY_SIZE, description="Retained event history", ge=0, le=100_000
    )


class Settings(BaseSettings):
    """
    Main application settings loaded from environment variables.

    Configuration is automatically loaded from .env file and environment
    variables. Use double underscore for nested configuration:
        LEDGER__POOL_SIZE=8
        STORES__TREND_TTL_MINUTES=30

    Attributes:
        stores: TTL and validity settings for the state stores
        decision: Decision engine sizing settings
        paper: Paper executor pricing settings
        ledger: Ledger storage settings
        events: Event bus settings
        environment: Deployment environment (development/production)
        log_level: Root log level
    """

    model_config = SettingsConfigDict(env_nested_delimiter="__", env_file=".env", extra="ignore")

    stores: StoreConfig = Field(default_factory=StoreConfig)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    paper: PaperTradingConfig = Field(default_factory=PaperTradingConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    events: EventBusConfig = Field(default_factory=EventBusConfig)

    environment: str = Field(default="development", description="Deployment environment")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Root log level"
    )

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"


def load_settings() -> Settings:
    """
    Load and validate settings from environment variables and .env file.

    Returns:
        Validated Settings instance

    Raises:
        ValidationError: If configuration is invalid
    """
    try:
        settings = Settings()
        logger.info(f"Settings loaded successfully. Environment: {settings.environment}")
        logger.debug(f"Ledger database: {settings.ledger.db_path}")
        return settings
    except Exception as e:
        logger.error(f"Failed to load settings: {e}")
        raise
