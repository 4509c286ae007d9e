"""
Configuration module for the options decision pipeline.

This module provides configuration management through Pydantic models
and application constants.

Public API:
    - Settings: Main configuration class
    - load_settings: Factory function to load settings from environment
    - Direction, Quality, Verdict, OptionType: Core enumerations
    - ENGINE_VERSION: Version stamped on every decision
"""

from config.constants import (
    ENGINE_VERSION,
    Direction,
    OptionType,
    Quality,
    Verdict,
)
from config.settings import Settings, load_settings

__all__ = [
    "Settings",
    "load_settings",
    "ENGINE_VERSION",
    "Direction",
    "Quality",
    "Verdict",
    "OptionType",
]
