"""
Research settings loaded from environment variables.

Uses Pydantic Settings for type-safe configuration with validation.
All settings can be overridden via MULTIFACTOR_* environment variables or .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class MultiFactorSettings(BaseSettings):
    """
    Defaults for multi-factor synthesis and IC evaluation.

    Values here are only used when a caller does not pass the corresponding
    argument explicitly to MultiFactor or an IC-weighted strategy.
    """

    model_config = SettingsConfigDict(
        env_prefix="MULTIFACTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # IC evaluation
    default_ic_n: int = Field(
        default=5,
        ge=1,
        le=250,
        description="Forward-return horizon (trading days) used for IC when none is given",
    )
    ic_method: Literal["rank", "pearson"] = Field(
        default="rank",
        description="Cross-sectional correlation for IC: 'rank' (Spearman) or 'pearson'",
    )

    # Alignment
    fill_policy: Literal["missing", "forward_fill"] = Field(
        default="missing",
        description="How reference dates without a native factor value are filled",
    )

    # IC/ICIR weighted synthesis
    ic_rolling_n: int = Field(
        default=120,
        ge=2,
        le=2520,
        description="Trailing window (dates) for rolling IC used as synthesis weights",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )


@lru_cache
def get_settings() -> MultiFactorSettings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once. Tests that change
    MULTIFACTOR_* variables must call get_settings.cache_clear().
    """
    return MultiFactorSettings()
