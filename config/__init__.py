"""Configuration management."""

from config.settings import MultiFactorSettings, get_settings

__all__ = [
    "MultiFactorSettings",
    "get_settings",
]
