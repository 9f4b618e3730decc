"""
Configuration module for cadence.

Provides centralized configuration for:
- Expansion horizon and occurrence limits
- Default time field and timezone for series
- Expansion job retry policy
"""

from cadence.src.config.settings import AppSettings, get_settings

__all__ = [
    "AppSettings",
    "get_settings",
]
