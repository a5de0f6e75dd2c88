"""
Configuration Module
====================

Centralized configuration management using Pydantic Settings.
Loads from environment variables with type validation and defaults.

Usage:
    from shared.config import settings

    print(settings.environment)
    print(settings.escrow.default_threshold)
"""

from shared.config.settings import (
    FELT252_PRIME,
    Environment,
    LedgerMode,
    LogLevel,
    PayloadStoreMode,
    Settings,
    get_settings,
)


# Global settings instance (singleton)
settings = get_settings()

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "Environment",
    "LogLevel",
    "LedgerMode",
    "PayloadStoreMode",
    "FELT252_PRIME",
]
