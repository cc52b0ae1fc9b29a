"""
Configuration package for the portfolio sync service.

This package provides configuration management with support for YAML/JSON files,
environment variable overrides, and Pydantic-based validation.
"""

from .config_manager import (
    ConfigManager,
    PortfolioSyncConfig,
    ApiSettings,
    CacheSettings,
    ColorSettings,
    LoggingSettings,
    LogLevel,
    load_config,
    load_env_keys,
)

__all__ = [
    'ConfigManager',
    'PortfolioSyncConfig',
    'ApiSettings',
    'CacheSettings',
    'ColorSettings',
    'LoggingSettings',
    'LogLevel',
    'load_config',
    'load_env_keys',
]
