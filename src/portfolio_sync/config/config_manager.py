"""
Configuration Manager for the portfolio sync service.

This module provides centralized configuration management with support for:
- YAML and JSON configuration files
- Environment variable overrides
- Pydantic-based validation
- Default values for every parameter, so the service runs without a file
- Loading API credentials from a .env file
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator


class LogLevel(str, Enum):
    """Supported log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ApiSettings(BaseModel):
    """Upstream trading API connection settings."""
    base_url: str = Field(
        default="https://public-api.etoro.com",
        description="Trading API host"
    )
    api_prefix: str = Field(default="/api/v1", description="Versioned path prefix")
    primary_timeout_seconds: float = Field(
        default=30.0, gt=0,
        description="Total timeout for portfolio and trade-history requests"
    )
    secondary_timeout_seconds: float = Field(
        default=15.0, gt=0,
        description="Total timeout for instrument, rate, candle and watchlist requests"
    )
    max_retries: int = Field(
        default=2, ge=0,
        description="Retries for transport errors and retryable statuses"
    )
    retry_delay_base: float = Field(default=0.5, ge=0, description="Backoff base in seconds")
    retry_delay_max: float = Field(default=8.0, ge=0, description="Backoff ceiling in seconds")
    trade_history_days: int = Field(default=90, ge=1, description="Default trade-history window")
    trade_history_page_size: int = Field(default=500, ge=1, description="Trade-history page size")
    candle_count: int = Field(default=90, ge=1, description="Default candles per instrument")

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v):
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip('/')

    @field_validator('api_prefix')
    @classmethod
    def validate_api_prefix(cls, v):
        return '/' + v.strip('/') if v.strip('/') else ''


class CacheSettings(BaseModel):
    """Local snapshot cache settings."""
    path: str = Field(
        default="~/.portfolio_sync/storage.json",
        description="JSON file backing the local cache"
    )
    quota_bytes: Optional[int] = Field(
        default=5 * 1024 * 1024, ge=1,
        description="Maximum serialized storage size; None disables the quota"
    )

    @property
    def resolved_path(self) -> Path:
        return Path(self.path).expanduser()


class ColorSettings(BaseModel):
    """Symbol color engine settings."""
    target_lightness: float = Field(default=0.79, gt=0, lt=1)
    min_chroma: float = Field(default=0.25, ge=0)
    max_chroma: float = Field(default=0.4, ge=0)
    min_hue_gap: float = Field(default=50.0, gt=0, le=180)
    max_passes: int = Field(default=12, ge=1)
    sample_size: int = Field(default=16, ge=1, description="Downscaled logo edge in pixels")
    min_alpha: int = Field(default=100, ge=0, le=255)
    min_luminance: float = Field(default=25.0, ge=0, le=255)
    max_luminance: float = Field(default=230.0, ge=0, le=255)
    download_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator('max_chroma')
    @classmethod
    def validate_chroma_range(cls, v, info):
        min_chroma = info.data.get('min_chroma', 0.25)
        if v < min_chroma:
            raise ValueError("max_chroma must be >= min_chroma")
        return v

    @field_validator('max_luminance')
    @classmethod
    def validate_luminance_range(cls, v, info):
        min_luminance = info.data.get('min_luminance', 25.0)
        if v <= min_luminance:
            raise ValueError("max_luminance must be > min_luminance")
        return v


class LoggingSettings(BaseModel):
    """Logging settings."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Root log level")
    console: bool = Field(default=True, description="Log to stderr")
    colors: bool = Field(default=True, description="Colorize console output")
    file: bool = Field(default=False, description="Also log JSON lines to a rotating file")
    directory: str = Field(default="~/.portfolio_sync/logs")
    filename: str = Field(default="portfolio_sync.log")

    def to_logging_dict(self) -> Dict[str, Any]:
        """Build the dictionary consumed by utils.setup_logging."""
        return {
            'logging': {
                'level': self.level.value,
                'console': self.console,
                'console_config': {'colors': self.colors},
                'file': self.file,
                'file_config': {
                    'directory': self.directory,
                    'filename': self.filename,
                },
            }
        }


class PortfolioSyncConfig(BaseModel):
    """Complete service configuration."""
    api: ApiSettings = Field(default_factory=ApiSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    colors: ColorSettings = Field(default_factory=ColorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


class ConfigManager:
    """
    Configuration manager for the portfolio sync service.

    Handles loading configuration from YAML/JSON files with support for:
    - Environment variable overrides
    - Validation using Pydantic models
    - Default values for optional parameters

    Environment Variables:
        PORTFOLIO_SYNC_BASE_URL: Override API host
        PORTFOLIO_SYNC_PRIMARY_TIMEOUT: Override primary request timeout
        PORTFOLIO_SYNC_SECONDARY_TIMEOUT: Override secondary request timeout
        PORTFOLIO_SYNC_MAX_RETRIES: Override retry count
        PORTFOLIO_SYNC_CACHE_PATH: Override cache file location
        PORTFOLIO_SYNC_LOG_LEVEL: Override log level
    """

    ENV_MAPPINGS = {
        'PORTFOLIO_SYNC_BASE_URL': ('api', 'base_url'),
        'PORTFOLIO_SYNC_PRIMARY_TIMEOUT': ('api', 'primary_timeout_seconds'),
        'PORTFOLIO_SYNC_SECONDARY_TIMEOUT': ('api', 'secondary_timeout_seconds'),
        'PORTFOLIO_SYNC_MAX_RETRIES': ('api', 'max_retries'),
        'PORTFOLIO_SYNC_CACHE_PATH': ('cache', 'path'),
        'PORTFOLIO_SYNC_LOG_LEVEL': ('logging', 'level'),
    }

    INT_FIELDS = {('api', 'max_retries')}
    FLOAT_FIELDS = {
        ('api', 'primary_timeout_seconds'),
        ('api', 'secondary_timeout_seconds'),
    }

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self._config_path: Optional[Path] = Path(config_path) if config_path else None
        self._config: Optional[PortfolioSyncConfig] = None
        self._raw_config: Dict[str, Any] = {}

    def load_config(self, config_path: Optional[Union[str, Path]] = None) -> PortfolioSyncConfig:
        """
        Load configuration from file, or defaults when no file is configured.

        Args:
            config_path: Path to configuration file. If not provided, uses the path
                        specified during initialization.

        Returns:
            PortfolioSyncConfig: Validated configuration object

        Raises:
            FileNotFoundError: If the configuration file does not exist
            ValueError: If the configuration format or values are invalid
        """
        if config_path:
            self._config_path = Path(config_path)

        if self._config_path is not None:
            if not self._config_path.exists():
                raise FileNotFoundError(
                    f"Configuration file not found: {self._config_path}"
                )
            self._raw_config = self._load_file(self._config_path)
        else:
            self._raw_config = {}

        self._apply_env_overrides()

        try:
            self._config = PortfolioSyncConfig(**self._raw_config)
        except ValidationError as e:
            raise ValueError(f"Configuration validation failed: {e}") from e

        return self._config

    def _load_file(self, path: Path) -> Dict[str, Any]:
        suffix = path.suffix.lower()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                if suffix in ['.yaml', '.yml']:
                    return yaml.safe_load(f) or {}
                elif suffix == '.json':
                    return json.load(f)
                else:
                    raise ValueError(
                        f"Unsupported configuration format: {suffix}. "
                        "Use .yaml, .yml, or .json"
                    )
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML format: {e}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON format: {e}") from e

    def _apply_env_overrides(self) -> None:
        """Environment variables take precedence over file configuration."""
        for env_var, (section, key) in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is None:
                continue

            section_data = self._raw_config.setdefault(section, {})
            section_data[key] = self._convert_env_value(env_var, value, section, key)

    def _convert_env_value(
        self, env_var: str, value: str, section: str, key: str
    ) -> Union[str, int, float]:
        if (section, key) in self.INT_FIELDS:
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"{env_var} must be an integer, got: {value}")

        if (section, key) in self.FLOAT_FIELDS:
            try:
                return float(value)
            except ValueError:
                raise ValueError(f"{env_var} must be a number, got: {value}")

        if (section, key) == ('logging', 'level'):
            return value.upper()

        return value

    def save_config(
        self, config_path: Optional[Union[str, Path]] = None, format: str = 'yaml'
    ) -> None:
        """
        Save current configuration to file.

        Args:
            config_path: Path to save configuration. Defaults to the loaded path.
            format: Output format ('yaml' or 'json')
        """
        if not self._config:
            raise ValueError("No configuration loaded to save")

        save_path = Path(config_path) if config_path else self._config_path
        if not save_path:
            raise ValueError("No save path specified")

        save_path.parent.mkdir(parents=True, exist_ok=True)
        config_dict = self._config.model_dump(mode='json')

        with open(save_path, 'w', encoding='utf-8') as f:
            if format.lower() in ['yaml', 'yml']:
                yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
            elif format.lower() == 'json':
                json.dump(config_dict, f, indent=2)
            else:
                raise ValueError(f"Unsupported format: {format}. Use 'yaml' or 'json'")

    def get_config(self) -> PortfolioSyncConfig:
        if not self._config:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    @property
    def is_loaded(self) -> bool:
        return self._config is not None


def load_config(config_path: Optional[Union[str, Path]] = None) -> PortfolioSyncConfig:
    """
    Load configuration from file, falling back to defaults when no path is given.

    Args:
        config_path: Path to configuration file

    Returns:
        PortfolioSyncConfig: Validated configuration object
    """
    manager = ConfigManager(config_path)
    return manager.load_config()


def load_env_keys(env_file: Optional[Union[str, Path]] = None) -> Optional[Tuple[str, str]]:
    """
    Read API credentials from the environment, loading a .env file first.

    Args:
        env_file: Explicit .env path; python-dotenv searches upwards when None

    Returns:
        (api_key, user_key) when both are set and non-blank, otherwise None
    """
    load_dotenv(dotenv_path=env_file, override=False)
    api_key = (os.getenv('ETORO_API_KEY') or '').strip()
    user_key = (os.getenv('ETORO_USER_KEY') or '').strip()
    if not api_key or not user_key:
        return None
    return api_key, user_key
