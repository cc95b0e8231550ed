"""Engine settings with YAML support and environment overrides.

Settings are resolved in this order, later sources winning:
defaults, YAML file, the YAML ``environments`` section selected by
``COOKIE_SENTINEL_ENV``, explicit overrides, ``COOKIE_SENTINEL_*`` variables.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "COOKIE_SENTINEL_"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class ConfigLoadError(Exception):
    """Exception raised when configuration loading fails."""
    pass


class EngineSettings(BaseModel):
    """Tunable limits and defaults for scans and the scheduler."""

    # Scan limits
    max_concurrent_scans: int = Field(
        default=5, ge=1, le=50,
        description="Probes run concurrently within one batch"
    )
    scan_timeout_ms: int = Field(
        default=20000, ge=1000,
        description="Hard navigation timeout per page"
    )
    max_pages_per_scan: int = Field(
        default=100, ge=1,
        description="URL budget for full and smart scans"
    )
    quick_scan_max_urls: int = Field(
        default=10, ge=1,
        description="URL budget for quick scans"
    )
    default_depth: int = Field(default=3, ge=0, description="Maximum path depth")

    # Retry policy
    max_retries: int = Field(default=3, ge=1, description="Attempts per page")
    retry_delay_ms: int = Field(
        default=1000, ge=0,
        description="Initial backoff delay, doubled after each failed attempt"
    )

    # Browser
    headless: bool = Field(default=True)
    browser_engine: str = Field(default="chromium")
    user_agent: str = Field(default=DEFAULT_USER_AGENT)

    # Scheduler
    scheduler_retry_delay_minutes: int = Field(
        default=30, ge=0,
        description="Fixed delay before a failed scheduled scan is retried"
    )
    default_timezone: str = Field(default="UTC")

    # Notifications
    webhook_url: Optional[str] = Field(
        default=None,
        description="Endpoint receiving significant-change notifications"
    )
    webhook_secret: Optional[str] = Field(
        default=None,
        description="HMAC secret for signing webhook payloads"
    )
    webhook_timeout_seconds: float = Field(default=10.0, gt=0)

    # Persistence
    database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy async URL; falls back to DATABASE_URL"
    )

    @field_validator("browser_engine")
    @classmethod
    def validate_browser_engine(cls, v: str) -> str:
        v = v.lower()
        if v not in ("chromium", "firefox", "webkit"):
            raise ValueError(f"Unsupported browser engine: {v}")
        return v

    def max_urls_for(self, scan_type: str) -> int:
        """URL budget for a scan type. Smart scans use the full budget."""
        if scan_type == "quick":
            return self.quick_scan_max_urls
        return self.max_pages_per_scan


def load_settings(
    config_path: Optional[str] = None,
    environment: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None
) -> EngineSettings:
    """Load EngineSettings from an optional YAML file and the environment.

    Args:
        config_path: Path to a YAML settings file. Missing path means defaults.
        environment: Environment name for override selection. If None, uses
            the COOKIE_SENTINEL_ENV variable.
        overrides: Additional values applied after the file.

    Returns:
        Validated EngineSettings instance.

    Raises:
        ConfigLoadError: If the file cannot be read or values are invalid.
    """
    config_data: Dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigLoadError(f"Config file not found: {path}")

        try:
            with open(path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Failed to parse YAML config: {e}")
        except IOError as e:
            raise ConfigLoadError(f"Failed to read config file: {e}")

        if not isinstance(config_data, dict):
            raise ConfigLoadError("Config file must contain a YAML dictionary")

    if environment is None:
        environment = os.getenv(f"{ENV_PREFIX}ENV", "production")

    environments = config_data.pop("environments", None) or {}
    if environment in environments:
        config_data = _deep_merge(config_data, environments[environment])
        logger.info(f"Applied environment overrides for: {environment}")

    if overrides:
        config_data = _deep_merge(config_data, overrides)
        logger.debug("Applied additional configuration overrides")

    config_data.update(_environment_values())

    try:
        return EngineSettings(**config_data)
    except ValidationError as e:
        raise ConfigLoadError(f"Invalid engine settings: {e}")


def _environment_values() -> Dict[str, str]:
    """Collect COOKIE_SENTINEL_<FIELD> variables matching settings fields."""
    values = {}
    for field_name in EngineSettings.model_fields:
        raw = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
        if raw is not None:
            values[field_name] = raw
    return values


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result
