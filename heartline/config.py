"""Heartline Configuration System.

Loads and validates configuration from ~/.heartline/config.json.
Uses Pydantic for schema validation with sensible defaults.

Supports migration from older config versions while preserving existing values.

Usage:
    from heartline.config import load_config, save_config

    config = load_config()
    print(config.api_base_url)
    print(config.retry.max_delay_seconds)

    config.retry.max_delay_seconds = 30.0
    save_config(config)
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".heartline"
CONFIG_PATH = CONFIG_DIR / "config.json"

# Overrides api_base_url when set
API_URL_ENV_VAR = "HEARTLINE_API_URL"

# Current config schema version for migration tracking
CONFIG_VERSION = 2


class ProbeConfig(BaseModel):
    """Liveness probe settings.

    Attributes:
        path: Liveness path appended to the API base URL.
        timeout_seconds: Upper bound for a single probe.
    """

    path: str = "/health"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=120.0)


class RetryConfig(BaseModel):
    """Backoff schedule for the retry supervisor.

    The delay after the (n+1)th consecutive failure is
    ``min(initial_delay_seconds * multiplier ** n, max_delay_seconds)``
    with +/- ``jitter_ratio`` applied, clamped again to the maximum.

    Attributes:
        initial_delay_seconds: Delay after the first failure.
        multiplier: Exponential growth factor.
        max_delay_seconds: Cap on any single delay.
        jitter_ratio: Fraction of the delay used as random spread (0 disables).
    """

    initial_delay_seconds: float = Field(default=1.0, gt=0.0, le=600.0)
    multiplier: float = Field(default=1.5, ge=1.0, le=10.0)
    max_delay_seconds: float = Field(default=15.0, gt=0.0, le=3600.0)
    jitter_ratio: float = Field(default=0.2, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def _check_bounds(self) -> RetryConfig:
        if self.max_delay_seconds < self.initial_delay_seconds:
            raise ValueError("max_delay_seconds must be >= initial_delay_seconds")
        return self


class ClientConfig(BaseModel):
    """API client settings.

    Attributes:
        request_timeout_seconds: Timeout for regular API requests.
        session_path: Where the cached login session is stored (None = memory only).
        profile_path: Endpoint used to revalidate a cached session.
    """

    request_timeout_seconds: float = Field(default=30.0, gt=0.0, le=600.0)
    session_path: str | None = str(CONFIG_DIR / "session.json")
    profile_path: str = "/auth/profile"


class BannerConfig(BaseModel):
    """Availability banner settings."""

    countdown_interval_seconds: float = Field(default=1.0, gt=0.0, le=60.0)
    title: str = "Backend server is not running"
    hint: str = "Start the backend server; this view reconnects automatically."


class HeartlineConfig(BaseModel):
    """Root configuration model."""

    config_version: int = CONFIG_VERSION
    api_base_url: str = "http://localhost:5000/api"
    probe: ProbeConfig = Field(default_factory=ProbeConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    banner: BannerConfig = Field(default_factory=BannerConfig)

    @property
    def liveness_url(self) -> str:
        """Full URL of the liveness endpoint."""
        return self.api_base_url.rstrip("/") + "/" + self.probe.path.lstrip("/")


def _migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Migrate from v1 to v2: flat millisecond retry keys become the retry section."""
    retry = data.setdefault("retry", {})
    legacy_keys = {
        "initial_delay_ms": "initial_delay_seconds",
        "max_delay_ms": "max_delay_seconds",
    }
    for old_key, new_key in legacy_keys.items():
        if old_key in data:
            if new_key not in retry:
                retry[new_key] = data[old_key] / 1000.0
            del data[old_key]
    if "backoff_multiplier" in data:
        retry.setdefault("multiplier", data.pop("backoff_multiplier"))
    return data


# Migration registry mapping target versions to migration functions
_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    2: _migrate_v1_to_v2,
}


def _migrate_config(data: dict[str, Any]) -> dict[str, Any]:
    """Migrate config data from older versions to the current schema.

    Args:
        data: Raw config data loaded from file.

    Returns:
        Migrated config data compatible with current schema.
    """
    version = data.get("config_version", 1)

    for target_version in sorted(_MIGRATIONS.keys()):
        if version < target_version:
            logger.info(f"Migrating config from version {version} to {target_version}")
            data = _MIGRATIONS[target_version](data)
            version = target_version

    data["config_version"] = CONFIG_VERSION
    return data


def _apply_env_overrides(config: HeartlineConfig) -> HeartlineConfig:
    api_url = os.environ.get(API_URL_ENV_VAR)
    if api_url:
        return config.model_copy(update={"api_base_url": api_url})
    return config


def load_config(config_path: Path | None = None) -> HeartlineConfig:
    """Load configuration from file, return defaults if missing/invalid.

    Older config versions are migrated and persisted back to disk.
    ``HEARTLINE_API_URL`` overrides the stored API base URL.

    Args:
        config_path: Optional path to config file. Defaults to ~/.heartline/config.json.

    Returns:
        HeartlineConfig instance with loaded or default values.
    """
    path = config_path or CONFIG_PATH

    if not path.exists():
        logger.debug(f"Config file not found at {path}, using defaults")
        return _apply_env_overrides(HeartlineConfig())

    try:
        with path.open() as f:
            data: dict[str, Any] = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in config file {path}: {e}, using defaults")
        return _apply_env_overrides(HeartlineConfig())
    except OSError as e:
        logger.warning(f"Cannot read config file {path}: {e}, using defaults")
        return _apply_env_overrides(HeartlineConfig())

    original_version = data.get("config_version", 1)
    data = _migrate_config(data)

    try:
        config = HeartlineConfig.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Config validation failed: {e}, using defaults")
        return _apply_env_overrides(HeartlineConfig())

    if original_version < CONFIG_VERSION:
        logger.info(f"Persisting migrated config (v{original_version} -> v{CONFIG_VERSION})")
        save_config(config, path)

    return _apply_env_overrides(config)


def save_config(config: HeartlineConfig, config_path: Path | None = None) -> bool:
    """Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to config file. Defaults to ~/.heartline/config.json.

    Returns:
        True if saved successfully, False otherwise.
    """
    path = config_path or CONFIG_PATH

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w") as f:
            json.dump(config.model_dump(), f, indent=2)
        os.chmod(path, 0o600)
        logger.debug(f"Configuration saved to {path}")
        return True
    except OSError as e:
        logger.error(f"Failed to save config to {path}: {e}")
        return False
