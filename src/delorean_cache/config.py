# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for DeLorean Cache."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from delorean_cache.errors import DeloreanCacheError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".delorean_cache.yml"


class ConfigurationError(DeloreanCacheError):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for the resource cache and its bindings.

    Loads configuration from .delorean_cache.yml with validation and defaults.
    """

    # Durations are in milliseconds, matching CacheEntry timestamps
    DEFAULTS = {
        "key_prefix": "delorean-cache",
        "default_version": "1.0.0",
        "default_max_age_ms": 5 * 60 * 1000,
        "profile_max_age_ms": 10 * 60 * 1000,
        "settings_max_age_ms": 15 * 60 * 1000,
        "preferences_max_age_ms": 15 * 60 * 1000,
        "revalidate_on_mount": True,
        "max_stale_age_ms": 0,  # 0 disables the staleness ceiling
        "storage_path": "",  # Empty means unset
        "autosave_delay_ms": 1000,
    }

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses default location.
        """
        if config_path is None:
            config_path = Path.cwd() / CONFIG_FILENAME

        self.config_path = config_path
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self.DEFAULTS.copy()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self.DEFAULTS.copy()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self.DEFAULTS.copy()
                return

            self._config = self.DEFAULTS.copy()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()
        except OSError as e:
            logger.warning(
                f"Could not read configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults.

        Invalid parameters are logged as warnings and defaults are used.
        """
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value}, using default {self.DEFAULTS[key]}"
                )
                continue

            self._config[key] = value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        expected_type = type(self.DEFAULTS[key])
        # bool is a subclass of int; reject True/False for numeric keys
        if expected_type is int and isinstance(value, bool):
            return False
        if not isinstance(value, expected_type):
            return False

        if key in (
            "default_max_age_ms",
            "profile_max_age_ms",
            "settings_max_age_ms",
            "preferences_max_age_ms",
        ):
            return value > 0
        elif key in ("max_stale_age_ms", "autosave_delay_ms"):
            return value >= 0
        elif key in ("key_prefix", "default_version"):
            # Colons separate key components
            return bool(value) and ":" not in value

        return True

    @property
    def key_prefix(self) -> str:
        """First component of every storage key."""
        value = self._config["key_prefix"]
        assert isinstance(value, str)
        return value

    @property
    def default_version(self) -> str:
        """Version tag written with cache entries."""
        value = self._config["default_version"]
        assert isinstance(value, str)
        return value

    @property
    def default_max_age_ms(self) -> int:
        """Freshness window for resources without their own setting."""
        value = self._config["default_max_age_ms"]
        assert isinstance(value, int)
        return value

    @property
    def profile_max_age_ms(self) -> int:
        value = self._config["profile_max_age_ms"]
        assert isinstance(value, int)
        return value

    @property
    def settings_max_age_ms(self) -> int:
        value = self._config["settings_max_age_ms"]
        assert isinstance(value, int)
        return value

    @property
    def preferences_max_age_ms(self) -> int:
        value = self._config["preferences_max_age_ms"]
        assert isinstance(value, int)
        return value

    @property
    def revalidate_on_mount(self) -> bool:
        """Whether controllers refresh on start even when the cache is fresh."""
        value = self._config["revalidate_on_mount"]
        assert isinstance(value, bool)
        return value

    @property
    def max_stale_age_ms(self) -> Optional[int]:
        """Staleness ceiling, or None when disabled (configured as 0)."""
        value = self._config["max_stale_age_ms"]
        assert isinstance(value, int)
        return value or None

    @property
    def storage_path(self) -> Optional[Path]:
        """File for FileStorage, or None when unset.

        Relative paths are resolved against the configuration file's directory.
        """
        value = self._config["storage_path"]
        assert isinstance(value, str)
        if not value:
            return None
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.config_path.parent / path
        return path

    @property
    def autosave_delay_ms(self) -> int:
        """Quiet period before debounced settings edits are written."""
        value = self._config["autosave_delay_ms"]
        assert isinstance(value, int)
        return value
