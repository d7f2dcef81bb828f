"""
Configuration loader module for contact-reconciler.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Validation of configuration keys, types and ranges
- Conversion into typed Settings with CLI overrides applied
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from contact_reconciler.sync.conflict import ConflictStrategy
from contact_reconciler.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Environment variable naming an explicit configuration file
CONFIG_FILE_ENV_VAR = "CONTACT_RECONCILER_CONFIG_FILE"

logger = logging.getLogger(__name__)

# Valid configuration keys and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # Logging options
    "verbose": bool,
    "log_dir": str,
    "log_retention_count": int,
    # Store options
    "db_path": str,
    # Pipeline options
    "batch_size": int,
    "max_job_errors": int,
    "max_workers": int,
    # Matching options
    "fuzzy_threshold": (int, float),
    "default_country_code": str,
    # Fetch options
    "max_retries": int,
    "initial_retry_delay": (int, float),
    "max_retry_delay": (int, float),
    # Conflict options
    "default_conflict_strategy": str,
}

POSITIVE_INT_KEYS = [
    "batch_size",
    "max_job_errors",
    "max_workers",
    "max_retries",
    "log_retention_count",
]

POSITIVE_FLOAT_KEYS = [
    "initial_retry_delay",
    "max_retry_delay",
]


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


@dataclass
class Settings:
    """
    Typed runtime settings.

    Defaults apply for every key missing from the configuration file.
    """

    verbose: bool = False
    log_dir: str | None = None
    log_retention_count: int = 10
    db_path: str | None = None
    batch_size: int = 200
    max_job_errors: int = 100
    max_workers: int = 4
    fuzzy_threshold: float = 0.85
    default_country_code: str = "1"
    max_retries: int = 5
    initial_retry_delay: float = 1.0
    max_retry_delay: float = 60.0
    default_conflict_strategy: str = ConflictStrategy.LAST_WRITE_WINS.value

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> Settings:
        """Build settings from a validated configuration dictionary."""
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in config.items() if key in known}
        for key in ("fuzzy_threshold", "initial_retry_delay", "max_retry_delay"):
            if key in values:
                values[key] = float(values[key])
        return cls(**values)

    def with_overrides(self, **overrides: Any) -> Settings:
        """Return a copy with non-None overrides applied (CLI flags win)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def conflict_strategy(self) -> ConflictStrategy:
        return ConflictStrategy.parse(self.default_conflict_strategy)


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # With custom path
        loader = ConfigLoader(config_dir=Path("/custom/path"))

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | str | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.contact-reconciler/ or
                       $CONTACT_RECONCILER_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    def _get_config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns an empty dict if the file doesn't exist, allowing
        graceful operation with CLI defaults.

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path).expanduser()

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            # Handle empty files
            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored with a debug message.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                logger.debug(f"Ignoring unknown configuration key: {key}")
                continue
            expected_type = VALID_KEYS[key]
            # bool is a subclass of int; reject it for numeric keys
            is_numeric = expected_type is not bool and expected_type is not str
            if not isinstance(value, expected_type) or (
                is_numeric and isinstance(value, bool)
            ):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        if "default_conflict_strategy" in config:
            valid_strategies = [s.value for s in ConflictStrategy]
            if config["default_conflict_strategy"] not in valid_strategies:
                raise ConfigError(
                    f"Invalid default_conflict_strategy "
                    f"'{config['default_conflict_strategy']}'. "
                    f"Must be one of: {', '.join(valid_strategies)}"
                )

        if "fuzzy_threshold" in config:
            threshold = config["fuzzy_threshold"]
            if not (0.0 <= threshold <= 1.0):
                raise ConfigError(
                    f"fuzzy_threshold must be between 0.0 and 1.0, got {threshold}"
                )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        for key in POSITIVE_FLOAT_KEYS:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        if "default_country_code" in config and not config["default_country_code"].isdigit():
            raise ConfigError(
                f"default_country_code must contain digits only, "
                f"got {config['default_country_code']!r}"
            )

    def load_and_validate(self, path: Path | str | None = None) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Args:
            path: Explicit configuration file; falls back to
                  $CONTACT_RECONCILER_CONFIG_FILE, then the default location

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        explicit = path or os.environ.get(CONFIG_FILE_ENV_VAR)
        config = self.load_from_file(explicit) if explicit else self.load()
        if config:
            self.validate(config)
        return config

    def load_settings(self, path: Path | str | None = None) -> Settings:
        return Settings.from_config(self.load_and_validate(path))
