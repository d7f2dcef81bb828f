"""
contact_reconciler.config - Configuration management module

Contains the YAML settings loader and the per-job import configuration.
"""

from contact_reconciler.config.import_config import (
    ImportConfig,
    ImportConfigError,
    load_import_config,
)
from contact_reconciler.config.loader import ConfigError, ConfigLoader, Settings

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "Settings",
    "ImportConfig",
    "ImportConfigError",
    "load_import_config",
]
