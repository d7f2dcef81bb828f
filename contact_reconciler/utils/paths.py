"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the contact-reconciler configuration
directory (config file, SQLite store, logs) across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".contact-reconciler"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "CONTACT_RECONCILER_CONFIG_DIR"

# Default SQLite store file name inside the config directory
DEFAULT_DB_FILENAME = "reconciler.db"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CONTACT_RECONCILER_CONFIG_DIR environment variable
        3. Default directory (~/.contact-reconciler)

    Args:
        config_dir: Optional explicit configuration directory path.

    Returns:
        Resolved Path to the configuration directory
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_db_path(config_dir: Path, db_path: str | None = None) -> str:
    """
    Resolve the SQLite store location.

    An explicit ``db_path`` wins (``:memory:`` is passed through untouched);
    otherwise the store lives in the configuration directory.
    """
    if db_path == ":memory:":
        return db_path
    if db_path:
        return str(Path(db_path).expanduser())
    return str(config_dir / DEFAULT_DB_FILENAME)
