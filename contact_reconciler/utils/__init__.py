"""
contact_reconciler.utils - Utility module

Common utilities including logging configuration, path resolution and
string normalization.
"""

from contact_reconciler.utils.normalization import (
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_phone,
    normalize_string,
)
from contact_reconciler.utils.paths import DEFAULT_CONFIG_DIR, resolve_config_dir

__all__ = [
    "normalize_string",
    "normalize_name",
    "normalize_company",
    "normalize_email",
    "normalize_phone",
    "resolve_config_dir",
    "DEFAULT_CONFIG_DIR",
]
