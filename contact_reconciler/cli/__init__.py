"""CLI package for contact_reconciler."""

from contact_reconciler.cli.main import (
    DEFAULT_GOOGLE_CREDENTIALS_FILE,
    build_client,
    build_import_config,
    cli,
)

__all__ = [
    "DEFAULT_GOOGLE_CREDENTIALS_FILE",
    "build_client",
    "build_import_config",
    "cli",
]
