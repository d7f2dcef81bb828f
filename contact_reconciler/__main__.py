"""
Entry point for running contact_reconciler as a module.

Usage:
    python -m contact_reconciler --help
    python -m contact_reconciler status
    python -m contact_reconciler sync --integration <id>
"""

from contact_reconciler.cli import cli

if __name__ == "__main__":
    cli()
