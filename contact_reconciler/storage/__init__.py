"""contact_reconciler.storage - SQLite store for contacts and sync state."""

from contact_reconciler.storage.db import ContactStore, StoreError, UnitOfWork

__all__ = ["ContactStore", "StoreError", "UnitOfWork"]
