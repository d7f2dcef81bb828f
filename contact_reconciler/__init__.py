"""
contact_reconciler - Contact import, deduplication and sync engine.

Imports contacts from external directories (Google Contacts, Microsoft 365)
into a local contact set, deduplicates them, keeps them in step with
incremental syncs and resolves conflicting edits.
"""

__version__ = "0.1.0"
