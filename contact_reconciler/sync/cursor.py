"""
Sync cursor store.

Persists each integration's incremental-sync position (Google sync token or
Graph delta link). Callers must only advance a cursor after the page that
carried it has been fully applied; until then the old cursor stays put and a
crash simply replays the page.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from contact_reconciler.storage.db import ContactStore
from contact_reconciler.sync.records import SyncCursor, utc_now

logger = logging.getLogger(__name__)


class SyncCursorStore:
    """
    Per-integration cursor persistence on top of the contact store.

    Usage:
        cursors = SyncCursorStore(store)
        current = cursors.get(integration_id)
        ...apply the page fetched with current...
        cursors.advance(integration_id, page.next_sync_cursor)
    """

    def __init__(
        self, store: ContactStore, clock: Optional[Callable[[], datetime]] = None
    ):
        self.store = store
        self.clock = clock or utc_now

    def get(self, integration_id: str) -> Optional[SyncCursor]:
        """Return the stored cursor, or None when no usable cursor exists."""
        cursor = self.store.get_cursor(integration_id)
        if cursor is None or not cursor.cursor:
            return None
        return cursor

    def advance(self, integration_id: str, cursor: str) -> SyncCursor:
        """
        Record a new cursor after its page has been applied.

        Raises:
            ValueError: If cursor is empty
        """
        if not cursor:
            raise ValueError("Cannot advance to an empty cursor")
        state = SyncCursor(
            integration_id=integration_id, cursor=cursor, last_sync_at=self.clock()
        )
        self.store.save_cursor(state)
        logger.debug(f"Cursor advanced for integration {integration_id}")
        return state

    def clear(self, integration_id: str) -> bool:
        """Drop the cursor so the next sync is a full one."""
        cleared = self.store.delete_cursor(integration_id)
        if cleared:
            logger.info(f"Cleared sync cursor for integration {integration_id}")
        return cleared

    def last_sync_at(self, integration_id: str) -> Optional[datetime]:
        cursor = self.store.get_cursor(integration_id)
        return cursor.last_sync_at if cursor else None
