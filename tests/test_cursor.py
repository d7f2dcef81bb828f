"""Tests for the sync cursor store."""

import pytest

from conftest import INTEGRATION_ID, utc
from contact_reconciler.sync.cursor import SyncCursorStore
from contact_reconciler.sync.records import SyncCursor


@pytest.fixture
def cursors(store):
    return SyncCursorStore(store, clock=lambda: utc(2024, 6, 1, 12))


class TestSyncCursorStore:
    """Tests for reading, advancing and clearing cursors."""

    def test_no_cursor(self, cursors):
        assert cursors.get(INTEGRATION_ID) is None
        assert cursors.last_sync_at(INTEGRATION_ID) is None

    def test_advance_stamps_sync_time(self, cursors):
        state = cursors.advance(INTEGRATION_ID, "token-1")
        assert state.cursor == "token-1"
        assert state.last_sync_at == utc(2024, 6, 1, 12)
        assert cursors.get(INTEGRATION_ID).cursor == "token-1"
        assert cursors.last_sync_at(INTEGRATION_ID) == utc(2024, 6, 1, 12)

    def test_advance_replaces_previous(self, cursors):
        cursors.advance(INTEGRATION_ID, "token-1")
        cursors.advance(INTEGRATION_ID, "token-2")
        assert cursors.get(INTEGRATION_ID).cursor == "token-2"

    def test_empty_cursor_rejected(self, cursors):
        """Advancing to nothing would silently force a full sync."""
        with pytest.raises(ValueError):
            cursors.advance(INTEGRATION_ID, "")

    def test_blank_stored_cursor_treated_as_missing(self, store, cursors):
        store.save_cursor(SyncCursor(INTEGRATION_ID, None, utc(2024, 1, 1)))
        assert cursors.get(INTEGRATION_ID) is None

    def test_clear(self, cursors):
        cursors.advance(INTEGRATION_ID, "token-1")
        assert cursors.clear(INTEGRATION_ID)
        assert cursors.get(INTEGRATION_ID) is None
        assert not cursors.clear(INTEGRATION_ID)
