"""
Directory client interface and error taxonomy.

A DirectoryClient wraps one external contact directory (Google People,
Microsoft Graph). The reconciliation pipeline only relies on this interface;
retries and backoff live in the fetch layer (sync/fetcher.py), so clients
translate provider failures into the errors below and raise them at once.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from contact_reconciler.sync.normalizer import RawContact

if TYPE_CHECKING:
    from contact_reconciler.sync.records import LocalContact


class DirectoryError(Exception):
    """Raised when a directory operation fails."""

    pass


class TransientDirectoryError(DirectoryError):
    """Temporary failure (network error, 5xx); safe to retry."""

    pass


class RateLimitError(TransientDirectoryError):
    """
    The provider throttled the request (HTTP 429 or equivalent).

    Attributes:
        retry_after: Seconds the provider asked us to wait, if it said
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class AuthExpiredError(DirectoryError):
    """The bearer credential was rejected; the job cannot continue."""

    pass


class CursorExpiredError(DirectoryError):
    """The stored sync token or delta link is no longer valid."""

    pass


class PaginationError(DirectoryError):
    """A page stream ended without the token needed to continue."""

    pass


class RemoteContactNotFoundError(DirectoryError):
    """The requested directory contact does not exist."""

    pass


@dataclass
class DirectoryPage:
    """
    One page of directory results.

    Attributes:
        records: Raw provider contacts on this page
        next_page_token: Token for the next page (None on the last page)
        next_sync_cursor: Cursor for the next incremental sync, usually only
            present on the last page
        removed_external_ids: Contacts the provider reports as deleted
    """

    records: list[RawContact] = field(default_factory=list)
    next_page_token: Optional[str] = None
    next_sync_cursor: Optional[str] = None
    removed_external_ids: list[str] = field(default_factory=list)

    @property
    def is_last(self) -> bool:
        return not self.next_page_token


@runtime_checkable
class DirectoryClient(Protocol):
    """
    Interface to an external contact directory.

    Attributes:
        provider: PROVIDER_GOOGLE or PROVIDER_MICROSOFT
        supports_write_back: Whether create/update are available
        issues_sync_cursors: Whether the final page always carries a cursor
    """

    provider: str
    supports_write_back: bool
    issues_sync_cursors: bool

    def fetch_page(
        self, cursor: Optional[str] = None, page_token: Optional[str] = None
    ) -> DirectoryPage:
        """
        Fetch one page.

        Without a cursor the full contact list is returned (and a cursor is
        requested); with one, only changes since it was issued.

        Raises:
            RateLimitError, TransientDirectoryError, AuthExpiredError,
            CursorExpiredError, DirectoryError
        """
        ...

    def get_contact(self, external_id: str) -> RawContact:
        """Fetch a single contact by its external id."""
        ...

    def create_contact(self, contact: LocalContact) -> str:
        """Create a remote contact and return its external id."""
        ...

    def update_contact(self, external_id: str, contact: LocalContact) -> None:
        """Overwrite a remote contact's syncable fields."""
        ...
