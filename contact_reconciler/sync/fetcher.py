"""
Fetch layer between the pipeline and a DirectoryClient.

Adds what the clients deliberately leave out:
- Exponential backoff retry on rate limits and transient failures
- Strict pagination: a page stream must end with a sync cursor, and a page
  token may never repeat. Either violation is a hard fetch failure.
"""

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any, Optional, TypeVar

from contact_reconciler.api.base import (
    DirectoryClient,
    DirectoryPage,
    PaginationError,
    RateLimitError,
    TransientDirectoryError,
)
from contact_reconciler.sync.normalizer import RawContact
from contact_reconciler.sync.records import LocalContact

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 5
DEFAULT_INITIAL_RETRY_DELAY = 1.0  # seconds
DEFAULT_MAX_RETRY_DELAY = 60.0  # seconds

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FetchResult:
    """Everything returned by walking all pages of a listing."""

    records: list[RawContact] = field(default_factory=list)
    removed_external_ids: list[str] = field(default_factory=list)
    next_sync_cursor: Optional[str] = None
    page_count: int = 0


class DirectoryFetcher:
    """
    Retrying, pagination-checking wrapper around a DirectoryClient.

    Usage:
        fetcher = DirectoryFetcher(client)
        for page in fetcher.iter_pages(cursor=stored_cursor):
            apply(page)
            if page.next_sync_cursor:
                save(page.next_sync_cursor)
    """

    def __init__(
        self,
        client: DirectoryClient,
        max_retries: int = DEFAULT_MAX_RETRIES,
        initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        """
        Initialize the fetcher.

        Args:
            client: Directory client to call
            max_retries: Maximum attempts per call (default 5)
            initial_retry_delay: Initial backoff delay in seconds (default 1.0)
            max_retry_delay: Maximum backoff delay in seconds (default 60.0)
            sleep: Sleep function (injectable for tests)
        """
        self.client = client
        self.max_retries = max(1, max_retries)
        self.initial_retry_delay = initial_retry_delay
        self.max_retry_delay = max_retry_delay
        self.sleep = sleep

    def _retry_with_backoff(self, operation: Callable[[], T], operation_name: str) -> T:
        """
        Execute an operation with exponential backoff retry.

        A rate limit that names a Retry-After delay waits that long (capped
        at max_retry_delay) instead of the current backoff step.

        Raises:
            RateLimitError: If retries are exhausted due to rate limits
            TransientDirectoryError: If retries are exhausted on transient errors
            Any other DirectoryError immediately
        """
        delay = self.initial_retry_delay

        for attempt in range(self.max_retries):
            try:
                return operation()

            except RateLimitError as e:
                if attempt >= self.max_retries - 1:
                    logger.error(
                        f"{operation_name} still rate limited after "
                        f"{self.max_retries} attempts"
                    )
                    raise
                wait = min(e.retry_after or delay, self.max_retry_delay)
                logger.warning(
                    f"{operation_name} rate limited, retrying in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                self.sleep(wait)
                delay = min(delay * 2, self.max_retry_delay)

            except TransientDirectoryError as e:
                if attempt >= self.max_retries - 1:
                    logger.error(
                        f"{operation_name} failed after {self.max_retries} attempts: {e}"
                    )
                    raise
                logger.warning(f"{operation_name} transient error ({e}), retrying in {delay:.1f}s")
                self.sleep(delay)
                delay = min(delay * 2, self.max_retry_delay)

        raise TransientDirectoryError(f"{operation_name} failed after all retries")

    def fetch_page(
        self, cursor: Optional[str] = None, page_token: Optional[str] = None
    ) -> DirectoryPage:
        return self._retry_with_backoff(
            lambda: self.client.fetch_page(cursor=cursor, page_token=page_token),
            f"{self.client.provider} fetch_page",
        )

    def get_contact(self, external_id: str) -> RawContact:
        return self._retry_with_backoff(
            lambda: self.client.get_contact(external_id),
            f"{self.client.provider} get_contact",
        )

    def create_contact(self, contact: LocalContact) -> str:
        return self._retry_with_backoff(
            lambda: self.client.create_contact(contact),
            f"{self.client.provider} create_contact",
        )

    def update_contact(self, external_id: str, contact: LocalContact) -> None:
        self._retry_with_backoff(
            lambda: self.client.update_contact(external_id, contact),
            f"{self.client.provider} update_contact",
        )

    def iter_pages(self, cursor: Optional[str] = None) -> Iterator[DirectoryPage]:
        """
        Yield pages until the stream ends.

        Raises:
            PaginationError: If a page token repeats, or the last page carries
                no sync cursor for a client that always issues one
        """
        seen_tokens: set[str] = set()
        page_token: Optional[str] = None

        while True:
            page = self.fetch_page(cursor=cursor, page_token=page_token)
            yield page

            if page.next_page_token:
                if page.next_page_token in seen_tokens:
                    raise PaginationError(
                        f"{self.client.provider} returned a repeated page token"
                    )
                seen_tokens.add(page.next_page_token)
                page_token = page.next_page_token
                continue

            if self.client.issues_sync_cursors and not page.next_sync_cursor:
                raise PaginationError(
                    f"{self.client.provider} page stream ended without a page "
                    f"token or sync cursor"
                )
            return

    def fetch_all(self, cursor: Optional[str] = None) -> FetchResult:
        """Walk every page and collect the results."""
        result = FetchResult()
        for page in self.iter_pages(cursor=cursor):
            result.page_count += 1
            result.records.extend(page.records)
            result.removed_external_ids.extend(page.removed_external_ids)
            if page.next_sync_cursor:
                result.next_sync_cursor = page.next_sync_cursor

        logger.info(
            f"Fetched {len(result.records)} {self.client.provider} contacts "
            f"in {result.page_count} page(s)"
        )
        return result
