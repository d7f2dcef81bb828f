"""
Shared fixtures for the contact_reconciler tests.

Provides an in-memory store, a scripted directory client and builders for
provider payloads.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import pytest

from contact_reconciler.api.base import CursorExpiredError, DirectoryError, DirectoryPage
from contact_reconciler.storage.db import ContactStore
from contact_reconciler.sync.normalizer import GoogleRawContact, MicrosoftRawContact
from contact_reconciler.sync.records import (
    PROVIDER_GOOGLE,
    Integration,
    LocalContact,
)
from contact_reconciler.utils.logging import ROOT_LOGGER_NAME

USER_ID = "user-1"
INTEGRATION_ID = "int-1"


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def google_person(
    external_id: str,
    first: str = "",
    last: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    company: Optional[str] = None,
    groups: tuple = (),
    updated: Optional[str] = None,
) -> GoogleRawContact:
    """Build a Google People API person payload."""
    person = {
        "resourceName": external_id,
        "etag": f"etag-{external_id}",
        "names": [{"givenName": first, "familyName": last}],
    }
    if email:
        person["emailAddresses"] = [{"value": email, "metadata": {"primary": True}}]
    if phone:
        person["phoneNumbers"] = [{"value": phone, "type": "mobile"}]
    if company:
        person["organizations"] = [{"name": company}]
    if groups:
        person["memberships"] = [
            {"contactGroupMembership": {"contactGroupResourceName": f"contactGroups/{g}"}}
            for g in groups
        ]
    if updated:
        person["metadata"] = {"sources": [{"type": "CONTACT", "updateTime": updated}]}
    return GoogleRawContact(person)


def graph_contact(
    external_id: str,
    first: str = "",
    last: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    folder: Optional[str] = None,
    categories: tuple = (),
) -> MicrosoftRawContact:
    """Build a Microsoft Graph contact payload."""
    contact = {
        "id": external_id,
        "givenName": first,
        "surname": last,
        "emailAddresses": [{"address": email, "name": first}] if email else [],
        "mobilePhone": phone,
        "businessPhones": [],
        "categories": list(categories),
    }
    if folder:
        contact["parentFolderId"] = folder
    return MicrosoftRawContact(contact)


class FakeDirectoryClient:
    """
    Scripted DirectoryClient.

    ``feeds`` maps a cursor (None for a full listing) to its list of pages.
    Page tokens are "<cursor>#<index>". Remote contacts used by get_contact
    live in ``remote``; create and update calls are recorded.
    """

    provider = PROVIDER_GOOGLE
    supports_write_back = True
    issues_sync_cursors = True

    def __init__(self, feeds=None, remote=None):
        self.feeds: dict = feeds or {}
        self.remote: dict = remote or {}
        self.expired_cursors: set = set()
        self.update_error: Optional[Exception] = None
        self.fetch_calls: list = []
        self.created: list = []
        self.updated: list = []

    def set_listing(self, records, cursor=None, next_cursor="sync-1", removed=()):
        """Script a single-page listing for a cursor."""
        self.feeds[cursor] = [
            DirectoryPage(
                records=list(records),
                next_sync_cursor=next_cursor,
                removed_external_ids=list(removed),
            )
        ]

    def set_pages(self, pages, cursor=None):
        """Script a multi-page listing; page tokens are filled in."""
        key = cursor or "full"
        for index, page in enumerate(pages[:-1]):
            page.next_page_token = f"{key}#{index + 1}"
        self.feeds[cursor] = list(pages)

    def fetch_page(self, cursor=None, page_token=None):
        self.fetch_calls.append((cursor, page_token))
        if cursor in self.expired_cursors:
            raise CursorExpiredError("Sync token expired")
        pages = self.feeds.get(cursor)
        if pages is None:
            raise DirectoryError(f"No listing scripted for cursor {cursor!r}")
        index = int(page_token.rsplit("#", 1)[1]) if page_token else 0
        return pages[index]

    def get_contact(self, external_id):
        return self.remote[external_id]

    def create_contact(self, contact):
        external_id = f"people/new-{len(self.created) + 1}"
        self.created.append((external_id, contact))
        return external_id

    def update_contact(self, external_id, contact):
        if self.update_error is not None:
            raise self.update_error
        self.updated.append((external_id, contact))


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo handler changes made by setup_logging() in a test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def store():
    """Initialized in-memory contact store."""
    store = ContactStore(":memory:")
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def integration(store):
    """Active Google integration without write-back."""
    return store.create_integration(
        Integration(id=INTEGRATION_ID, user_id=USER_ID, provider=PROVIDER_GOOGLE, name="Work")
    )


@pytest.fixture
def write_back_integration(store):
    """Active Google integration with write-back and last-write-wins."""
    return store.create_integration(
        Integration(
            id="int-wb",
            user_id=USER_ID,
            provider=PROVIDER_GOOGLE,
            name="Shared",
            write_back=True,
        )
    )


@pytest.fixture
def client():
    return FakeDirectoryClient()


def make_contact(
    contact_id: str,
    first: str = "",
    last: Optional[str] = None,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    company: Optional[str] = None,
    created_at: Optional[datetime] = None,
    user_id: str = USER_ID,
) -> LocalContact:
    created = created_at or utc(2024, 1, 1)
    return LocalContact(
        id=contact_id,
        user_id=user_id,
        first_name=first,
        last_name=last,
        email=email,
        phone=phone,
        company=company,
        created_at=created,
        updated_at=created,
    )
