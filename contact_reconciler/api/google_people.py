"""
Google People API directory client.

Provides page-at-a-time access to a user's Google contacts:
- Full listing with a sync token requested on the last page
- Incremental listing from a stored sync token (deleted persons become
  removals)
- Single-contact get, create and update for write-back

HTTP failures are translated into the directory error taxonomy; retrying is
left to the fetch layer.
"""

import logging
from typing import Any, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from contact_reconciler.api.base import (
    AuthExpiredError,
    CursorExpiredError,
    DirectoryError,
    DirectoryPage,
    RateLimitError,
    RemoteContactNotFoundError,
    TransientDirectoryError,
)
from contact_reconciler.auth.tokens import TokenProvider
from contact_reconciler.sync.normalizer import GoogleRawContact, to_google_payload
from contact_reconciler.sync.records import PROVIDER_GOOGLE, LocalContact

# Person fields to request from the API
PERSON_FIELDS = ",".join(
    [
        "names",
        "emailAddresses",
        "phoneNumbers",
        "organizations",
        "memberships",
        "metadata",
    ]
)

# Fields written when pushing a local contact
UPDATE_PERSON_FIELDS = "names,emailAddresses,phoneNumbers,organizations"

# Maximum number of contacts per page when listing (API max is 1000)
DEFAULT_PAGE_SIZE = 100

logger = logging.getLogger(__name__)


def translate_http_error(error: HttpError, operation: str) -> DirectoryError:
    """
    Map a googleapiclient HttpError onto the directory error taxonomy.

    429 and quota 403s are rate limits, 401 is auth expiry, 410 (and
    EXPIRED_SYNC_TOKEN) means the sync token is no longer valid, 404 is a
    missing contact and 5xx is transient.
    """
    status = error.resp.status
    content = error.content.decode("utf-8", "replace") if error.content else ""
    message = f"{operation} failed with status {status}: {error}"

    if status == 429 or (
        status == 403 and ("rateLimitExceeded" in content or "quota" in content.lower())
    ):
        retry_after = error.resp.get("retry-after")
        return RateLimitError(
            message, retry_after=float(retry_after) if retry_after else None
        )
    if status == 401:
        return AuthExpiredError(message)
    if status == 410 or "EXPIRED_SYNC_TOKEN" in content:
        return CursorExpiredError("Sync token expired. A full sync is required.")
    if status == 404:
        return RemoteContactNotFoundError(message)
    if status >= 500:
        return TransientDirectoryError(message)
    return DirectoryError(message)


class GooglePeopleClient:
    """
    DirectoryClient for Google Contacts.

    Attributes:
        token_provider: Source of a valid bearer token
        page_size: Contacts per page

    Usage:
        client = GooglePeopleClient(token_provider)
        page = client.fetch_page()                  # first page, full list
        page = client.fetch_page(page_token=page.next_page_token)
        changes = client.fetch_page(cursor=sync_token)
    """

    provider = PROVIDER_GOOGLE
    supports_write_back = True
    issues_sync_cursors = True

    def __init__(self, token_provider: TokenProvider, page_size: int = DEFAULT_PAGE_SIZE):
        self.token_provider = token_provider
        self.page_size = min(page_size, 1000)
        self._service: Any = None
        self._service_token: Optional[str] = None

    @property
    def service(self) -> Any:
        """
        People API service resource, rebuilt whenever the token changes.

        Raises:
            DirectoryError: If the service cannot be created
        """
        token = self.token_provider.get_token()
        if self._service is None or token != self._service_token:
            try:
                self._service = build(
                    "people",
                    "v1",
                    credentials=Credentials(token=token),
                    cache_discovery=False,
                )
                self._service_token = token
                logger.debug("Created People API service")
            except Exception as e:
                logger.error(f"Failed to create People API service: {e}")
                raise DirectoryError(f"Failed to create API service: {e}") from e
        return self._service

    def _execute(self, request: Any, operation: str) -> Any:
        try:
            return request.execute()
        except HttpError as e:
            raise translate_http_error(e, operation) from e

    def fetch_page(
        self, cursor: Optional[str] = None, page_token: Optional[str] = None
    ) -> DirectoryPage:
        """
        Fetch one page of connections.

        Args:
            cursor: Sync token from a previous listing (incremental mode)
            page_token: nextPageToken from the previous page

        Returns:
            DirectoryPage; persons flagged deleted are reported as removals
        """
        params: dict[str, Any] = {
            "resourceName": "people/me",
            "personFields": PERSON_FIELDS,
            "pageSize": self.page_size,
            "requestSyncToken": True,
        }
        if cursor:
            params["syncToken"] = cursor
        if page_token:
            params["pageToken"] = page_token

        logger.debug(
            f"Listing Google contacts (incremental={bool(cursor)}, "
            f"page_token={bool(page_token)})"
        )
        response = self._execute(
            self.service.people().connections().list(**params), "list_contacts"
        )

        records = []
        removed = list(response.get("deletedContactResourceNames") or [])
        for person in response.get("connections") or []:
            if (person.get("metadata") or {}).get("deleted"):
                removed.append(person.get("resourceName"))
            else:
                records.append(GoogleRawContact(person))

        return DirectoryPage(
            records=records,
            next_page_token=response.get("nextPageToken"),
            next_sync_cursor=response.get("nextSyncToken"),
            removed_external_ids=[r for r in removed if r],
        )

    def get_contact(self, external_id: str) -> GoogleRawContact:
        request = self.service.people().get(
            resourceName=external_id, personFields=PERSON_FIELDS
        )
        return GoogleRawContact(self._execute(request, f"get_contact({external_id})"))

    def create_contact(self, contact: LocalContact) -> str:
        request = self.service.people().createContact(
            body=to_google_payload(contact), personFields=PERSON_FIELDS
        )
        response = self._execute(request, "create_contact")
        logger.info(f"Created Google contact: {response.get('resourceName')}")
        return response["resourceName"]

    def update_contact(
        self, external_id: str, contact: LocalContact, etag: Optional[str] = None
    ) -> None:
        """
        Update a person. The People API requires the current etag, which is
        fetched when not supplied.
        """
        if etag is None:
            etag = self.get_contact(external_id).payload.get("etag")

        body = to_google_payload(contact)
        body["etag"] = etag
        request = self.service.people().updateContact(
            resourceName=external_id,
            body=body,
            updatePersonFields=UPDATE_PERSON_FIELDS,
            personFields=PERSON_FIELDS,
        )
        self._execute(request, f"update_contact({external_id})")
        logger.info(f"Updated Google contact: {external_id}")

    def __repr__(self) -> str:
        return f"GooglePeopleClient(page_size={self.page_size})"
