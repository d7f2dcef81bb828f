"""
Microsoft Graph directory client for Microsoft 365 / Outlook contacts.

Uses the contacts delta query: the first listing walks @odata.nextLink pages
and ends with an @odata.deltaLink, which is stored as the sync cursor. Items
carrying "@removed" are reported as removals.
"""

import logging
from typing import Any, Optional

import requests

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
from contact_reconciler.sync.normalizer import MicrosoftRawContact, to_microsoft_payload
from contact_reconciler.sync.records import PROVIDER_MICROSOFT, LocalContact

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

# Contact properties requested on the initial delta query
CONTACT_SELECT = ",".join(
    [
        "id",
        "givenName",
        "surname",
        "displayName",
        "emailAddresses",
        "mobilePhone",
        "businessPhones",
        "homePhones",
        "companyName",
        "jobTitle",
        "categories",
        "parentFolderId",
        "lastModifiedDateTime",
        "changeKey",
    ]
)

DEFAULT_PAGE_SIZE = 100
DEFAULT_TIMEOUT = 30

# Graph error codes meaning the delta link can no longer be used
EXPIRED_DELTA_CODES = ("syncStateNotFound", "syncStateInvalid", "resyncRequired")

logger = logging.getLogger(__name__)


def _error_code(response: requests.Response) -> str:
    try:
        return (response.json().get("error") or {}).get("code", "")
    except ValueError:
        return ""


def translate_response_error(
    response: requests.Response, operation: str
) -> DirectoryError:
    """Map a failed Graph response onto the directory error taxonomy."""
    status = response.status_code
    code = _error_code(response)
    message = f"{operation} failed with status {status}: {code or response.reason}"

    if status == 429 or (status == 503 and response.headers.get("Retry-After")):
        retry_after = response.headers.get("Retry-After")
        try:
            delay = float(retry_after) if retry_after else None
        except ValueError:
            delay = None
        return RateLimitError(message, retry_after=delay)
    if status == 401:
        return AuthExpiredError(message)
    if status == 410 or code in EXPIRED_DELTA_CODES:
        return CursorExpiredError("Delta link expired. A full sync is required.")
    if status == 404:
        return RemoteContactNotFoundError(message)
    if status >= 500:
        return TransientDirectoryError(message)
    return DirectoryError(message)


class MicrosoftGraphClient:
    """
    DirectoryClient for Microsoft 365 contacts.

    Attributes:
        token_provider: Source of a valid bearer token
        folder_id: Restrict listing to one contact folder (None = default folder)

    Usage:
        client = MicrosoftGraphClient(token_provider)
        page = client.fetch_page()
        while page.next_page_token:
            page = client.fetch_page(page_token=page.next_page_token)
        delta_link = page.next_sync_cursor
    """

    provider = PROVIDER_MICROSOFT
    supports_write_back = True
    issues_sync_cursors = True

    def __init__(
        self,
        token_provider: TokenProvider,
        folder_id: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.token_provider = token_provider
        self.folder_id = folder_id
        self.page_size = page_size
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(
        self,
        method: str,
        url: str,
        operation: str,
        params: Optional[dict[str, Any]] = None,
        json_data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.token_provider.get_token()}",
            "Content-Type": "application/json",
            "Prefer": f"odata.maxpagesize={self.page_size}",
        }
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientDirectoryError(f"{operation} network error: {e}") from e
        except requests.RequestException as e:
            raise DirectoryError(f"{operation} request failed: {e}") from e

        if response.status_code >= 400:
            raise translate_response_error(response, operation)
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _delta_url(self) -> str:
        if self.folder_id:
            return f"{GRAPH_BASE_URL}/me/contactFolders/{self.folder_id}/contacts/delta"
        return f"{GRAPH_BASE_URL}/me/contacts/delta"

    def fetch_page(
        self, cursor: Optional[str] = None, page_token: Optional[str] = None
    ) -> DirectoryPage:
        """
        Fetch one delta page.

        Args:
            cursor: @odata.deltaLink from a previous listing
            page_token: @odata.nextLink from the previous page

        Returns:
            DirectoryPage with removals split out of the value list
        """
        params = None
        if page_token:
            url = page_token
        elif cursor:
            url = cursor
        else:
            url = self._delta_url()
            params = {"$select": CONTACT_SELECT}

        logger.debug(
            f"Fetching Graph contacts delta (incremental={bool(cursor)}, "
            f"page_token={bool(page_token)})"
        )
        data = self._request("GET", url, "list_contacts", params=params)

        records = []
        removed = []
        for item in data.get("value") or []:
            if "@removed" in item:
                removed.append(item.get("id"))
            else:
                records.append(MicrosoftRawContact(item))

        return DirectoryPage(
            records=records,
            next_page_token=data.get("@odata.nextLink"),
            next_sync_cursor=data.get("@odata.deltaLink"),
            removed_external_ids=[r for r in removed if r],
        )

    def list_folders(self) -> list[dict[str, Any]]:
        """List the user's contact folders (id, displayName, parentFolderId)."""
        folders: list[dict[str, Any]] = []
        url: Optional[str] = f"{GRAPH_BASE_URL}/me/contactFolders"
        params: Optional[dict[str, Any]] = {"$select": "id,displayName,parentFolderId"}
        while url:
            data = self._request("GET", url, "list_folders", params=params)
            folders.extend(data.get("value") or [])
            url = data.get("@odata.nextLink")
            params = None
        return folders

    def get_contact(self, external_id: str) -> MicrosoftRawContact:
        data = self._request(
            "GET",
            f"{GRAPH_BASE_URL}/me/contacts/{external_id}",
            f"get_contact({external_id})",
            params={"$select": CONTACT_SELECT},
        )
        return MicrosoftRawContact(data)

    def create_contact(self, contact: LocalContact) -> str:
        url = (
            f"{GRAPH_BASE_URL}/me/contactFolders/{self.folder_id}/contacts"
            if self.folder_id
            else f"{GRAPH_BASE_URL}/me/contacts"
        )
        data = self._request(
            "POST", url, "create_contact", json_data=to_microsoft_payload(contact)
        )
        logger.info(f"Created Microsoft contact: {data.get('id')}")
        return data["id"]

    def update_contact(self, external_id: str, contact: LocalContact) -> None:
        self._request(
            "PATCH",
            f"{GRAPH_BASE_URL}/me/contacts/{external_id}",
            f"update_contact({external_id})",
            json_data=to_microsoft_payload(contact),
        )
        logger.info(f"Updated Microsoft contact: {external_id}")

    def __repr__(self) -> str:
        return f"MicrosoftGraphClient(folder_id={self.folder_id!r})"
