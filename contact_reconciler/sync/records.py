"""
Contact data model shared by the reconciliation components.

Defines:
- ContactRecord: a directory contact after normalization (ephemeral)
- LocalContact: a contact owned by the local store
- IntegrationLink: the join between a local contact and a directory entry
- Integration: a user's connection to one directory
- SyncCursor: an integration's incremental-sync position
- Timestamp helpers used throughout the package
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from contact_reconciler.utils.normalization import full_name

# Source marker for contacts created by hand rather than by an import
SOURCE_MANUAL = "MANUAL"

# Supported directory providers (also used as LocalContact.source values)
PROVIDER_GOOGLE = "GOOGLE"
PROVIDER_MICROSOFT = "MICROSOFT"
PROVIDERS = (PROVIDER_GOOGLE, PROVIDER_MICROSOFT)

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def new_id() -> str:
    """Generate an identifier for contacts and integrations."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so naive and aware values compare."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a provider or store timestamp.

    Accepts datetimes, ISO-8601 strings with a 'Z' suffix or offset, and
    fractional seconds longer than microseconds (Graph emits 7 digits).
    Unparseable values yield None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str):
        return None
    text = _FRACTION_RE.sub(r".\1", value.strip().replace("Z", "+00:00"))
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime as ISO-8601 UTC text for storage."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()


@dataclass
class ContactRecord:
    """
    A directory contact in canonical form.

    Produced fresh by the normalizer for every fetch and never persisted
    as-is.

    Attributes:
        external_id: Provider's stable per-contact identifier
        first_name: Given name (may be empty for malformed payloads)
        last_name: Family name
        email: Primary email address
        phone: Preferred phone number (mobile over business)
        company: Organization name
        position: Job title
        tags: Provider labels, categories or groups, copied verbatim
        metadata: Provider-specific extras (alternateEmails, folderId, ...)
        modified_at: Provider's last-modified timestamp, when reported
    """

    external_id: str
    first_name: str = ""
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    modified_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return full_name(self.first_name, self.last_name)

    def __str__(self) -> str:
        label = self.full_name or self.email or self.phone or "(unnamed)"
        return f"{label} [{self.external_id}]"


@dataclass
class LocalContact:
    """
    A contact owned by the local store.

    Created by the reconciliation pipeline on "new" decisions and updated in
    place on "update" decisions. Sync never deletes a local contact; a
    provider-reported removal sets ``deleted_at``.
    """

    id: str
    user_id: str
    first_name: str = ""
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    position: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    source: str = SOURCE_MANUAL
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return full_name(self.first_name, self.last_name)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def field_values(self, fields: tuple[str, ...]) -> dict[str, Any]:
        """Return the named attributes as a dict."""
        return {name: getattr(self, name) for name in fields}

    def __str__(self) -> str:
        label = self.full_name or self.email or self.phone or "(unnamed)"
        return f"{label} <{self.id}>"


@dataclass
class IntegrationLink:
    """
    Join between a local contact and its directory entry.

    Unique on (integration_id, external_id). Deleted en masse when the
    integration is disconnected; the local contact survives.
    """

    integration_id: str
    contact_id: str
    external_id: str
    metadata: dict[str, Any] = field(default_factory=dict)
    last_synced_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class Integration:
    """
    A user's connection to one external directory.

    Attributes:
        id: Integration identifier
        user_id: Owner of the local contact set
        provider: PROVIDER_GOOGLE or PROVIDER_MICROSOFT
        name: Human-readable label
        conflict_strategy: Conflict strategy value used for linked contacts
        write_back: Whether local edits are pushed back to the directory
        is_active: False once disconnected
    """

    id: str
    user_id: str
    provider: str
    name: str = ""
    conflict_strategy: str = "last_write_wins"
    write_back: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None


@dataclass
class SyncCursor:
    """
    A directory's incremental-sync position for one integration.

    ``cursor`` is opaque: a Google sync token or a Graph delta link.
    """

    integration_id: str
    cursor: Optional[str] = None
    last_sync_at: Optional[datetime] = None
