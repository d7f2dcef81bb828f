"""
Canonical record normalizer.

Maps provider-native contact payloads into ContactRecord. Provider payloads
are wrapped in a small tagged union (GoogleRawContact | MicrosoftRawContact)
that only this module and the directory clients deal with; everything
downstream sees ContactRecord.

No validation happens here: a malformed payload is passed through and fails
later in the pipeline, attributed to its external id.
"""

from dataclasses import dataclass, field
from typing import Any, Union

from contact_reconciler.sync.records import (
    PROVIDER_GOOGLE,
    PROVIDER_MICROSOFT,
    ContactRecord,
    LocalContact,
    parse_timestamp,
)

# Prefix Google puts on contact group resource names
GOOGLE_GROUP_PREFIX = "contactGroups/"

# Google phone types, most preferred first
GOOGLE_PHONE_PREFERENCE = ("mobile", "work")


@dataclass(frozen=True)
class GoogleRawContact:
    """A person resource from the Google People API."""

    payload: dict[str, Any] = field(default_factory=dict)
    provider: str = PROVIDER_GOOGLE


@dataclass(frozen=True)
class MicrosoftRawContact:
    """A contact resource from Microsoft Graph."""

    payload: dict[str, Any] = field(default_factory=dict)
    provider: str = PROVIDER_MICROSOFT


RawContact = Union[GoogleRawContact, MicrosoftRawContact]


def normalize(raw: RawContact) -> ContactRecord:
    """
    Normalize a raw provider contact into a ContactRecord.

    Args:
        raw: GoogleRawContact or MicrosoftRawContact

    Returns:
        The canonical ContactRecord

    Raises:
        TypeError: If raw is not one of the known provider variants
    """
    if isinstance(raw, GoogleRawContact):
        return normalize_google(raw.payload)
    if isinstance(raw, MicrosoftRawContact):
        return normalize_microsoft(raw.payload)
    raise TypeError(f"Unsupported raw contact type: {type(raw).__name__}")


def _first_primary(entries: list[dict[str, Any]], value_key: str) -> tuple[Any, list]:
    """Split entries into (primary value, other values)."""
    values = [e.get(value_key) for e in entries if e.get(value_key)]
    if not values:
        return None, []

    primary = next(
        (
            e.get(value_key)
            for e in entries
            if e.get(value_key) and e.get("metadata", {}).get("primary")
        ),
        values[0],
    )
    others = [v for v in values if v != primary]
    return primary, others


def normalize_google(person: dict[str, Any]) -> ContactRecord:
    """
    Normalize a Google People API person resource.

    Example input:
        {
            'resourceName': 'people/c123',
            'etag': '%Eg...',
            'names': [{'givenName': 'John', 'familyName': 'Doe'}],
            'emailAddresses': [{'value': 'john@example.com',
                                'metadata': {'primary': True}}],
            'phoneNumbers': [{'value': '+1 555 0100', 'type': 'mobile'}],
            'organizations': [{'name': 'Acme', 'title': 'Engineer'}],
            'memberships': [{'contactGroupMembership': {
                'contactGroupResourceName': 'contactGroups/friends'}}],
            'metadata': {'sources': [{'updateTime': '2024-01-01T00:00:00Z'}]}
        }
    """
    names = person.get("names") or [{}]
    name = next((n for n in names if n.get("metadata", {}).get("primary")), names[0])

    email, alternate_emails = _first_primary(
        person.get("emailAddresses") or [], "value"
    )

    phone = None
    phones = [p for p in person.get("phoneNumbers") or [] if p.get("value")]
    for preferred in GOOGLE_PHONE_PREFERENCE:
        phone = next(
            (p["value"] for p in phones if (p.get("type") or "").lower() == preferred),
            None,
        )
        if phone:
            break
    if phone is None and phones:
        phone = phones[0]["value"]

    organization = (person.get("organizations") or [{}])[0]

    tags = []
    for membership in person.get("memberships") or []:
        group = membership.get("contactGroupMembership") or {}
        resource = group.get("contactGroupResourceName") or group.get("contactGroupId")
        if resource:
            tags.append(resource.removeprefix(GOOGLE_GROUP_PREFIX))

    person_metadata = person.get("metadata") or {}
    sources = person_metadata.get("sources") or []
    modified_at = parse_timestamp(sources[0].get("updateTime")) if sources else None

    metadata: dict[str, Any] = {
        "source": PROVIDER_GOOGLE,
        "resourceName": person.get("resourceName"),
        "etag": person.get("etag"),
    }
    if alternate_emails:
        metadata["alternateEmails"] = alternate_emails
    if name.get("displayName"):
        metadata["displayName"] = name["displayName"]

    return ContactRecord(
        external_id=person.get("resourceName") or "",
        first_name=name.get("givenName") or "",
        last_name=name.get("familyName"),
        email=email,
        phone=phone,
        company=organization.get("name"),
        position=organization.get("title"),
        tags=tags,
        metadata=metadata,
        modified_at=modified_at,
    )


def normalize_microsoft(contact: dict[str, Any]) -> ContactRecord:
    """
    Normalize a Microsoft Graph contact resource.

    Graph has no primary marker on email addresses, so the first one is
    primary. Phone preference: mobilePhone, then businessPhones, then
    homePhones.
    """
    addresses = [
        e.get("address") for e in contact.get("emailAddresses") or [] if e.get("address")
    ]
    email = addresses[0] if addresses else None

    phone = contact.get("mobilePhone")
    if not phone:
        for key in ("businessPhones", "homePhones"):
            numbers = [n for n in contact.get(key) or [] if n]
            if numbers:
                phone = numbers[0]
                break

    metadata: dict[str, Any] = {"source": PROVIDER_MICROSOFT}
    if addresses[1:]:
        metadata["alternateEmails"] = addresses[1:]
    for src, dst in (
        ("parentFolderId", "folderId"),
        ("displayName", "displayName"),
        ("changeKey", "changeKey"),
    ):
        if contact.get(src):
            metadata[dst] = contact[src]

    return ContactRecord(
        external_id=contact.get("id") or "",
        first_name=contact.get("givenName") or "",
        last_name=contact.get("surname"),
        email=email,
        phone=phone or None,
        company=contact.get("companyName"),
        position=contact.get("jobTitle"),
        tags=list(contact.get("categories") or []),
        metadata=metadata,
        modified_at=parse_timestamp(contact.get("lastModifiedDateTime")),
    )


def to_google_payload(contact: LocalContact) -> dict[str, Any]:
    """Render a local contact as a Google People API person body."""
    payload: dict[str, Any] = {
        "names": [
            {"givenName": contact.first_name or "", "familyName": contact.last_name or ""}
        ]
    }
    if contact.email:
        payload["emailAddresses"] = [{"value": contact.email}]
    if contact.phone:
        payload["phoneNumbers"] = [{"value": contact.phone, "type": "mobile"}]
    if contact.company or contact.position:
        payload["organizations"] = [
            {"name": contact.company or "", "title": contact.position or ""}
        ]
    return payload


def to_microsoft_payload(contact: LocalContact) -> dict[str, Any]:
    """Render a local contact as a Microsoft Graph contact body."""
    payload: dict[str, Any] = {
        "givenName": contact.first_name or "",
        "surname": contact.last_name or "",
        "companyName": contact.company or "",
        "jobTitle": contact.position or "",
        "categories": list(contact.tags),
    }
    if contact.email:
        payload["emailAddresses"] = [
            {"address": contact.email, "name": contact.full_name or contact.email}
        ]
    if contact.phone:
        payload["mobilePhone"] = contact.phone
    return payload
