"""
String normalization utilities for contact matching.

Provides the canonical forms used when comparing contacts across a
directory and the local contact set: names, company names, email
addresses and E.164 phone numbers.
"""

from __future__ import annotations

import re
import unicodedata

# Honorifics removed from names before comparison
NAME_TITLES = frozenset({"mr", "mrs", "ms", "dr", "prof"})

# Phone numbers shorter than this (digits only) are not usable for matching
MIN_PHONE_LENGTH = 7

# Country code assumed for 10-digit national numbers
DEFAULT_COUNTRY_CODE = "1"


def normalize_string(
    value: str,
    sort_words: bool = False,
    remove_spaces: bool = True,
    strip_punctuation: bool = True,
) -> str:
    """
    Normalize a string for comparison.

    Letters and digits from any script are kept; everything else is
    treated as punctuation.

    Args:
        value: String to normalize
        sort_words: If True, sort words alphabetically before joining.
        remove_spaces: If True, remove all spaces from the result.
                      If False, multiple spaces are collapsed to single space.
        strip_punctuation: If True, remove non-alphanumeric characters.

    Returns:
        Normalized lowercase string
    """
    if not value:
        return ""

    normalized = unicodedata.normalize("NFKC", value).casefold()

    if strip_punctuation:
        normalized = "".join(
            c if (c.isalnum() or c.isspace()) else " " for c in normalized
        )

    normalized = re.sub(r"\s+", " ", normalized).strip()

    if sort_words:
        normalized = " ".join(sorted(normalized.split()))
        if remove_spaces:
            normalized = normalized.replace(" ", "")
    elif remove_spaces:
        normalized = normalized.replace(" ", "")

    return normalized


def normalize_name(name: str | None) -> str:
    """
    Normalize a person's name for edit-distance comparison.

    Lowercases, strips punctuation, drops titles (Mr, Mrs, Ms, Dr, Prof)
    and collapses whitespace. "Dr. Jane  O'Neil" becomes "jane o neil".
    """
    if not name:
        return ""
    words = normalize_string(name, remove_spaces=False).split()
    return " ".join(w for w in words if w not in NAME_TITLES)


def normalize_company(company: str | None) -> str:
    """Normalize a company name (same as names, without title removal)."""
    if not company:
        return ""
    return normalize_string(company, remove_spaces=False)


def full_name(first_name: str | None, last_name: str | None) -> str:
    """Join first and last name, skipping missing parts."""
    return " ".join(part for part in (first_name, last_name) if part)


def normalize_email(email: str | None) -> str:
    """Normalize an email address for comparison (trimmed, lowercase)."""
    if not email:
        return ""
    return email.strip().lower()


def normalize_phone(
    phone: str | None, default_country_code: str = DEFAULT_COUNTRY_CODE
) -> str:
    """
    Normalize a phone number to E.164 form (``+<country><number>``).

    Rules:
        - A leading ``+`` keeps the number as already international.
        - A leading ``00`` international prefix is replaced with ``+``.
        - A 10-digit national number gets the default country code.
        - An 11-digit number starting with the default country code is
          treated as already carrying it.

    Returns an empty string when the value holds fewer than
    MIN_PHONE_LENGTH digits (text in phone fields, extensions, etc.).

    Args:
        phone: Raw phone number as entered by a user or provider
        default_country_code: Country calling code for national numbers

    Returns:
        E.164 formatted phone number, or "" if unusable
    """
    if not phone:
        return ""

    stripped = phone.strip()
    digits = re.sub(r"\D", "", stripped)
    if len(digits) < MIN_PHONE_LENGTH:
        return ""

    if stripped.startswith("+"):
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    if len(digits) == 10:
        return f"+{default_country_code}{digits}"
    # 11-digit "1XXXXXXXXXX" and other numbers already carrying a country code
    return f"+{digits}"


def is_valid_phone(normalized_phone: str) -> bool:
    """Check whether a normalized phone number is usable for matching."""
    return bool(normalized_phone) and (
        len(normalized_phone.lstrip("+")) >= MIN_PHONE_LENGTH
    )
