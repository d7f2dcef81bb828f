"""
Similarity matcher for directory records against local contacts.

Implements a two-tier strategy:
- Exact tier: shared normalized email, or shared E.164 phone number.
  Similarity is 1.0 regardless of how the names compare.
- Fuzzy tier: Levenshtein similarity of the normalized full names,
  blended 70/30 with company similarity when both sides have a company.

A fuzzy score at or above the threshold (0.85 by default, inclusive) is a
match; anything below is treated as a different person.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from rapidfuzz.distance import Levenshtein

from contact_reconciler.sync.records import ContactRecord, LocalContact
from contact_reconciler.utils.normalization import (
    DEFAULT_COUNTRY_CODE,
    is_valid_phone,
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_phone,
)

logger = logging.getLogger(__name__)

# Default thresholds and weights
DEFAULT_FUZZY_THRESHOLD = 0.85
DEFAULT_NAME_WEIGHT = 0.7
DEFAULT_COMPANY_WEIGHT = 0.3

# Float tolerance so 1 - 3/20 counts as exactly 0.85
SCORE_EPSILON = 1e-9


class MatchType(Enum):
    """How a match was determined."""

    EXACT = "EXACT"  # Shared email or phone
    FUZZY = "FUZZY"  # Name (and company) similarity above threshold
    POTENTIAL = "POTENTIAL"  # Similar name, but the two emails disagree


@dataclass
class MatchResult:
    """A directory record matched to an existing local contact."""

    imported_record: ContactRecord
    existing_contact: LocalContact
    similarity: float
    match_type: MatchType
    matched_fields: list[str] = field(default_factory=list)

    @property
    def is_exact(self) -> bool:
        return self.match_type == MatchType.EXACT

    def __str__(self) -> str:
        return (
            f"{self.imported_record} -> {self.existing_contact} "
            f"({self.match_type.value}, {self.similarity:.3f}, "
            f"fields={','.join(self.matched_fields)})"
        )


@dataclass
class MatchConfig:
    """Configuration for the similarity matcher."""

    # Minimum fuzzy score (inclusive) for a match
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD

    # Weights used when both sides have a company
    name_weight: float = DEFAULT_NAME_WEIGHT
    company_weight: float = DEFAULT_COMPANY_WEIGHT

    # Country code applied to national phone numbers
    default_country_code: str = DEFAULT_COUNTRY_CODE

    def __post_init__(self) -> None:
        if not 0.0 <= self.fuzzy_threshold <= 1.0:
            raise ValueError(
                f"fuzzy_threshold must be between 0 and 1, got {self.fuzzy_threshold}"
            )
        if abs(self.name_weight + self.company_weight - 1.0) > SCORE_EPSILON:
            raise ValueError("name_weight and company_weight must sum to 1.0")


def levenshtein_similarity(a: str, b: str) -> float:
    """
    Edit-distance similarity: 1 - distance / max(len(a), len(b)).

    Uses the classic unit-cost edit distance (insert, delete, substitute;
    no transpositions). Two empty strings have similarity 0.0 since there
    is nothing to compare.

    Example:
        >>> levenshtein_similarity("jon doe", "john doe")
        0.875
    """
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    distance = Levenshtein.distance(a, b)
    return min(1.0, max(0.0, 1.0 - distance / longest))


class SimilarityMatcher:
    """
    Scores directory records against local contacts.

    Usage:
        matcher = SimilarityMatcher()
        score = matcher.score(record, contact)
        result = matcher.match(record, contact)
        if result:
            print(result.match_type, result.similarity)
    """

    def __init__(self, config: Optional[MatchConfig] = None):
        self.config = config or MatchConfig()

    def accepts(self, score: float) -> bool:
        """Whether a fuzzy score clears the threshold (inclusive)."""
        return score >= self.config.fuzzy_threshold - SCORE_EPSILON

    def exact_fields(self, target: ContactRecord, candidate: LocalContact) -> list[str]:
        """Return the identifier fields (email, phone) both sides share."""
        fields = []

        email_a = normalize_email(target.email)
        if email_a and email_a == normalize_email(candidate.email):
            fields.append("email")

        phone_a = normalize_phone(target.phone, self.config.default_country_code)
        phone_b = normalize_phone(candidate.phone, self.config.default_country_code)
        if is_valid_phone(phone_a) and phone_a == phone_b:
            fields.append("phone")

        return fields

    def identity_keys(self, contact: ContactRecord | LocalContact) -> set[str]:
        """
        Keys under which exact matches are indexed.

        Two contacts share a key exactly when exact_fields() reports a
        shared email or phone for them.
        """
        keys = set()
        email = normalize_email(contact.email)
        if email:
            keys.add(f"email:{email}")
        phone = normalize_phone(contact.phone, self.config.default_country_code)
        if is_valid_phone(phone):
            keys.add(f"phone:{phone}")
        return keys

    def name_similarity(
        self,
        target: ContactRecord,
        candidate: LocalContact,
        target_name: Optional[str] = None,
        candidate_name: Optional[str] = None,
    ) -> float:
        """Similarity of the normalized full names (already normalized names may be passed)."""
        if target_name is None:
            target_name = normalize_name(target.full_name)
        if candidate_name is None:
            candidate_name = normalize_name(candidate.full_name)
        return levenshtein_similarity(target_name, candidate_name)

    def fuzzy_score(
        self,
        target: ContactRecord,
        candidate: LocalContact,
        target_company: Optional[str] = None,
        candidate_company: Optional[str] = None,
        target_name: Optional[str] = None,
        candidate_name: Optional[str] = None,
    ) -> float:
        """Name similarity, blended with company similarity when both exist."""
        name_score = self.name_similarity(target, candidate, target_name, candidate_name)

        company_a = normalize_company(target_company)
        company_b = normalize_company(candidate_company)
        if company_a and company_b:
            company_score = levenshtein_similarity(company_a, company_b)
            return (
                self.config.name_weight * name_score
                + self.config.company_weight * company_score
            )
        return name_score

    def score(
        self,
        target: ContactRecord,
        candidate: LocalContact,
        target_company: Optional[str] = None,
        candidate_company: Optional[str] = None,
    ) -> float:
        """
        Score a record against a local contact, in [0, 1].

        Args:
            target: The incoming directory record
            candidate: The existing local contact
            target_company: Company to compare for the record (defaults to
                target.company)
            candidate_company: Company to compare for the contact (defaults to
                candidate.company)

        Returns:
            1.0 for an exact identifier match, else the fuzzy score
        """
        if self.exact_fields(target, candidate):
            return 1.0
        return self.fuzzy_score(
            target,
            candidate,
            target.company if target_company is None else target_company,
            candidate.company if candidate_company is None else candidate_company,
        )

    def match(
        self, target: ContactRecord, candidate: LocalContact
    ) -> Optional[MatchResult]:
        """
        Classify a record/contact pair.

        Returns:
            MatchResult (EXACT, FUZZY or POTENTIAL), or None when the pair
            scores below the threshold
        """
        exact = self.exact_fields(target, candidate)
        if exact:
            return MatchResult(
                imported_record=target,
                existing_contact=candidate,
                similarity=1.0,
                match_type=MatchType.EXACT,
                matched_fields=exact,
            )
        return self.fuzzy_match(target, candidate)

    def fuzzy_match(
        self,
        target: ContactRecord,
        candidate: LocalContact,
        target_name: Optional[str] = None,
        candidate_name: Optional[str] = None,
    ) -> Optional[MatchResult]:
        """
        The fuzzy tier of match(), for pairs known to share no identifier.

        Normalized names may be passed in when the caller already has them.
        """
        name_score = self.name_similarity(target, candidate, target_name, candidate_name)
        similarity = self.fuzzy_score(
            target,
            candidate,
            target.company,
            candidate.company,
            target_name=target_name,
            candidate_name=candidate_name,
        )
        if not self.accepts(similarity):
            return None

        matched_fields = ["name"]
        if normalize_company(target.company) and normalize_company(candidate.company):
            matched_fields.append("company")

        email_a = normalize_email(target.email)
        email_b = normalize_email(candidate.email)
        match_type = (
            MatchType.POTENTIAL
            if email_a and email_b and email_a != email_b
            else MatchType.FUZZY
        )

        logger.debug(
            f"Fuzzy {match_type.value} match {target} ~ {candidate}: "
            f"name={name_score:.3f} score={similarity:.3f}"
        )
        return MatchResult(
            imported_record=target,
            existing_contact=candidate,
            similarity=similarity,
            match_type=match_type,
            matched_fields=matched_fields,
        )
