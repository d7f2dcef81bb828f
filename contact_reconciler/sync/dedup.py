"""
Deduplication engine.

Runs the similarity matcher across a page of directory records against the
user's local contact set and picks at most one match per record. Records
without a match above the threshold are implicitly new.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from contact_reconciler.sync.matcher import MatchResult, MatchType, SimilarityMatcher
from contact_reconciler.sync.records import ContactRecord, LocalContact, ensure_utc
from contact_reconciler.utils.logging import get_matching_logger
from contact_reconciler.utils.normalization import normalize_name

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class DedupSummary:
    """Aggregate classification counts for previews."""

    total: int = 0
    new: int = 0
    exact: int = 0
    potential: int = 0

    @property
    def duplicates(self) -> int:
        return self.exact + self.potential

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "new": self.new,
            "exact": self.exact,
            "potential": self.potential,
        }


def _creation_order(contact: LocalContact) -> tuple[datetime, str]:
    return (ensure_utc(contact.created_at) or _EPOCH, contact.id)


def _outranks(result: MatchResult, best: Optional[MatchResult]) -> bool:
    """Exact beats fuzzy, then higher similarity, then the earlier-created contact."""
    if best is None:
        return True
    rank = (result.match_type == MatchType.EXACT, result.similarity)
    best_rank = (best.match_type == MatchType.EXACT, best.similarity)
    if rank != best_rank:
        return rank > best_rank
    return _creation_order(result.existing_contact) < _creation_order(best.existing_contact)


class CandidateIndex:
    """
    Local contacts prepared for matching.

    Contacts are indexed by normalized email and phone so exact matches are
    looked up rather than scanned for, and each contact's normalized name is
    cached for the fuzzy tier. Soft-deleted contacts are never indexed.
    """

    def __init__(self, matcher: SimilarityMatcher, contacts: Iterable[LocalContact] = ()):
        self.matcher = matcher
        self._contacts: dict[str, LocalContact] = {}
        self._names: dict[str, str] = {}
        self._keys: dict[str, set[str]] = {}
        self._by_key: dict[str, set[str]] = defaultdict(set)
        for contact in contacts:
            self.add(contact)

    def add(self, contact: LocalContact) -> None:
        """Index a contact, replacing any earlier version of it."""
        self.remove(contact.id)
        if contact.is_deleted:
            return
        keys = self.matcher.identity_keys(contact)
        self._contacts[contact.id] = contact
        self._names[contact.id] = normalize_name(contact.full_name)
        self._keys[contact.id] = keys
        for key in keys:
            self._by_key[key].add(contact.id)

    def remove(self, contact_id: str) -> Optional[LocalContact]:
        contact = self._contacts.pop(contact_id, None)
        if contact is None:
            return None
        del self._names[contact_id]
        for key in self._keys.pop(contact_id):
            ids = self._by_key[key]
            ids.discard(contact_id)
            if not ids:
                del self._by_key[key]
        return contact

    def get(self, contact_id: str) -> Optional[LocalContact]:
        return self._contacts.get(contact_id)

    def name_of(self, contact_id: str) -> str:
        return self._names[contact_id]

    def exact_candidates(self, record: ContactRecord) -> list[LocalContact]:
        """Contacts sharing an email or phone with the record."""
        ids: set[str] = set()
        for key in self.matcher.identity_keys(record):
            ids.update(self._by_key.get(key, ()))
        return [self._contacts[contact_id] for contact_id in ids]

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in self._contacts

    def __iter__(self) -> Iterator[LocalContact]:
        return iter(list(self._contacts.values()))

    def __len__(self) -> int:
        return len(self._contacts)


class DeduplicationEngine:
    """
    Classifies directory records as new, exact duplicates or potential
    duplicates of local contacts.

    The caller passes the candidate set explicitly (fetched once per run),
    so the engine never touches the store. Callers matching many records
    should pass a CandidateIndex from build_index() instead of a plain list.

    Usage:
        engine = DeduplicationEngine()
        matches = engine.find_duplicates(records, existing_contacts)
        summary = engine.summarize(records, matches)
    """

    def __init__(self, matcher: Optional[SimilarityMatcher] = None):
        self.matcher = matcher or SimilarityMatcher()
        self.matching_logger = get_matching_logger()

    def build_index(self, contacts: Iterable[LocalContact] = ()) -> CandidateIndex:
        return CandidateIndex(self.matcher, contacts)

    def best_match(
        self,
        record: ContactRecord,
        candidates: Union[CandidateIndex, Iterable[LocalContact]],
    ) -> Optional[MatchResult]:
        """
        Find the best local match for a single record.

        An exact (email or phone) match always beats a fuzzy one, even a
        fuzzy score of 1.0. Among equals the highest similarity wins and
        ties go to the earliest-created contact. Soft-deleted contacts are
        never candidates.
        """
        if not isinstance(candidates, CandidateIndex):
            candidates = self.build_index(candidates)

        best: Optional[MatchResult] = None
        exact = candidates.exact_candidates(record)
        if exact:
            for candidate in exact:
                result = self.matcher.match(record, candidate)
                if result is not None and _outranks(result, best):
                    best = result
            return best

        # Nothing shares an identifier, so only the fuzzy tier can match
        record_name = normalize_name(record.full_name)
        for candidate in candidates:
            result = self.matcher.fuzzy_match(
                record,
                candidate,
                target_name=record_name,
                candidate_name=candidates.name_of(candidate.id),
            )
            if result is not None and _outranks(result, best):
                best = result
        return best

    def classify(
        self,
        record: ContactRecord,
        candidates: Union[CandidateIndex, Iterable[LocalContact]],
    ) -> Optional[MatchResult]:
        """best_match() plus a NEW/MATCH line in the matching log."""
        result = self.best_match(record, candidates)
        if result is None:
            self.matching_logger.debug(f"NEW {record}")
        else:
            self.matching_logger.debug(f"MATCH {result}")
        return result

    def find_duplicates(
        self,
        records: Sequence[ContactRecord],
        existing: Union[CandidateIndex, Iterable[LocalContact]],
    ) -> list[MatchResult]:
        """
        Match each record against the existing contacts.

        Args:
            records: A page (or batch) of directory records
            existing: The user's local contacts, or an index over them

        Returns:
            One MatchResult per matched record, in record order
        """
        index = existing if isinstance(existing, CandidateIndex) else self.build_index(existing)
        matches = []

        for record in records:
            result = self.classify(record, index)
            if result is not None:
                matches.append(result)

        logger.debug(
            f"Deduplicated {len(records)} records against {len(index)} "
            f"contacts: {len(matches)} matched"
        )
        return matches

    def summarize(
        self, records: Sequence[ContactRecord], matches: Sequence[MatchResult]
    ) -> DedupSummary:
        """Count new / exact / potential classifications."""
        exact = sum(1 for m in matches if m.match_type == MatchType.EXACT)
        return DedupSummary(
            total=len(records),
            new=len(records) - len(matches),
            exact=exact,
            potential=len(matches) - exact,
        )
