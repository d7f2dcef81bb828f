"""
Tests for the similarity matcher.

Covers exact identifier matches, the inclusive fuzzy threshold, company
blending and potential-duplicate classification.
"""

import pytest

from contact_reconciler.sync.matcher import (
    MatchConfig,
    MatchType,
    SimilarityMatcher,
    levenshtein_similarity,
)
from contact_reconciler.sync.records import ContactRecord, LocalContact


def record(first="", last=None, email=None, phone=None, company=None, external_id="ext-1"):
    return ContactRecord(
        external_id=external_id,
        first_name=first,
        last_name=last,
        email=email,
        phone=phone,
        company=company,
    )


def contact(first="", last=None, email=None, phone=None, company=None, contact_id="c1"):
    return LocalContact(
        id=contact_id,
        user_id="u1",
        first_name=first,
        last_name=last,
        email=email,
        phone=phone,
        company=company,
    )


@pytest.fixture
def matcher():
    return SimilarityMatcher()


class TestLevenshteinSimilarity:
    """Tests for the edit-distance similarity."""

    def test_identical_strings(self):
        assert levenshtein_similarity("john doe", "john doe") == 1.0

    def test_one_insertion(self):
        """'jon doe' -> 'john doe' is one edit over eight characters."""
        assert levenshtein_similarity("jon doe", "john doe") == 0.875

    def test_completely_different(self):
        assert levenshtein_similarity("abc", "xyz") == 0.0

    def test_empty_strings(self):
        """Two empty strings have nothing to compare."""
        assert levenshtein_similarity("", "") == 0.0

    def test_one_empty(self):
        assert levenshtein_similarity("abc", "") == 0.0

    def test_transposition_costs_two(self):
        """Transpositions are not a single edit."""
        assert levenshtein_similarity("ab", "ba") == 0.0


class TestExactMatching:
    """Tests for shared email and phone."""

    def test_shared_email_is_exact(self, matcher):
        """A shared email is an exact match even when names differ."""
        result = matcher.match(
            record("Johnny", "D", email="JOHN@example.com"),
            contact("Jonathan", "Doe-Smith", email="john@example.com"),
        )
        assert result is not None
        assert result.match_type == MatchType.EXACT
        assert result.similarity == 1.0
        assert result.matched_fields == ["email"]

    def test_shared_phone_in_different_formats(self, matcher):
        """Phones are compared in E.164 form."""
        result = matcher.match(
            record("A", phone="(555) 123-4567"),
            contact("B", phone="+1 555 123 4567"),
        )
        assert result is not None
        assert result.is_exact
        assert result.matched_fields == ["phone"]

    def test_email_and_phone_both_reported(self, matcher):
        result = matcher.match(
            record("A", email="a@example.com", phone="5551234567"),
            contact("B", email="a@example.com", phone="555-123-4567"),
        )
        assert result.matched_fields == ["email", "phone"]

    def test_short_phone_never_matches(self, matcher):
        """Numbers too short to be real are ignored."""
        assert matcher.exact_fields(record("A", phone="12345"), contact("B", phone="12345")) == []

    def test_exact_score_is_one(self, matcher):
        assert matcher.score(record(email="x@y.z"), contact(email="x@y.z")) == 1.0


class TestFuzzyMatching:
    """Tests for name similarity and the threshold."""

    def test_close_name_is_fuzzy(self, matcher):
        """'Jon Doe' vs 'John Doe' scores 0.875 and matches."""
        result = matcher.match(record("Jon", "Doe"), contact("John", "Doe"))
        assert result is not None
        assert result.match_type == MatchType.FUZZY
        assert result.similarity == pytest.approx(0.875)
        assert result.matched_fields == ["name"]

    def test_score_exactly_at_threshold_is_accepted(self, matcher):
        """Three substitutions over twenty characters is exactly 0.85."""
        result = matcher.match(
            record("Jonathan", "Livingstone"), contact("Jonathon", "Levingstane")
        )
        assert result is not None
        assert result.similarity == pytest.approx(0.85)
        assert result.match_type == MatchType.FUZZY

    def test_score_below_threshold_is_rejected(self, matcher):
        """Four substitutions over twenty characters is 0.80."""
        assert matcher.match(record("Jonathan", "Livingstone"), contact("Jonathon", "Levingstana")) is None

    def test_accepts_is_inclusive(self, matcher):
        assert matcher.accepts(0.85)
        assert matcher.accepts(1 - 3 / 20)
        assert not matcher.accepts(0.8499)

    def test_lower_threshold_admits_boundary_score(self):
        """A threshold just below a score accepts it."""
        matcher = SimilarityMatcher(MatchConfig(fuzzy_threshold=0.84999))
        assert matcher.accepts(0.85)
        assert not matcher.accepts(0.8499)

    def test_titles_and_case_ignored(self, matcher):
        result = matcher.match(record("Dr. JOHN", "doe"), contact("John", "Doe"))
        assert result.similarity == 1.0

    def test_unrelated_names_do_not_match(self, matcher):
        assert matcher.match(record("Alice", "Walker"), contact("Bob", "Stone")) is None

    def test_empty_names_never_match(self, matcher):
        assert matcher.match(record(""), contact("")) is None


class TestCompanyBlending:
    """Tests for the name and company weighted score."""

    def test_company_blended_when_both_present(self, matcher):
        """Score is 0.7 * name + 0.3 * company."""
        target = record("John", "Doe", company="Acme")
        candidate = contact("John", "Doe", company="Acme Corp")
        company_score = levenshtein_similarity("acme", "acme corp")
        assert matcher.score(target, candidate) == pytest.approx(0.7 + 0.3 * company_score)

    def test_different_company_can_push_below_threshold(self, matcher):
        """Same name at a different company is not a match."""
        assert matcher.match(
            record("John", "Doe", company="Acme"), contact("John", "Doe", company="Globex")
        ) is None

    def test_company_ignored_when_one_side_missing(self, matcher):
        assert matcher.score(record("John", "Doe", company="Acme"), contact("John", "Doe")) == 1.0

    def test_matching_company_listed_in_fields(self, matcher):
        result = matcher.match(
            record("John", "Doe", company="Acme Inc"), contact("John", "Doe", company="ACME Inc.")
        )
        assert result.matched_fields == ["name", "company"]


class TestPotentialMatches:
    """Tests for the POTENTIAL classification."""

    def test_conflicting_emails_make_potential(self, matcher):
        """A similar name with disagreeing emails is only a potential duplicate."""
        result = matcher.match(
            record("John", "Doe", email="john@home.example"),
            contact("John", "Doe", email="jdoe@work.example"),
        )
        assert result is not None
        assert result.match_type == MatchType.POTENTIAL

    def test_one_sided_email_stays_fuzzy(self, matcher):
        result = matcher.match(
            record("John", "Doe", email="john@home.example"), contact("John", "Doe")
        )
        assert result.match_type == MatchType.FUZZY


class TestMatchConfig:
    """Tests for matcher configuration validation."""

    def test_defaults(self):
        config = MatchConfig()
        assert config.fuzzy_threshold == 0.85
        assert config.name_weight == 0.7
        assert config.company_weight == 0.3

    @pytest.mark.parametrize("threshold", [-0.1, 1.5])
    def test_threshold_out_of_range(self, threshold):
        with pytest.raises(ValueError, match="fuzzy_threshold"):
            MatchConfig(fuzzy_threshold=threshold)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="sum to 1.0"):
            MatchConfig(name_weight=0.5, company_weight=0.3)
