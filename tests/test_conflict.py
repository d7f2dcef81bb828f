"""
Tests for conflict detection, resolution strategies and sync planning.
"""

import pytest

from conftest import make_contact, utc
from contact_reconciler.sync.conflict import (
    Conflict,
    ConflictResolver,
    ConflictSide,
    ConflictStrategy,
    values_differ,
)
from contact_reconciler.sync.records import ContactRecord

LAST_SYNC = utc(2024, 1, 1)


def local(updated_at, **fields):
    contact = make_contact("c1", **fields)
    contact.updated_at = updated_at
    return contact


def remote(modified_at, first="", last=None, email=None, phone=None, company=None):
    return ContactRecord(
        external_id="people/c1",
        first_name=first,
        last_name=last,
        email=email,
        phone=phone,
        company=company,
        modified_at=modified_at,
    )


def conflict(field="email", local_at=utc(2024, 2, 1), remote_at=utc(2024, 2, 2)):
    return Conflict(
        contact_id="c1",
        field=field,
        local_value="local@example.com",
        remote_value="remote@example.com",
        local_modified_at=local_at,
        remote_modified_at=remote_at,
    )


class TestConflictStrategyParse:
    """Tests for parsing strategy names."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("last_write_wins", ConflictStrategy.LAST_WRITE_WINS),
            ("CRM_PRIORITY", ConflictStrategy.CRM_PRIORITY),
            (" provider_priority ", ConflictStrategy.PROVIDER_PRIORITY),
            (ConflictStrategy.MANUAL_REVIEW, ConflictStrategy.MANUAL_REVIEW),
        ],
    )
    def test_parse(self, value, expected):
        assert ConflictStrategy.parse(value) == expected

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown conflict strategy"):
            ConflictStrategy.parse("newest")


class TestDetect:
    """Tests for conflict detection."""

    def test_both_sides_changed_and_differ(self):
        """A field modified on both sides since the last sync conflicts."""
        resolver = ConflictResolver()
        conflicts = resolver.detect(
            local(utc(2024, 2, 1), first="John", email="a@example.com"),
            remote(utc(2024, 2, 2), first="John", email="b@example.com"),
            LAST_SYNC,
        )
        assert [c.field for c in conflicts] == ["email"]
        assert conflicts[0].local_value == "a@example.com"
        assert conflicts[0].remote_value == "b@example.com"

    def test_only_remote_changed(self):
        """A one-sided change is not a conflict."""
        resolver = ConflictResolver()
        assert resolver.detect(
            local(utc(2023, 12, 1), email="a@example.com"),
            remote(utc(2024, 2, 2), email="b@example.com"),
            LAST_SYNC,
        ) == []

    def test_missing_remote_timestamp_is_not_a_change(self):
        resolver = ConflictResolver()
        assert resolver.detect(
            local(utc(2024, 2, 1), email="a@example.com"),
            remote(None, email="b@example.com"),
            LAST_SYNC,
        ) == []

    def test_blank_and_none_are_equal(self):
        assert not values_differ("", None)
        assert not values_differ("  x ", "x")
        assert values_differ("x", "y")


class TestResolveStrategies:
    """Tests for each resolution strategy."""

    def test_last_write_wins_remote_later(self):
        resolved = ConflictResolver(ConflictStrategy.LAST_WRITE_WINS).resolve_one(conflict())
        assert resolved.winner == ConflictSide.REMOTE
        assert resolved.resolved_value == "remote@example.com"

    def test_last_write_wins_local_later(self):
        resolved = ConflictResolver().resolve_one(
            conflict(local_at=utc(2024, 3, 1), remote_at=utc(2024, 2, 1))
        )
        assert resolved.winner == ConflictSide.LOCAL
        assert resolved.resolved_value == "local@example.com"

    def test_last_write_wins_tie_goes_local(self):
        """Equal timestamps resolve deterministically to the local side."""
        resolver = ConflictResolver()
        for _ in range(3):
            resolved = resolver.resolve_one(
                conflict(local_at=utc(2024, 2, 1), remote_at=utc(2024, 2, 1))
            )
            assert resolved.winner == ConflictSide.LOCAL

    def test_crm_priority(self):
        resolved = ConflictResolver(ConflictStrategy.CRM_PRIORITY).resolve_one(conflict())
        assert resolved.winner == ConflictSide.LOCAL

    def test_provider_priority(self):
        resolved = ConflictResolver(ConflictStrategy.PROVIDER_PRIORITY).resolve_one(
            conflict(local_at=utc(2024, 5, 1))
        )
        assert resolved.winner == ConflictSide.REMOTE

    def test_manual_review_defers(self):
        resolved = ConflictResolver(ConflictStrategy.MANUAL_REVIEW).resolve_one(conflict())
        assert resolved.is_deferred
        assert resolved.winner is None
        assert resolved.resolved_value is None

    def test_explicit_strategy_overrides_configured(self):
        resolver = ConflictResolver(ConflictStrategy.MANUAL_REVIEW)
        resolved = resolver.resolve([conflict()], ConflictStrategy.CRM_PRIORITY)
        assert resolved[0].winner == ConflictSide.LOCAL
        assert resolved[0].strategy == ConflictStrategy.CRM_PRIORITY

    def test_resolve_preserves_order_and_ids(self):
        first, second = conflict("email"), conflict("phone")
        first.id, second.id = 7, 8
        resolved = ConflictResolver().resolve([first, second])
        assert [(r.field, r.conflict_id) for r in resolved] == [("email", 7), ("phone", 8)]


class TestReconcile:
    """Tests for per-contact reconciliation."""

    def test_winners_routed_to_losing_side(self):
        resolver = ConflictResolver(ConflictStrategy.LAST_WRITE_WINS)
        outcome = resolver.reconcile(
            local(utc(2024, 2, 1), first="Johnny", email="a@example.com"),
            remote(utc(2024, 2, 2), first="John", email="b@example.com"),
            LAST_SYNC,
        )
        assert outcome.conflicts_found == 2
        assert outcome.auto_resolved == 2
        assert outcome.local_updates == {"first_name": "John", "email": "b@example.com"}
        assert outcome.remote_updates == {}

    def test_manual_review_defers_everything(self):
        resolver = ConflictResolver(ConflictStrategy.MANUAL_REVIEW)
        outcome = resolver.reconcile(
            local(utc(2024, 2, 1), email="a@example.com"),
            remote(utc(2024, 2, 2), email="b@example.com"),
            LAST_SYNC,
        )
        assert outcome.deferred == 1
        assert outcome.deferred_fields == {"email"}
        assert [c.field for c in outcome.pending_conflicts()] == ["email"]
        assert outcome.local_updates == {}


class TestPlan:
    """Tests for sync planning beyond conflicts."""

    def test_remote_only_change_pulls(self):
        plan = ConflictResolver().plan(
            local(utc(2023, 12, 1), first="John", phone="+15550100"),
            remote(utc(2024, 2, 1), first="John", phone="+15550199"),
            LAST_SYNC,
        )
        assert plan.local_updates == {"phone": "+15550199"}
        assert not plan.needs_push

    def test_local_only_change_pushes(self):
        plan = ConflictResolver().plan(
            local(utc(2024, 2, 1), first="John", phone="+15550100"),
            remote(utc(2023, 12, 1), first="John", phone="+15550199"),
            LAST_SYNC,
        )
        assert plan.remote_fields == ["phone"]
        assert plan.local_updates == {}

    def test_default_side_when_neither_changed(self):
        args = (
            local(utc(2023, 12, 1), first="John", company="Acme"),
            remote(utc(2023, 12, 1), first="John", company="Globex"),
            LAST_SYNC,
        )
        pulled = ConflictResolver().plan(*args)
        pushed = ConflictResolver().plan(*args, default_side=ConflictSide.LOCAL)
        assert pulled.local_updates == {"company": "Globex"}
        assert pushed.remote_fields == ["company"]

    def test_blank_never_wipes(self):
        """A blank remote value does not clear a local one."""
        plan = ConflictResolver().plan(
            local(utc(2023, 12, 1), first="John", email="john@example.com"),
            remote(utc(2024, 2, 1), first="John", email=None),
            LAST_SYNC,
        )
        assert "email" not in plan.local_updates
        assert not plan.needs_push

    def test_deferred_fields_carry_remote_value_on_push(self):
        """A push never overwrites a field waiting for review."""
        local_contact = local(utc(2024, 2, 1), first="Johnny", email="a@example.com")
        remote_record = remote(utc(2024, 2, 2), first="John", email="b@example.com")
        plan = ConflictResolver(ConflictStrategy.MANUAL_REVIEW).plan(
            local_contact, remote_record, LAST_SYNC
        )
        pushed = plan.contact_for_push(local_contact, remote_record)

        assert plan.deferred_fields == {"first_name", "email"}
        assert pushed.email == "b@example.com"
        assert pushed.first_name == "John"
        assert local_contact.email == "a@example.com"
