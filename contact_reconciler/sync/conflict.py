"""
Conflict resolution for contacts linked to a write-back directory.

A field is in conflict only when the local and remote values differ AND both
sides were modified strictly after the last successful sync. Conflicts are
resolved with the strategy configured on the integration:

- LAST_WRITE_WINS: the later modification timestamp wins, field by field
- CRM_PRIORITY: the local value always wins (remote is overwritten)
- PROVIDER_PRIORITY: the remote value always wins (local is overwritten)
- MANUAL_REVIEW: nothing is resolved; conflicts are kept for a human
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from contact_reconciler.sync.records import (
    ContactRecord,
    LocalContact,
    ensure_utc,
)

logger = logging.getLogger(__name__)

# Fields compared between a local contact and its directory record
SYNCABLE_FIELDS = ("first_name", "last_name", "email", "phone", "company", "position")


class ConflictStrategy(Enum):
    """Available conflict resolution strategies."""

    LAST_WRITE_WINS = "last_write_wins"
    CRM_PRIORITY = "crm_priority"
    PROVIDER_PRIORITY = "provider_priority"
    MANUAL_REVIEW = "manual_review"

    @classmethod
    def parse(cls, value: str | ConflictStrategy) -> ConflictStrategy:
        """Accept enum members, values or names in any case."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for strategy in cls:
            if text in (strategy.value, strategy.name.lower()):
                return strategy
        raise ValueError(
            f"Unknown conflict strategy '{value}'. "
            f"Must be one of: {', '.join(s.value for s in cls)}"
        )


class ConflictSide(Enum):
    """Which side won a conflict."""

    LOCAL = "local"
    REMOTE = "remote"


class ConflictStatus(Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


@dataclass
class Conflict:
    """A single diverged field on a linked contact."""

    contact_id: str
    field: str
    local_value: Any
    remote_value: Any
    local_modified_at: Optional[datetime]
    remote_modified_at: Optional[datetime]
    resolution: Optional[str] = None
    id: Optional[int] = None
    integration_id: Optional[str] = None
    status: ConflictStatus = ConflictStatus.PENDING


@dataclass
class ResolvedConflict:
    """
    Outcome of resolving one conflict.

    ``winner`` is None when the strategy defers to manual review, in which
    case ``resolved_value`` is None as well.
    """

    contact_id: str
    field: str
    strategy: ConflictStrategy
    winner: Optional[ConflictSide]
    resolved_value: Any
    conflict_id: Optional[int] = None

    @property
    def is_deferred(self) -> bool:
        return self.winner is None


@dataclass
class ReconcileOutcome:
    """
    Per-contact conflict outcome.

    Attributes:
        conflicts: Every detected conflict
        resolutions: Resolution of each conflict, same order
        local_updates: Field values to write to the local contact
        remote_updates: Field values to write back to the directory
        deferred_fields: Fields left untouched pending manual review
    """

    conflicts: list[Conflict] = field(default_factory=list)
    resolutions: list[ResolvedConflict] = field(default_factory=list)
    local_updates: dict[str, Any] = field(default_factory=dict)
    remote_updates: dict[str, Any] = field(default_factory=dict)
    deferred_fields: set[str] = field(default_factory=set)

    @property
    def conflicts_found(self) -> int:
        return len(self.conflicts)

    @property
    def auto_resolved(self) -> int:
        return sum(1 for r in self.resolutions if not r.is_deferred)

    @property
    def deferred(self) -> int:
        return sum(1 for r in self.resolutions if r.is_deferred)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def pending_conflicts(self) -> list[Conflict]:
        return [c for c in self.conflicts if c.field in self.deferred_fields]


@dataclass
class SyncPlan:
    """
    Everything needed to bring a linked contact and its directory record
    back in step.

    Attributes:
        outcome: Conflict detection and resolution result
        local_updates: Field values to write to the local contact
        remote_fields: Fields whose local value goes to the directory
        held_fields: Fields with a conflict already pending review
    """

    outcome: ReconcileOutcome
    local_updates: dict[str, Any] = field(default_factory=dict)
    remote_fields: list[str] = field(default_factory=list)
    held_fields: set[str] = field(default_factory=set)

    @property
    def deferred_fields(self) -> set[str]:
        return self.outcome.deferred_fields | self.held_fields

    @property
    def needs_push(self) -> bool:
        return bool(self.remote_fields)

    def contact_for_push(self, contact: LocalContact, remote: ContactRecord) -> LocalContact:
        """
        Copy of the contact to render for write-back.

        Deferred fields carry the remote value so a push never overwrites a
        field that is waiting for manual review.
        """
        pushed = replace(contact, tags=list(contact.tags), metadata=dict(contact.metadata))
        for name in self.deferred_fields:
            setattr(pushed, name, getattr(remote, name))
        return pushed


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
    return value or None


def values_differ(local_value: Any, remote_value: Any) -> bool:
    """Compare two field values, treating None and blank strings alike."""
    return _clean(local_value) != _clean(remote_value)


def has_value(value: Any) -> bool:
    return _clean(value) is not None


def modified_after(timestamp: Optional[datetime], since: Optional[datetime]) -> bool:
    """
    Whether a timestamp is strictly after ``since``.

    A missing timestamp is never "after". With no previous sync every
    known timestamp counts as a change.
    """
    if timestamp is None:
        return False
    if since is None:
        return True
    return ensure_utc(timestamp) > ensure_utc(since)


class ConflictResolver:
    """
    Detects and resolves field conflicts for one integration's strategy.

    Usage:
        resolver = ConflictResolver(ConflictStrategy.LAST_WRITE_WINS)
        outcome = resolver.reconcile(local, remote, link.last_synced_at)
        store.apply(outcome.local_updates)
        client.update(outcome.remote_updates)

    Attributes:
        strategy: The conflict resolution strategy to use
    """

    def __init__(self, strategy: ConflictStrategy = ConflictStrategy.LAST_WRITE_WINS):
        self.strategy = ConflictStrategy.parse(strategy)

    def detect(
        self,
        local: LocalContact,
        remote: ContactRecord,
        last_synced_at: Optional[datetime],
    ) -> list[Conflict]:
        """
        Find the syncable fields in conflict.

        Args:
            local: The local contact
            remote: The freshly fetched directory record
            last_synced_at: When the link last synced successfully

        Returns:
            One Conflict per diverged field modified on both sides
        """
        if not (
            modified_after(local.updated_at, last_synced_at)
            and modified_after(remote.modified_at, last_synced_at)
        ):
            return []

        conflicts = []
        for name in SYNCABLE_FIELDS:
            local_value = getattr(local, name)
            remote_value = getattr(remote, name)
            if values_differ(local_value, remote_value):
                conflicts.append(
                    Conflict(
                        contact_id=local.id,
                        field=name,
                        local_value=local_value,
                        remote_value=remote_value,
                        local_modified_at=local.updated_at,
                        remote_modified_at=remote.modified_at,
                    )
                )
        return conflicts

    def resolve_one(
        self, conflict: Conflict, strategy: Optional[ConflictStrategy] = None
    ) -> ResolvedConflict:
        """Resolve one conflict with the given (or configured) strategy."""
        strategy = strategy or self.strategy

        winner: Optional[ConflictSide]
        if strategy == ConflictStrategy.LAST_WRITE_WINS:
            winner = self.compare_timestamps(
                conflict.local_modified_at, conflict.remote_modified_at
            )
        elif strategy == ConflictStrategy.CRM_PRIORITY:
            winner = ConflictSide.LOCAL
        elif strategy == ConflictStrategy.PROVIDER_PRIORITY:
            winner = ConflictSide.REMOTE
        else:
            winner = None

        if winner == ConflictSide.LOCAL:
            value = conflict.local_value
        elif winner == ConflictSide.REMOTE:
            value = conflict.remote_value
        else:
            value = None

        return ResolvedConflict(
            contact_id=conflict.contact_id,
            field=conflict.field,
            strategy=strategy,
            winner=winner,
            resolved_value=value,
            conflict_id=conflict.id,
        )

    def resolve(
        self,
        conflicts: list[Conflict],
        strategy: Optional[ConflictStrategy] = None,
    ) -> list[ResolvedConflict]:
        """Resolve each conflict, preserving order."""
        return [self.resolve_one(c, strategy) for c in conflicts]

    def reconcile(
        self,
        local: LocalContact,
        remote: ContactRecord,
        last_synced_at: Optional[datetime],
    ) -> ReconcileOutcome:
        """
        Detect and resolve conflicts for one linked contact.

        The losing side of each auto-resolved conflict receives the winning
        value; MANUAL_REVIEW conflicts leave both sides untouched.
        """
        outcome = ReconcileOutcome(conflicts=self.detect(local, remote, last_synced_at))
        outcome.resolutions = self.resolve(outcome.conflicts)

        for resolved in outcome.resolutions:
            if resolved.winner == ConflictSide.REMOTE:
                outcome.local_updates[resolved.field] = resolved.resolved_value
            elif resolved.winner == ConflictSide.LOCAL:
                outcome.remote_updates[resolved.field] = resolved.resolved_value
            else:
                outcome.deferred_fields.add(resolved.field)

        if outcome.has_conflicts:
            logger.info(
                f"Contact {local.id}: {outcome.conflicts_found} conflict(s), "
                f"{outcome.auto_resolved} auto-resolved, {outcome.deferred} deferred "
                f"({self.strategy.value})"
            )
        return outcome

    def plan(
        self,
        local: LocalContact,
        remote: ContactRecord,
        last_synced_at: Optional[datetime],
        default_side: ConflictSide = ConflictSide.REMOTE,
        held_fields: Iterable[str] = (),
    ) -> SyncPlan:
        """
        Reconcile conflicts, then settle the remaining differing fields.

        A differing field that is not in conflict goes to the side that
        changed since the last sync; when neither or both changed,
        ``default_side`` wins. Blank values never wipe a present one.
        Held fields are left alone on both sides.

        Args:
            local: The local contact
            remote: The freshly fetched directory record
            last_synced_at: When the link last synced successfully
            default_side: REMOTE when pulling (sync), LOCAL when pushing
            held_fields: Fields with a conflict already pending review
        """
        held = set(held_fields)
        outcome = self.reconcile(local, remote, last_synced_at)
        plan = SyncPlan(
            outcome=outcome,
            local_updates={k: v for k, v in outcome.local_updates.items() if k not in held},
            remote_fields=[name for name in outcome.remote_updates if name not in held],
            held_fields=held,
        )
        conflicted = {c.field for c in outcome.conflicts} | held

        local_changed = modified_after(local.updated_at, last_synced_at)
        remote_changed = modified_after(remote.modified_at, last_synced_at)
        if local_changed and not remote_changed:
            side = ConflictSide.LOCAL
        elif remote_changed and not local_changed:
            side = ConflictSide.REMOTE
        else:
            side = default_side

        for name in SYNCABLE_FIELDS:
            if name in conflicted:
                continue
            local_value = getattr(local, name)
            remote_value = getattr(remote, name)
            if not values_differ(local_value, remote_value):
                continue
            if side == ConflictSide.LOCAL and has_value(local_value):
                plan.remote_fields.append(name)
            elif has_value(remote_value):
                plan.local_updates[name] = remote_value

        return plan

    @staticmethod
    def compare_timestamps(
        local_modified_at: Optional[datetime],
        remote_modified_at: Optional[datetime],
    ) -> ConflictSide:
        """
        Pick the later of two modification times.

        Missing timestamps lose to present ones; equal timestamps go to the
        local side.
        """
        local_ts = ensure_utc(local_modified_at)
        remote_ts = ensure_utc(remote_modified_at)
        if remote_ts is None:
            return ConflictSide.LOCAL
        if local_ts is None:
            return ConflictSide.REMOTE
        return ConflictSide.REMOTE if remote_ts > local_ts else ConflictSide.LOCAL

    def __repr__(self) -> str:
        return f"ConflictResolver(strategy={self.strategy.value})"
