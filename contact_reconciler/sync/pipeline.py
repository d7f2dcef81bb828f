"""
Reconciliation pipeline.

Applies directory records to the local contact set in bounded batches:
- One store transaction per batch, one savepoint per record, so a failing
  record is rolled back and recorded without losing the rest of its batch
- Deduplication against a snapshot of the user's contacts taken once per
  run, plus every contact created earlier in the same run
- Incremental sync from a stored cursor, falling back to a full listing
  when no cursor exists or the directory rejects it
- Conflict resolution for linked contacts on write-back integrations

The job state machine and its counters are saved in the same transaction as
the batch they describe.
"""

import logging
import sqlite3
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Union

from contact_reconciler.api.base import (
    AuthExpiredError,
    CursorExpiredError,
    DirectoryClient,
    DirectoryError,
)
from contact_reconciler.config.import_config import ImportConfig
from contact_reconciler.storage.db import ContactStore, UnitOfWork
from contact_reconciler.sync.conflict import (
    SYNCABLE_FIELDS,
    ConflictResolver,
    ConflictStatus,
    ConflictStrategy,
    SyncPlan,
    has_value,
)
from contact_reconciler.sync.cursor import SyncCursorStore
from contact_reconciler.sync.dedup import CandidateIndex, DeduplicationEngine
from contact_reconciler.sync.fetcher import DirectoryFetcher
from contact_reconciler.sync.jobs import (
    CANCELLED_MESSAGE,
    BatchFailedError,
    ImportJob,
    JobCancelledError,
    JobRecordError,
    JobStatus,
)
from contact_reconciler.sync.matcher import MatchResult, MatchType
from contact_reconciler.sync.normalizer import normalize
from contact_reconciler.sync.records import (
    ContactRecord,
    Integration,
    IntegrationLink,
    LocalContact,
    new_id,
    utc_now,
)

# Records per store transaction
DEFAULT_BATCH_SIZE = 200

# Errors that mean the store or the directory session is unusable; they
# abort the job instead of being charged to a single record
SYSTEMIC_ERRORS = (
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    AuthExpiredError,
    JobCancelledError,
)

# Record actions
ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_SKIPPED = "skipped"
ACTION_DELETED = "deleted"

# Incremental sync links new directory entries to existing contacts
SYNC_IMPORT_CONFIG = ImportConfig(skip_duplicates=True, update_existing=True)

ProgressCallback = Callable[[ImportJob], None]

logger = logging.getLogger(__name__)


class IntegrationError(Exception):
    """Raised when an integration is missing, inactive or misconfigured."""

    pass


@dataclass
class SyncResult:
    """
    Outcome of an incremental sync.

    Attributes:
        added: Local contacts created
        updated: Local contacts updated (including newly linked ones)
        deleted: Local contacts soft-deleted on provider removal
        skipped: Records skipped
        failed: Records that failed
        conflicts_found: Field conflicts detected on linked contacts
        conflicts_auto_resolved: Conflicts resolved by the strategy
        conflicts_deferred: Conflicts left pending for manual review
        full_sync: True when the run listed everything (no or expired cursor)
        cursor_advanced: True when a new cursor was stored
        job_id: The SYNC job that produced this result
    """

    added: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts_found: int = 0
    conflicts_auto_resolved: int = 0
    conflicts_deferred: int = 0
    full_sync: bool = False
    cursor_advanced: bool = False
    job_id: Optional[str] = None

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.updated or self.deleted)

    def to_dict(self) -> dict[str, object]:
        return {
            "jobId": self.job_id,
            "added": self.added,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "failed": self.failed,
            "conflictsFound": self.conflicts_found,
            "conflictsAutoResolved": self.conflicts_auto_resolved,
            "conflictsDeferred": self.conflicts_deferred,
            "fullSync": self.full_sync,
            "cursorAdvanced": self.cursor_advanced,
        }

    def summary(self, label: str = "Directory") -> str:
        """
        Generate a human-readable summary of the sync result.

        Args:
            label: Label for the integration (e.g., its name)
        """
        mode = "full" if self.full_sync else "incremental"
        lines = [
            f"Sync Summary ({label}, {mode}):",
            f"  Added: {self.added}",
            f"  Updated: {self.updated}",
            f"  Deleted: {self.deleted}",
        ]
        if self.skipped:
            lines.append(f"  Skipped: {self.skipped}")
        if self.failed:
            lines.append(f"  Failed: {self.failed}")
        if self.conflicts_found:
            lines.append(
                f"  Conflicts: {self.conflicts_found} found, "
                f"{self.conflicts_auto_resolved} auto-resolved, "
                f"{self.conflicts_deferred} deferred"
            )
        if not self.cursor_advanced:
            lines.append("  Sync cursor not advanced")
        return "\n".join(lines)


@dataclass
class _PendingWriteBack:
    contact: LocalContact
    link: IntegrationLink
    fields: list[str]


@dataclass
class _RecordOutcome:
    action: str
    contact: Optional[LocalContact] = None
    conflicts_found: int = 0
    auto_resolved: int = 0
    deferred: int = 0
    write_back: Optional[_PendingWriteBack] = None


@dataclass
class _BatchTally:
    """Counts for one batch, applied to the job only once the batch commits."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    conflicts_found: int = 0
    auto_resolved: int = 0
    deferred: int = 0
    errors: list[JobRecordError] = field(default_factory=list)
    touched: list[str] = field(default_factory=list)
    write_backs: list[_PendingWriteBack] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + self.failed + self.deleted

    def add(self, outcome: _RecordOutcome) -> None:
        if outcome.action == ACTION_CREATED:
            self.created += 1
        elif outcome.action == ACTION_UPDATED:
            self.updated += 1
        elif outcome.action == ACTION_DELETED:
            self.deleted += 1
        else:
            self.skipped += 1

        self.conflicts_found += outcome.conflicts_found
        self.auto_resolved += outcome.auto_resolved
        self.deferred += outcome.deferred

        if outcome.contact is not None and outcome.action != ACTION_SKIPPED:
            self.touched.append(outcome.contact.id)
        if outcome.write_back is not None:
            self.write_backs.append(outcome.write_back)

    def fail(self, external_id: str, error: Exception) -> None:
        self.failed += 1
        self.errors.append(JobRecordError(external_id or "(unknown)", str(error)))

    def apply_to(self, job: ImportJob) -> None:
        job.processed_count += self.processed
        job.imported_count += self.created
        job.updated_count += self.updated
        job.skipped_count += self.skipped
        job.failed_count += self.failed
        job.deleted_count += self.deleted
        for error in self.errors:
            job.record_error(error.external_id, error.message)

    def apply_to_result(self, result: SyncResult) -> None:
        result.added += self.created
        result.updated += self.updated
        result.deleted += self.deleted
        result.skipped += self.skipped
        result.failed += self.failed
        result.conflicts_found += self.conflicts_found
        result.conflicts_auto_resolved += self.auto_resolved
        result.conflicts_deferred += self.deferred


@dataclass
class _RunContext:
    """State shared by every batch of one run."""

    job: ImportJob
    integration: Integration
    config: ImportConfig
    # Live local contacts, kept current as batches write
    candidates: CandidateIndex
    resolver: Optional[ConflictResolver] = None
    # Pre-batch versions of contacts written by the open batch (None if new)
    _undo: dict[str, Optional[LocalContact]] = field(default_factory=dict, init=False, repr=False)

    def lookup(self, contact_id: str) -> Optional[LocalContact]:
        return self.candidates.get(contact_id)

    def stage(self, contact: LocalContact) -> None:
        """Make a contact written by the open batch visible to later records."""
        if contact.id not in self._undo:
            self._undo[contact.id] = self.candidates.get(contact.id)
        self.candidates.add(contact)

    def commit_staged(self) -> None:
        self._undo.clear()

    def rollback_staged(self) -> None:
        """Restore the index to how it was before the open batch."""
        for contact_id, previous in self._undo.items():
            self.candidates.remove(contact_id)
            if previous is not None:
                self.candidates.add(previous)
        self._undo.clear()


def _merge_tags(existing: Sequence[str], incoming: Sequence[str]) -> list[str]:
    merged = list(existing)
    for tag in incoming:
        if tag not in merged:
            merged.append(tag)
    return merged


def _batches(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def persist_deferred_conflicts(uow: UnitOfWork, integration_id: str, plan: SyncPlan) -> int:
    """
    Store the conflicts a plan left for manual review.

    A field that already has a pending conflict for the contact is not
    stored twice. Returns the number of conflicts inserted.
    """
    pending = plan.outcome.pending_conflicts()
    if not pending:
        return 0
    already_pending = {
        c.field
        for c in uow.list_conflicts(integration_id, ConflictStatus.PENDING, pending[0].contact_id)
    }
    inserted = 0
    for conflict in pending:
        if conflict.field in already_pending:
            continue
        conflict.integration_id = integration_id
        uow.insert_conflict(conflict)
        inserted += 1
    return inserted


class ReconciliationPipeline:
    """
    Applies directory records to the local contact set.

    Usage:
        pipeline = ReconciliationPipeline(store)
        touched = pipeline.run_import(job, records, config)
        result = pipeline.run_incremental(job, integration, client)

    Batches run sequentially; a cancel_event is checked between batches
    only, since a batch is one atomic unit of work.
    """

    def __init__(
        self,
        store: ContactStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        engine: Optional[DeduplicationEngine] = None,
        resolver_factory: Optional[Callable[[ConflictStrategy], ConflictResolver]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            store: Contact store
            batch_size: Records per transaction (default 200)
            engine: Deduplication engine (default matcher settings if None)
            resolver_factory: Builds a ConflictResolver for a strategy
            clock: Time source (injectable for tests)
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.store = store
        self.batch_size = batch_size
        self.engine = engine or DeduplicationEngine()
        self.resolver_factory = resolver_factory or ConflictResolver
        self.clock = clock or utc_now
        self.cursors = SyncCursorStore(store, clock=self.clock)

    # =========================================================================
    # Job lifecycle
    # =========================================================================

    def begin_job(self, job: ImportJob) -> None:
        if job.status == JobStatus.QUEUED:
            job.start()
            self.store.save_job(job)
            logger.info(f"Job {job.id} started ({job.kind.value})")

    def finish_job(self, job: ImportJob) -> None:
        job.complete()
        self.store.save_job(job)
        logger.info(
            f"Job {job.id} completed: {job.imported_count} imported, "
            f"{job.updated_count} updated, {job.skipped_count} skipped, "
            f"{job.deleted_count} deleted, {job.failed_count} failed"
        )

    def fail_job(self, job: ImportJob, error: BaseException) -> None:
        if job.is_terminal:
            return
        message = CANCELLED_MESSAGE if isinstance(error, JobCancelledError) else str(error)
        job.fail(message or type(error).__name__)
        self.store.save_job(job)
        if isinstance(error, JobCancelledError):
            logger.warning(f"Job {job.id} cancelled")
        else:
            logger.error(f"Job {job.id} failed: {job.error_message}")

    @staticmethod
    def _check_cancelled(job: ImportJob, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError(f"Job {job.id} was cancelled")

    def _require_integration(self, integration_id: str) -> Integration:
        integration = self.store.get_integration(integration_id)
        if integration is None:
            raise IntegrationError(f"Integration {integration_id} not found")
        return integration

    def _context(
        self,
        job: ImportJob,
        integration: Integration,
        config: ImportConfig,
        with_conflicts: bool,
    ) -> _RunContext:
        snapshot = self.store.list_contacts(job.user_id)
        resolver = None
        if with_conflicts and integration.write_back:
            resolver = self.resolver_factory(
                ConflictStrategy.parse(integration.conflict_strategy)
            )
        return _RunContext(
            job=job,
            integration=integration,
            config=config,
            candidates=self.engine.build_index(snapshot),
            resolver=resolver,
        )

    # =========================================================================
    # One-shot import
    # =========================================================================

    def run_import(
        self,
        job: ImportJob,
        records: Sequence[ContactRecord],
        config: ImportConfig,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> list[str]:
        """
        Import a fetched record set.

        Args:
            job: QUEUED or PROCESSING job for the integration
            records: Normalized records, already filtered by the config
            config: Duplicate handling and tag rules
            cancel_event: Set to cancel at the next batch boundary
            progress_callback: Called with a job snapshot after each batch

        Returns:
            Ids of the local contacts created or updated

        Raises:
            JobCancelledError: If cancelled (job FAILED, "cancelled")
            BatchFailedError: If every record of a batch failed
            Systemic store or auth errors (job FAILED)
        """
        touched: list[str] = []
        try:
            self.begin_job(job)
            integration = self._require_integration(job.integration_id)
            job.total_count = len(records)
            self.store.save_job(job)

            ctx = self._context(job, integration, config, with_conflicts=False)
            logger.info(
                f"Importing {len(records)} records into {len(ctx.candidates)} "
                f"existing contacts (batch size {self.batch_size})"
            )

            for batch in _batches(records, self.batch_size):
                self._check_cancelled(job, cancel_event)
                tally = self._apply_batch(ctx, batch, removed=())
                touched.extend(tally.touched)
                if progress_callback:
                    progress_callback(job.snapshot())

            self.finish_job(job)
            return touched

        except BaseException as e:
            self.fail_job(job, e)
            raise

    # =========================================================================
    # Incremental sync
    # =========================================================================

    def run_incremental(
        self,
        job: ImportJob,
        integration: Integration,
        client: Union[DirectoryClient, DirectoryFetcher],
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        """
        Apply the directory's changes since the stored cursor.

        Without a cursor (or when the directory rejects it) everything is
        listed and reconciled, and the returned cursor becomes the baseline.
        The cursor is only advanced after the page that carried it has been
        committed.

        Args:
            job: QUEUED or PROCESSING SYNC job
            integration: The integration being synced
            client: A DirectoryClient, or a DirectoryFetcher wrapping one
            cancel_event: Set to cancel at the next batch boundary
            progress_callback: Called with a job snapshot after each batch
        """
        fetcher = client if isinstance(client, DirectoryFetcher) else DirectoryFetcher(client)
        result = SyncResult(job_id=job.id)

        try:
            self.begin_job(job)
            ctx = self._context(job, integration, SYNC_IMPORT_CONFIG, with_conflicts=True)

            stored = self.cursors.get(integration.id)
            cursor = stored.cursor if stored else None
            result.full_sync = cursor is None

            try:
                self._apply_pages(ctx, fetcher, cursor, result, cancel_event, progress_callback)
            except CursorExpiredError:
                if cursor is None:
                    raise
                logger.warning(
                    f"Sync cursor expired for integration {integration.id}, "
                    f"performing full sync"
                )
                self.cursors.clear(integration.id)
                result.full_sync = True
                self._apply_pages(ctx, fetcher, None, result, cancel_event, progress_callback)

            self.finish_job(job)
            return result

        except BaseException as e:
            self.fail_job(job, e)
            raise

    def _apply_pages(
        self,
        ctx: _RunContext,
        fetcher: DirectoryFetcher,
        cursor: Optional[str],
        result: SyncResult,
        cancel_event: Optional[threading.Event],
        progress_callback: Optional[ProgressCallback],
    ) -> None:
        job = ctx.job
        for page in fetcher.iter_pages(cursor=cursor):
            records = [normalize(raw) for raw in page.records]
            job.total_count += len(records) + len(page.removed_external_ids)

            batches = list(_batches(records, self.batch_size)) or [[]]
            for index, batch in enumerate(batches):
                self._check_cancelled(job, cancel_event)
                is_last = index == len(batches) - 1
                removed = page.removed_external_ids if is_last else ()
                tally = self._apply_batch(ctx, batch, removed)
                tally.apply_to_result(result)
                self._write_back(ctx, fetcher, tally)
                if progress_callback:
                    progress_callback(job.snapshot())

            if page.next_sync_cursor:
                self.cursors.advance(ctx.integration.id, page.next_sync_cursor)
                result.cursor_advanced = True

    # =========================================================================
    # Batch application
    # =========================================================================

    def _apply_batch(
        self,
        ctx: _RunContext,
        batch: Sequence[ContactRecord],
        removed: Sequence[str],
    ) -> _BatchTally:
        """
        Apply one batch in a single transaction.

        Raises:
            BatchFailedError: If every record failed (the batch rolls back)
        """
        tally = _BatchTally()
        size = len(batch) + len(removed)
        ctx.rollback_staged()

        with self.store.unit_of_work() as uow:
            for record in batch:
                try:
                    with uow.savepoint():
                        outcome = self._apply_record(uow, ctx, record)
                except SYSTEMIC_ERRORS:
                    raise
                except Exception as e:
                    logger.warning(f"Failed to apply record {record.external_id!r}: {e}")
                    tally.fail(record.external_id, e)
                    continue
                tally.add(outcome)
                if outcome.contact is not None and outcome.action != ACTION_SKIPPED:
                    ctx.stage(outcome.contact)

            for external_id in removed:
                try:
                    with uow.savepoint():
                        outcome = self._apply_removal(uow, ctx, external_id)
                except SYSTEMIC_ERRORS:
                    raise
                except Exception as e:
                    logger.warning(f"Failed to apply removal of {external_id!r}: {e}")
                    tally.fail(external_id, e)
                    continue
                tally.add(outcome)
                if outcome.contact is not None:
                    ctx.stage(outcome.contact)

            if size and tally.failed == size:
                ctx.job.failed_count += tally.failed
                for error in tally.errors:
                    ctx.job.record_error(error.external_id, error.message)
                last = tally.errors[-1].message if tally.errors else "unknown error"
                raise BatchFailedError(f"All {size} records in batch failed; last error: {last}")

            tally.apply_to(ctx.job)
            uow.save_job(ctx.job)

        ctx.commit_staged()
        logger.debug(
            f"Batch committed: {tally.created} created, {tally.updated} updated, "
            f"{tally.skipped} skipped, {tally.deleted} deleted, {tally.failed} failed"
        )
        return tally

    def _find_match(
        self, uow: UnitOfWork, ctx: _RunContext, record: ContactRecord
    ) -> tuple[Optional[MatchResult], Optional[IntegrationLink]]:
        """
        Locate the local contact a record belongs to.

        An existing link for the external id is authoritative and counts as
        an exact match; otherwise the deduplication engine decides.
        """
        link = uow.get_link(ctx.integration.id, record.external_id)
        if link is not None:
            contact = ctx.lookup(link.contact_id) or uow.get_contact(link.contact_id)
            if contact is not None:
                match = MatchResult(
                    imported_record=record,
                    existing_contact=contact,
                    similarity=1.0,
                    match_type=MatchType.EXACT,
                    matched_fields=["external_id"],
                )
                return match, link
        return self.engine.classify(record, ctx.candidates), link

    def _apply_record(
        self, uow: UnitOfWork, ctx: _RunContext, record: ContactRecord
    ) -> _RecordOutcome:
        if not record.external_id:
            raise ValueError("Record has no external id")

        now = self.clock()
        tags = ctx.config.apply_tag_rules(record.tags)
        match, link = self._find_match(uow, ctx, record)

        if match is None:
            contact = self._new_contact(ctx, record, tags, now)
            uow.insert_contact(contact)
            new_link = IntegrationLink(
                integration_id=ctx.integration.id,
                contact_id=contact.id,
                external_id=record.external_id,
                metadata=dict(record.metadata),
                last_synced_at=now,
            )
            if link is None:
                uow.insert_link(new_link)
            else:
                # The link pointed at a contact that no longer exists
                uow.upsert_link(new_link)
            return _RecordOutcome(ACTION_CREATED, contact)

        if not ctx.config.update_existing:
            return _RecordOutcome(ACTION_SKIPPED, match.existing_contact)

        contact = replace(
            match.existing_contact,
            tags=list(match.existing_contact.tags),
            metadata=dict(match.existing_contact.metadata),
        )
        outcome = _RecordOutcome(ACTION_UPDATED, contact)
        last_synced_at = link.last_synced_at if link is not None else None

        plan = None
        if ctx.resolver is not None and link is not None and link.contact_id == contact.id:
            held = {
                c.field
                for c in uow.list_conflicts(
                    ctx.integration.id, ConflictStatus.PENDING, contact.id
                )
            }
            plan = ctx.resolver.plan(
                contact, record, link.last_synced_at, held_fields=held
            )
            for name, value in plan.local_updates.items():
                setattr(contact, name, value)
            persist_deferred_conflicts(uow, ctx.integration.id, plan)
            outcome.conflicts_found = plan.outcome.conflicts_found
            outcome.auto_resolved = plan.outcome.auto_resolved
            outcome.deferred = plan.outcome.deferred
        else:
            self._merge_record(contact, record)

        contact.tags = _merge_tags(contact.tags, tags)
        contact.metadata.update(record.metadata)
        contact.deleted_at = None
        contact.updated_at = now
        uow.update_contact(contact)

        needs_push = plan is not None and plan.needs_push
        synced_link = IntegrationLink(
            integration_id=ctx.integration.id,
            contact_id=contact.id,
            external_id=record.external_id,
            metadata=dict(record.metadata),
            # Keep the old sync time until the write-back succeeds
            last_synced_at=last_synced_at if needs_push else now,
        )
        uow.upsert_link(synced_link)

        if needs_push:
            assert plan is not None
            outcome.write_back = _PendingWriteBack(
                contact=plan.contact_for_push(contact, record),
                link=synced_link,
                fields=list(plan.remote_fields),
            )
        return outcome

    def _apply_removal(
        self, uow: UnitOfWork, ctx: _RunContext, external_id: str
    ) -> _RecordOutcome:
        link = uow.get_link(ctx.integration.id, external_id)
        if link is None:
            return _RecordOutcome(ACTION_SKIPPED)
        if not uow.soft_delete_contact(link.contact_id, self.clock()):
            return _RecordOutcome(ACTION_SKIPPED)
        contact = uow.get_contact(link.contact_id)
        return _RecordOutcome(ACTION_DELETED, contact)

    def _new_contact(
        self,
        ctx: _RunContext,
        record: ContactRecord,
        tags: list[str],
        now: datetime,
    ) -> LocalContact:
        return LocalContact(
            id=new_id(),
            user_id=ctx.job.user_id,
            first_name=record.first_name or "",
            last_name=record.last_name,
            email=record.email,
            phone=record.phone,
            company=record.company,
            position=record.position,
            tags=tags,
            metadata=dict(record.metadata),
            source=ctx.integration.provider,
            created_at=now,
            updated_at=now,
        )

    @staticmethod
    def _merge_record(contact: LocalContact, record: ContactRecord) -> None:
        """Copy present directory values over the local ones; blanks never wipe."""
        for name in SYNCABLE_FIELDS:
            value = getattr(record, name)
            if has_value(value):
                setattr(contact, name, value)

    # =========================================================================
    # Write-back
    # =========================================================================

    def _write_back(
        self,
        ctx: _RunContext,
        fetcher: DirectoryFetcher,
        tally: _BatchTally,
    ) -> None:
        """
        Push locally-won fields to the directory after the batch committed.

        A failed push is recorded on the job and retried on the next sync,
        because the link keeps its previous sync time.
        """
        if not tally.write_backs:
            return

        pushed_links: list[IntegrationLink] = []
        for pending in tally.write_backs:
            try:
                fetcher.update_contact(pending.link.external_id, pending.contact)
            except AuthExpiredError:
                raise
            except DirectoryError as e:
                logger.warning(
                    f"Write-back of {pending.contact.id} ({', '.join(pending.fields)}) "
                    f"failed: {e}"
                )
                ctx.job.record_error(pending.link.external_id, f"write-back failed: {e}")
                continue
            pending.link.last_synced_at = self.clock()
            pushed_links.append(pending.link)

        if pushed_links:
            with self.store.unit_of_work() as uow:
                for link in pushed_links:
                    uow.upsert_link(link)
                uow.save_job(ctx.job)
            logger.info(f"Wrote back {len(pushed_links)} contact(s) to {ctx.integration.provider}")
