"""
Contact sync service.

The operations callers use: connect a directory, preview and start imports,
run incremental syncs, push local edits, resolve conflicts and disconnect.
Long-running work is dispatched through a JobRunner so each
(user, integration) pair has at most one active job.
"""

import logging
import threading
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, Union

from contact_reconciler.api.base import DirectoryClient, DirectoryError
from contact_reconciler.config.import_config import ImportConfig
from contact_reconciler.config.loader import Settings
from contact_reconciler.storage.db import ContactStore
from contact_reconciler.sync.conflict import (
    SYNCABLE_FIELDS,
    Conflict,
    ConflictSide,
    ConflictStrategy,
    ConflictStatus,
    ResolvedConflict,
    has_value,
)
from contact_reconciler.sync.dedup import DeduplicationEngine, DedupSummary
from contact_reconciler.sync.fetcher import DirectoryFetcher
from contact_reconciler.sync.jobs import (
    CANCELLED_MESSAGE,
    ImportJob,
    JobAlreadyActiveError,
    JobCancelledError,
    JobKind,
    JobNotFoundError,
    error_ring,
)
from contact_reconciler.sync.matcher import MatchConfig, MatchResult, MatchType, SimilarityMatcher
from contact_reconciler.sync.normalizer import normalize
from contact_reconciler.sync.pipeline import (
    IntegrationError,
    ReconciliationPipeline,
    SyncResult,
    persist_deferred_conflicts,
)
from contact_reconciler.sync.records import (
    PROVIDERS,
    ContactRecord,
    Integration,
    IntegrationLink,
    LocalContact,
    format_timestamp,
    new_id,
    utc_now,
)
from contact_reconciler.sync.worker import JobRunner

logger = logging.getLogger(__name__)

# Push outcomes
PUSH_CREATED = "created"
PUSH_UPDATED = "updated"
PUSH_UNCHANGED = "unchanged"

# Previews never write, so the duplicate flags only shape the report
PREVIEW_IMPORT_CONFIG = ImportConfig(skip_duplicates=True, update_existing=False)

ClientSource = Union[
    Mapping[str, DirectoryClient], Callable[[Integration], DirectoryClient]
]


class ContactNotFoundError(Exception):
    """Raised when a local contact does not exist or has been deleted."""

    pass


@dataclass
class ImportPreview:
    """
    What an import would do, computed without touching the store.

    Attributes:
        total_fetched: Records returned by the directory
        new: Records that would become new local contacts
        duplicates: Records matched to an existing local contact
        summary: new / exact / potential counts over the selected records
        tags_preview: Every tag the import would write, after tag rules
    """

    total_fetched: int
    new: list[ContactRecord] = field(default_factory=list)
    duplicates: list[MatchResult] = field(default_factory=list)
    summary: DedupSummary = field(default_factory=DedupSummary)
    tags_preview: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFetched": self.total_fetched,
            "summary": self.summary.to_dict(),
            "new": [str(r) for r in self.new],
            "duplicates": [
                {
                    "externalId": m.imported_record.external_id,
                    "contactId": m.existing_contact.id,
                    "matchType": m.match_type.value,
                    "similarity": round(m.similarity, 4),
                    "matchedFields": list(m.matched_fields),
                }
                for m in self.duplicates
            ],
            "tagsPreview": list(self.tags_preview),
        }


@dataclass
class BidirectionalSyncResult:
    """Outcome of pushing one local contact to a directory."""

    contact_id: str
    integration_id: str
    external_id: str
    action: str
    conflicts_found: int = 0
    auto_resolved: int = 0
    deferred: int = 0
    pushed_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "contactId": self.contact_id,
            "integrationId": self.integration_id,
            "externalId": self.external_id,
            "action": self.action,
            "conflictsFound": self.conflicts_found,
            "conflictsAutoResolved": self.auto_resolved,
            "conflictsDeferred": self.deferred,
            "pushedFields": list(self.pushed_fields),
        }


class ContactSyncService:
    """
    Entry point for contact import, sync and write-back.

    Usage:
        service = ContactSyncService(store, {integration.id: client})
        job_id = service.start_import(integration.id, {
            "skipDuplicates": True,
            "updateExisting": False,
        })
        job = service.wait_for_job(job_id)
        result = service.start_incremental_sync(integration.id)
        service.close()

    ``clients`` is either a mapping from integration id to DirectoryClient
    or a factory called with the Integration the first time its client is
    needed.
    """

    def __init__(
        self,
        store: ContactStore,
        clients: ClientSource,
        runner: Optional[JobRunner] = None,
        settings: Optional[Settings] = None,
        pipeline: Optional[ReconciliationPipeline] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the service.

        Args:
            store: Initialized contact store
            clients: Directory clients by integration id, or a factory
            runner: Job runner (one is created and owned if None)
            settings: Runtime settings (defaults if None)
            pipeline: Reconciliation pipeline (built from settings if None)
            clock: Time source (injectable for tests)
        """
        self.store = store
        self.settings = settings or Settings()
        self.clock = clock or utc_now
        self.engine = DeduplicationEngine(
            SimilarityMatcher(
                MatchConfig(
                    fuzzy_threshold=self.settings.fuzzy_threshold,
                    default_country_code=self.settings.default_country_code,
                )
            )
        )
        self.pipeline = pipeline or ReconciliationPipeline(
            store,
            batch_size=self.settings.batch_size,
            engine=self.engine,
            clock=self.clock,
        )
        self._owns_runner = runner is None
        self.runner = runner or JobRunner(max_workers=self.settings.max_workers)
        self._clients = clients
        self._client_cache: dict[str, DirectoryClient] = {}
        self._client_lock = threading.Lock()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_integration(self, integration_id: str, active: bool = True) -> Integration:
        integration = self.store.get_integration(integration_id)
        if integration is None:
            raise IntegrationError(f"Integration {integration_id} not found")
        if active and not integration.is_active:
            raise IntegrationError(f"Integration {integration_id} is disconnected")
        return integration

    def client_for(self, integration: Integration) -> DirectoryClient:
        """
        Return the directory client for an integration.

        Raises:
            IntegrationError: If no client is configured for it
        """
        if isinstance(self._clients, Mapping):
            client = self._clients.get(integration.id)
            if client is None:
                raise IntegrationError(
                    f"No directory client configured for integration {integration.id}"
                )
            return client

        with self._client_lock:
            client = self._client_cache.get(integration.id)
            if client is None:
                client = self._clients(integration)
                self._client_cache[integration.id] = client
            return client

    def fetcher_for(self, integration: Integration) -> DirectoryFetcher:
        return DirectoryFetcher(
            self.client_for(integration),
            max_retries=self.settings.max_retries,
            initial_retry_delay=self.settings.initial_retry_delay,
            max_retry_delay=self.settings.max_retry_delay,
        )

    def _new_job(self, integration: Integration, kind: JobKind) -> ImportJob:
        return ImportJob(
            user_id=integration.user_id,
            integration_id=integration.id,
            kind=kind,
            errors=error_ring(self.settings.max_job_errors),
        )

    def _fail_if_cancelled(self, job: ImportJob, cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            error = JobCancelledError(f"Job {job.id} was cancelled before it started")
            self.pipeline.fail_job(job, error)
            raise error

    @staticmethod
    def _coerce_config(config: Union[ImportConfig, Mapping[str, Any], None]) -> ImportConfig:
        if isinstance(config, ImportConfig):
            return config
        return ImportConfig.from_dict(dict(config) if config is not None else None)

    # =========================================================================
    # Integrations
    # =========================================================================

    def connect_integration(
        self,
        user_id: str,
        provider: str,
        name: str = "",
        conflict_strategy: Union[ConflictStrategy, str, None] = None,
        write_back: bool = False,
        integration_id: Optional[str] = None,
    ) -> Integration:
        """
        Register a user's connection to a directory.

        Raises:
            IntegrationError: If the provider or strategy is unknown
        """
        provider = provider.upper()
        if provider not in PROVIDERS:
            raise IntegrationError(
                f"Unknown provider '{provider}'. Must be one of: {', '.join(PROVIDERS)}"
            )
        try:
            strategy = ConflictStrategy.parse(
                conflict_strategy or self.settings.default_conflict_strategy
            )
        except ValueError as e:
            raise IntegrationError(str(e)) from e

        integration = Integration(
            id=integration_id or new_id(),
            user_id=user_id,
            provider=provider,
            name=name or provider.title(),
            conflict_strategy=strategy.value,
            write_back=write_back,
            created_at=self.clock(),
        )
        self.store.create_integration(integration)
        logger.info(
            f"Connected {provider} integration {integration.id} for user {user_id} "
            f"(strategy={strategy.value}, write_back={write_back})"
        )
        return integration

    def disconnect(self, integration_id: str) -> dict[str, Any]:
        """
        Disconnect an integration.

        Links are deleted, the integration is deactivated and its cursor is
        cleared in one transaction. Local contacts are kept.

        Raises:
            IntegrationError: If the integration does not exist
            JobAlreadyActiveError: If a job is running for it
        """
        integration = self._require_integration(integration_id, active=False)
        active_job = self.runner.active_job_id(integration.user_id, integration.id)
        if active_job is not None:
            raise JobAlreadyActiveError(
                f"Cannot disconnect integration {integration.id} while job "
                f"{active_job} is running"
            )

        integration.is_active = False
        with self.store.unit_of_work() as uow:
            links_deleted = uow.delete_links(integration.id)
            cursor_cleared = uow.delete_cursor(integration.id)
            uow.update_integration(integration)

        with self._client_lock:
            self._client_cache.pop(integration.id, None)

        logger.info(
            f"Disconnected integration {integration.id}: {links_deleted} link(s) deleted"
        )
        return {"links_deleted": links_deleted, "cursor_cleared": cursor_cleared}

    def get_integration_status(self, integration_id: str) -> dict[str, Any]:
        integration = self._require_integration(integration_id, active=False)
        cursor = self.store.get_cursor(integration.id)
        return {
            "integrationId": integration.id,
            "provider": integration.provider,
            "name": integration.name,
            "connected": integration.is_active,
            "writeBack": integration.write_back,
            "conflictStrategy": integration.conflict_strategy,
            "lastSyncAt": format_timestamp(cursor.last_sync_at) if cursor else None,
            "hasCursor": bool(cursor and cursor.cursor),
            "syncedContacts": self.store.count_links(integration.id),
            "pendingConflicts": len(self.store.list_conflicts(integration.id)),
            "activeJobId": self.runner.active_job_id(integration.user_id, integration.id),
        }

    def list_integrations(self, user_id: Optional[str] = None) -> list[Integration]:
        return self.store.list_integrations(user_id)

    def list_folders(self, integration_id: str) -> list[dict[str, Any]]:
        """
        List the contact folders of a directory that has them.

        Raises:
            IntegrationError: If the directory has no folder support
        """
        integration = self._require_integration(integration_id)
        client = self.client_for(integration)
        lister = getattr(client, "list_folders", None)
        if lister is None:
            raise IntegrationError(
                f"{integration.provider} directories do not expose contact folders"
            )
        return lister()

    def reset_cursor(self, integration_id: str) -> bool:
        """Drop the stored cursor so the next sync lists everything."""
        integration = self._require_integration(integration_id, active=False)
        return self.pipeline.cursors.clear(integration.id)

    # =========================================================================
    # Imports
    # =========================================================================

    def preview_import(
        self,
        integration_id: str,
        config: Union[ImportConfig, Mapping[str, Any], None] = None,
    ) -> ImportPreview:
        """
        Fetch and classify a directory's contacts without importing them.

        Records already linked to a local contact count as exact duplicates.
        """
        integration = self._require_integration(integration_id)
        config = self._coerce_config(config) if config is not None else PREVIEW_IMPORT_CONFIG

        fetched = self.fetcher_for(integration).fetch_all()
        records = [r for r in (normalize(raw) for raw in fetched.records) if config.accepts(r)]
        # One consistent snapshot; matching runs after the read lock is gone
        with self.store.unit_of_work(read_only=True) as uow:
            contacts = {c.id: c for c in uow.list_contacts(integration.user_id)}
            links = {
                record.external_id: uow.get_link(integration.id, record.external_id)
                for record in records
            }
        candidates = self.engine.build_index(contacts.values())

        preview = ImportPreview(total_fetched=len(fetched.records))
        for record in records:
            link = links[record.external_id]
            if link is not None and link.contact_id in contacts:
                match = MatchResult(
                    imported_record=record,
                    existing_contact=contacts[link.contact_id],
                    similarity=1.0,
                    match_type=MatchType.EXACT,
                    matched_fields=["external_id"],
                )
            else:
                match = self.engine.classify(record, candidates)

            if match is None:
                preview.new.append(record)
            else:
                preview.duplicates.append(match)

        preview.summary = self.engine.summarize(records, preview.duplicates)
        preview.tags_preview = sorted(
            {tag for record in records for tag in config.apply_tag_rules(record.tags)}
        )
        logger.info(
            f"Preview for integration {integration.id}: {preview.summary.new} new, "
            f"{preview.summary.duplicates} duplicate(s) of {len(records)} selected"
        )
        return preview

    def start_import(
        self,
        integration_id: str,
        config: Union[ImportConfig, Mapping[str, Any]],
    ) -> str:
        """
        Queue a one-shot import and return its job id.

        The job fetches every page, keeps the records the config accepts,
        and runs them through the pipeline in the background.

        Raises:
            IntegrationError: If the integration is missing or disconnected
            ImportConfigError: If the config is invalid
            JobAlreadyActiveError: If the integration already has an active job
        """
        integration = self._require_integration(integration_id)
        config = self._coerce_config(config)
        job = self._new_job(integration, JobKind.IMPORT)
        fetcher = self.fetcher_for(integration)

        def work(cancel_event: threading.Event) -> list[str]:
            self._fail_if_cancelled(job, cancel_event)
            try:
                self.pipeline.begin_job(job)
                fetched = fetcher.fetch_all()
                records = [normalize(raw) for raw in fetched.records]
            except BaseException as e:
                self.pipeline.fail_job(job, e)
                raise
            selected = [r for r in records if config.accepts(r)]
            logger.info(
                f"Job {job.id}: {len(selected)} of {len(records)} fetched records selected"
            )
            return self.pipeline.run_import(job, selected, config, cancel_event=cancel_event)

        self.runner.submit(job, work, on_accept=lambda: self.store.save_job(job))
        logger.info(f"Queued import job {job.id} for integration {integration.id}")
        return job.id

    def get_job_status(self, job_id: str) -> ImportJob:
        """
        Return the stored state of a job.

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> ImportJob:
        """
        Block until a job dispatched by this service ends and return its state.

        A job that raised is reported through its FAILED status and
        error_message.
        """
        try:
            self.runner.wait(job_id, timeout=timeout)
        except FutureTimeoutError:
            raise
        except JobNotFoundError:
            # Finished long ago and dropped by the runner; the store has the outcome
            job = self.store.get_job(job_id)
            if job is None or not job.is_terminal:
                raise
            return job
        except Exception as e:
            logger.debug(f"Job {job_id} ended with {type(e).__name__}: {e}")
        return self.get_job_status(job_id)

    def list_jobs(self, integration_id: str, limit: int = 20) -> list[ImportJob]:
        return self.store.list_jobs(integration_id, limit)

    def cancel_job(self, job_id: str) -> bool:
        """
        Request cancellation of a job.

        A running job stops at its next batch boundary. A job left QUEUED or
        PROCESSING by a process that is gone is failed directly.

        Returns:
            False if the job had already finished
        """
        job = self.get_job_status(job_id)
        if job.is_terminal:
            return False
        if self.runner.cancel(job_id):
            return True

        # No live worker: the job may have finished since it was read
        with self.store.unit_of_work() as uow:
            current = uow.get_job(job_id)
            if current is None or current.is_terminal:
                return False
            current.fail(CANCELLED_MESSAGE)
            uow.save_job(current)
        logger.warning(f"Job {job_id} cancelled without a running worker")
        return True

    # =========================================================================
    # Incremental sync
    # =========================================================================

    def start_incremental_sync(self, integration_id: str) -> SyncResult:
        """
        Run an incremental sync as a SYNC job and wait for its result.

        Raises:
            IntegrationError: If the integration is missing or disconnected
            JobAlreadyActiveError: If the integration already has an active job
            Whatever stopped the job (the job is FAILED)
        """
        integration = self._require_integration(integration_id)
        job = self._new_job(integration, JobKind.SYNC)
        fetcher = self.fetcher_for(integration)

        def work(cancel_event: threading.Event) -> SyncResult:
            self._fail_if_cancelled(job, cancel_event)
            return self.pipeline.run_incremental(
                job, integration, fetcher, cancel_event=cancel_event
            )

        future = self.runner.submit(job, work, on_accept=lambda: self.store.save_job(job))
        result = future.result()
        logger.info(result.summary(integration.name or integration.provider))
        return result

    # =========================================================================
    # Write-back
    # =========================================================================

    def _write_back_integration(
        self, contact: LocalContact, integration_id: Optional[str]
    ) -> Integration:
        if integration_id is not None:
            integration = self._require_integration(integration_id)
            if integration.user_id != contact.user_id:
                raise IntegrationError(
                    f"Integration {integration.id} does not belong to user {contact.user_id}"
                )
            if not integration.write_back:
                raise IntegrationError(
                    f"Integration {integration.id} does not have write-back enabled"
                )
            return integration

        candidates = [
            i for i in self.store.list_integrations(contact.user_id) if i.is_active and i.write_back
        ]
        if not candidates:
            raise IntegrationError(
                f"User {contact.user_id} has no integration with write-back enabled"
            )
        with self.store.unit_of_work() as uow:
            linked = {link.integration_id for link in uow.list_links_for_contact(contact.id)}
        for integration in candidates:
            if integration.id in linked:
                return integration
        return candidates[0]

    def push_contact(
        self, contact_id: str, integration_id: Optional[str] = None
    ) -> BidirectionalSyncResult:
        """
        Push a local contact to a write-back directory.

        An unlinked contact is created remotely and linked. A linked one is
        reconciled against the fetched remote record with the integration's
        conflict strategy: remote winners are written locally, conflicts
        deferred to manual review are stored, and the rest is pushed.

        Raises:
            ContactNotFoundError: If the contact is missing or deleted
            IntegrationError: If no usable write-back integration exists
            DirectoryError: If the directory call fails
        """
        contact = self.store.get_contact(contact_id)
        if contact is None or contact.is_deleted:
            raise ContactNotFoundError(f"Contact {contact_id} not found")

        integration = self._write_back_integration(contact, integration_id)
        client = self.client_for(integration)
        if not getattr(client, "supports_write_back", False):
            raise IntegrationError(f"{integration.provider} client does not support write-back")
        fetcher = self.fetcher_for(integration)

        with self.store.unit_of_work() as uow:
            link = uow.get_link_for_contact(integration.id, contact.id)
            held = {
                c.field
                for c in uow.list_conflicts(integration.id, ConflictStatus.PENDING, contact.id)
            }

        if link is None:
            external_id = fetcher.create_contact(contact)
            with self.store.unit_of_work() as uow:
                uow.insert_link(
                    IntegrationLink(
                        integration_id=integration.id,
                        contact_id=contact.id,
                        external_id=external_id,
                        last_synced_at=self.clock(),
                    )
                )
            logger.info(f"Created {integration.provider} contact {external_id} for {contact}")
            return BidirectionalSyncResult(
                contact_id=contact.id,
                integration_id=integration.id,
                external_id=external_id,
                action=PUSH_CREATED,
                pushed_fields=[f for f in SYNCABLE_FIELDS if has_value(getattr(contact, f))],
            )

        remote = normalize(fetcher.get_contact(link.external_id))
        resolver = self.pipeline.resolver_factory(
            ConflictStrategy.parse(integration.conflict_strategy)
        )
        plan = resolver.plan(
            contact,
            remote,
            link.last_synced_at,
            default_side=ConflictSide.LOCAL,
            held_fields=held,
        )
        result = BidirectionalSyncResult(
            contact_id=contact.id,
            integration_id=integration.id,
            external_id=link.external_id,
            action=PUSH_UPDATED if plan.needs_push or plan.local_updates else PUSH_UNCHANGED,
            conflicts_found=plan.outcome.conflicts_found,
            auto_resolved=plan.outcome.auto_resolved,
            deferred=plan.outcome.deferred,
            pushed_fields=list(plan.remote_fields),
        )

        if plan.local_updates or plan.deferred_fields:
            with self.store.unit_of_work() as uow:
                if plan.local_updates:
                    for name, value in plan.local_updates.items():
                        setattr(contact, name, value)
                    contact.updated_at = self.clock()
                    uow.update_contact(contact)
                persist_deferred_conflicts(uow, integration.id, plan)

        if plan.needs_push:
            fetcher.update_contact(link.external_id, plan.contact_for_push(contact, remote))
            logger.info(
                f"Pushed {', '.join(plan.remote_fields)} of {contact} to "
                f"{integration.provider}"
            )

        link.last_synced_at = self.clock()
        with self.store.unit_of_work() as uow:
            uow.upsert_link(link)
        return result

    # =========================================================================
    # Conflicts
    # =========================================================================

    def list_pending_conflicts(self, integration_id: Optional[str] = None) -> list[Conflict]:
        return self.store.list_conflicts(integration_id, ConflictStatus.PENDING)

    def resolve_conflicts(
        self,
        conflicts: Sequence[Conflict],
        strategy: Union[ConflictStrategy, str],
    ) -> list[ResolvedConflict]:
        """
        Resolve conflicts with an explicit strategy.

        Resolution itself is pure. Conflicts that were stored (they have an
        id) and receive a winner are marked resolved: remote winners are
        written to the local contact, local winners are pushed to the
        directory when its integration allows write-back.

        Returns:
            One ResolvedConflict per input conflict, same order
        """
        strategy = ConflictStrategy.parse(strategy)
        resolutions = self.pipeline.resolver_factory(strategy).resolve(list(conflicts), strategy)

        decided = [
            (conflict, resolved)
            for conflict, resolved in zip(conflicts, resolutions)
            if conflict.id is not None and not resolved.is_deferred
        ]
        if not decided:
            return resolutions

        changed: dict[str, LocalContact] = {}
        local_wins: dict[tuple[str, str], dict[str, Any]] = {}
        with self.store.unit_of_work() as uow:
            for conflict, resolved in decided:
                assert resolved.winner is not None
                if not uow.mark_conflict_resolved(
                    conflict.id, resolved.winner.value, resolved.resolved_value
                ):
                    continue
                if resolved.winner == ConflictSide.REMOTE:
                    contact = changed.get(conflict.contact_id) or uow.get_contact(
                        conflict.contact_id
                    )
                    if contact is None:
                        continue
                    setattr(contact, conflict.field, resolved.resolved_value)
                    contact.updated_at = self.clock()
                    changed[contact.id] = contact
                elif conflict.integration_id:
                    key = (conflict.integration_id, conflict.contact_id)
                    local_wins.setdefault(key, {})[conflict.field] = resolved.resolved_value
            for contact in changed.values():
                uow.update_contact(contact)

        for (integration_id, contact_id), values in local_wins.items():
            self._push_resolved(integration_id, contact_id, values)

        logger.info(
            f"Resolved {len(decided)} conflict(s) with {strategy.value}: "
            f"{len(changed)} contact(s) updated locally, "
            f"{len(local_wins)} pushed to directories"
        )
        return resolutions

    def _push_resolved(self, integration_id: str, contact_id: str, values: dict[str, Any]) -> None:
        """
        Write locally-won field values to the directory.

        Every other field keeps its current remote value, so pending
        conflicts and unsynced remote edits are left alone.
        """
        integration = self.store.get_integration(integration_id)
        if integration is None or not integration.is_active or not integration.write_back:
            logger.info(
                f"Integration {integration_id} cannot be written to; "
                f"resolved values for {contact_id} stay local"
            )
            return
        contact = self.store.get_contact(contact_id)
        with self.store.unit_of_work() as uow:
            link = uow.get_link_for_contact(integration_id, contact_id)
        if contact is None or link is None:
            return

        try:
            fetcher = self.fetcher_for(integration)
            remote = normalize(fetcher.get_contact(link.external_id))
            pushed = replace(contact, tags=list(contact.tags), metadata=dict(contact.metadata))
            for name in SYNCABLE_FIELDS:
                setattr(pushed, name, values[name] if name in values else getattr(remote, name))
            fetcher.update_contact(link.external_id, pushed)
        except (DirectoryError, IntegrationError) as e:
            logger.warning(
                f"Could not push resolved fields {', '.join(values)} of {contact_id}: {e}"
            )
            return
        logger.info(f"Pushed resolved fields {', '.join(values)} of {contact_id}")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Stop the runner if this service created it."""
        if self._owns_runner:
            self.runner.shutdown(wait=True, cancel_running=True)

    def __enter__(self) -> "ContactSyncService":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
