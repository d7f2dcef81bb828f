"""
Tests for the reconciliation pipeline.

Covers one-shot imports, incremental sync with cursors, per-record and
per-batch failure handling, cancellation and write-back.
"""

import hashlib
import sqlite3
import threading
from unittest.mock import patch

import pytest

from conftest import USER_ID, google_person, make_contact, utc
from contact_reconciler.api.base import DirectoryError, DirectoryPage
from contact_reconciler.config.import_config import ImportConfig
from contact_reconciler.sync.conflict import ConflictStrategy
from contact_reconciler.sync.jobs import (
    BatchFailedError,
    ImportJob,
    JobCancelledError,
    JobKind,
    JobStatus,
)
from contact_reconciler.sync.normalizer import normalize
from contact_reconciler.sync.pipeline import IntegrationError, ReconciliationPipeline, _RunContext
from contact_reconciler.sync.records import PROVIDER_GOOGLE, ContactRecord

SKIP = ImportConfig(skip_duplicates=True, update_existing=False)
UPDATE = ImportConfig(skip_duplicates=True, update_existing=True)


class Clock:
    """Settable time source."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(utc(2024, 1, 10))


@pytest.fixture
def pipeline(store, clock):
    return ReconciliationPipeline(store, batch_size=2, clock=clock)


def import_job(integration):
    return ImportJob(user_id=integration.user_id, integration_id=integration.id)


def sync_job(integration):
    return ImportJob(user_id=integration.user_id, integration_id=integration.id, kind=JobKind.SYNC)


def rec(external_id, first, last=None, email=None, phone=None, tags=()):
    return ContactRecord(
        external_id=external_id,
        first_name=first,
        last_name=last,
        email=email,
        phone=phone,
        tags=list(tags),
    )


def distinct_name(i):
    """Names far enough apart that no two of them fuzzy-match."""
    return hashlib.sha256(str(i).encode()).hexdigest()


# =============================================================================
# One-shot import
# =============================================================================


class TestRunImport:
    """Tests for importing a fetched record set."""

    def test_new_records_create_contacts_and_links(self, store, integration, pipeline):
        job = import_job(integration)
        touched = pipeline.run_import(
            job,
            [rec("people/c1", "John", "Doe", tags=["friends"]), rec("people/c2", "Jane", "Roe")],
            SKIP,
        )

        assert len(touched) == 2
        assert job.status == JobStatus.COMPLETED
        assert (job.imported_count, job.skipped_count, job.processed_count) == (2, 0, 2)

        contacts = store.list_contacts(USER_ID)
        assert sorted(c.first_name for c in contacts) == ["Jane", "John"]
        john = next(c for c in contacts if c.first_name == "John")
        assert john.source == PROVIDER_GOOGLE
        assert john.tags == ["friends"]
        assert store.get_link(integration.id, "people/c1").contact_id == john.id
        assert store.get_job(job.id).status == JobStatus.COMPLETED

    def test_one_new_one_duplicate(self, store, integration, pipeline):
        """A record matching an existing contact is skipped, the other imported."""
        store.create_contact(make_contact("c-existing", "John", "Doe", email="john@example.com"))
        job = import_job(integration)

        pipeline.run_import(
            job,
            [
                rec("people/c1", "Johnny", "Doe", email="john@example.com"),
                rec("people/c2", "Alice", "Walker"),
            ],
            SKIP,
        )

        assert job.imported_count == 1
        assert job.skipped_count == 1
        assert len(store.list_contacts(USER_ID)) == 2
        assert store.get_link(integration.id, "people/c1") is None

    def test_import_is_idempotent(self, store, integration, pipeline):
        """Importing the same records twice creates nothing the second time."""
        records = [rec("people/c1", "John", "Doe"), rec("people/c2", "Jane", "Roe")]
        pipeline.run_import(import_job(integration), records, SKIP)

        second = import_job(integration)
        pipeline.run_import(second, records, SKIP)

        assert second.imported_count == 0
        assert second.skipped_count == 2
        assert len(store.list_contacts(USER_ID)) == 2

    def test_duplicates_inside_one_batch(self, store, integration, pipeline):
        """A record duplicating one created earlier in the same batch is caught."""
        job = import_job(integration)
        pipeline.run_import(
            job,
            [
                rec("people/c1", "John", "Doe", email="john@example.com"),
                rec("people/c2", "J.", "Doe", email="JOHN@example.com"),
            ],
            SKIP,
        )

        assert (job.imported_count, job.skipped_count) == (1, 1)
        assert len(store.list_contacts(USER_ID)) == 1

    def test_duplicates_across_batches(self, store, integration, pipeline):
        job = import_job(integration)
        pipeline.run_import(
            job,
            [
                rec("people/c1", "John", "Doe", email="john@example.com"),
                rec("people/c2", "Alice", "Walker"),
                rec("people/c3", "Jon", "Doe"),
            ],
            SKIP,
        )
        assert (job.imported_count, job.skipped_count) == (2, 1)

    def test_update_existing_merges_without_wiping(self, store, integration, pipeline):
        existing = make_contact("c1", "John", "Doe", email="john@example.com", phone="+15550100")
        existing.tags = ["vip"]
        store.create_contact(existing)
        job = import_job(integration)

        pipeline.run_import(
            job,
            [rec("people/c1", "John", "Doe", email="john@example.com", tags=["friends"])],
            UPDATE,
        )

        updated = store.get_contact("c1")
        assert job.updated_count == 1
        assert updated.phone == "+15550100"
        assert updated.tags == ["vip", "friends"]
        assert store.get_link(integration.id, "people/c1").contact_id == "c1"

    def test_matched_record_skipped_when_neither_flag_set(self, store, integration, pipeline):
        store.create_contact(make_contact("c1", "John", "Doe"))
        job = import_job(integration)
        pipeline.run_import(
            job, [rec("people/c1", "John", "Doe")], ImportConfig(False, False)
        )
        assert job.skipped_count == 1

    def test_tag_rules_applied(self, store, integration, pipeline):
        config = ImportConfig(
            skip_duplicates=True,
            update_existing=False,
            tag_mapping={"myContacts": "personal"},
            exclude_tags=["starred"],
        )
        pipeline.run_import(
            import_job(integration),
            [rec("people/c1", "John", tags=["myContacts", "starred", "friends"])],
            config,
        )
        assert store.list_contacts(USER_ID)[0].tags == ["personal", "friends"]

    def test_bad_record_fails_alone(self, store, integration, pipeline):
        """A failing record is charged to its external id; the batch survives."""
        job = import_job(integration)
        pipeline.run_import(job, [rec("", "Nameless"), rec("people/c2", "Jane")], SKIP)

        assert job.status == JobStatus.COMPLETED
        assert (job.imported_count, job.failed_count) == (1, 1)
        assert job.errors[0].external_id == "(unknown)"
        assert "no external id" in job.errors[0].message

    def test_all_failing_batch_aborts(self, store, integration, pipeline):
        """A batch in which every record fails is rolled back and fails the job."""
        job = import_job(integration)
        with pytest.raises(BatchFailedError):
            pipeline.run_import(job, [rec("", "A"), rec("", "B")], SKIP)

        stored = store.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.failed_count == 2
        assert store.list_contacts(USER_ID) == []

    def test_error_ring_bounded_across_batches(self, store, integration, clock):
        """Per-record errors keep only the most recent 100."""
        pipeline = ReconciliationPipeline(store, batch_size=50, clock=clock)
        records = [
            rec("" if i % 2 else f"people/c{i}", distinct_name(i)) for i in range(250)
        ]
        job = import_job(integration)

        pipeline.run_import(job, records, SKIP)

        assert job.failed_count == 125
        assert job.imported_count == 125
        assert len(job.errors) == 100
        assert len(store.get_job(job.id).errors) == 100

    def test_cancel_before_start(self, store, integration, pipeline):
        cancel = threading.Event()
        cancel.set()
        job = import_job(integration)

        with pytest.raises(JobCancelledError):
            pipeline.run_import(job, [rec("people/c1", "John")], SKIP, cancel_event=cancel)

        assert store.get_job(job.id).was_cancelled
        assert store.list_contacts(USER_ID) == []

    def test_cancel_between_batches_keeps_committed_work(self, store, integration, pipeline):
        """Cancellation takes effect at the next batch boundary."""
        cancel = threading.Event()
        job = import_job(integration)
        records = [rec(f"people/c{i}", distinct_name(i)) for i in range(5)]

        with pytest.raises(JobCancelledError):
            pipeline.run_import(
                job, records, SKIP, cancel_event=cancel, progress_callback=lambda _: cancel.set()
            )

        stored = store.get_job(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.error_message == "cancelled"
        assert stored.processed_count == 2
        assert len(store.list_contacts(USER_ID)) == 2

    def test_progress_callback_gets_snapshots(self, integration, pipeline):
        seen = []
        records = [rec(f"people/c{i}", distinct_name(i)) for i in range(3)]
        pipeline.run_import(
            import_job(integration), records, SKIP, progress_callback=seen.append
        )
        assert [s.processed_count for s in seen] == [2, 3]

    def test_unknown_integration(self, store, pipeline):
        job = ImportJob(user_id=USER_ID, integration_id="missing")
        with pytest.raises(IntegrationError):
            pipeline.run_import(job, [], SKIP)
        assert job.status == JobStatus.FAILED

    def test_invalid_batch_size(self, store):
        with pytest.raises(ValueError):
            ReconciliationPipeline(store, batch_size=0)


# =============================================================================
# Incremental sync
# =============================================================================


class TestRunIncremental:
    """Tests for cursor-based sync."""

    def test_first_sync_is_full_and_stores_cursor(self, store, integration, pipeline, client):
        client.set_listing(
            [google_person("people/c1", "John", "Doe"), google_person("people/c2", "Jane", "Roe")]
        )
        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert result.full_sync
        assert result.added == 2
        assert result.cursor_advanced
        assert store.get_cursor(integration.id).cursor == "sync-1"

    def test_changes_and_removals(self, store, integration, pipeline, client, clock):
        client.set_listing(
            [google_person("people/c1", "John", "Doe"), google_person("people/c2", "Jane", "Roe")]
        )
        pipeline.run_incremental(sync_job(integration), integration, client)

        clock.now = utc(2024, 1, 11)
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+1 555 010 0100")],
            cursor="sync-1",
            next_cursor="sync-2",
            removed=["people/c2", "people/unknown"],
        )
        job = sync_job(integration)
        result = pipeline.run_incremental(job, integration, client)

        assert not result.full_sync
        assert (result.updated, result.deleted, result.skipped) == (1, 1, 1)
        assert store.get_cursor(integration.id).cursor == "sync-2"

        jane_link = store.get_link(integration.id, "people/c2")
        assert store.get_contact(jane_link.contact_id).deleted_at == utc(2024, 1, 11)
        john_link = store.get_link(integration.id, "people/c1")
        assert store.get_contact(john_link.contact_id).phone == "+1 555 010 0100"
        assert job.deleted_count == 1

    def test_replaying_a_listing_is_idempotent(self, store, integration, pipeline, client):
        client.set_listing([google_person("people/c1", "John", "Doe")])
        pipeline.run_incremental(sync_job(integration), integration, client)
        pipeline.cursors.clear(integration.id)

        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert (result.added, result.updated) == (0, 1)
        assert len(store.list_contacts(USER_ID)) == 1

    def test_new_remote_contact_links_to_existing(self, store, integration, pipeline, client):
        """Incremental sync links an exact duplicate instead of creating one."""
        store.create_contact(make_contact("c1", "John", "Doe", email="john@example.com"))
        client.set_listing([google_person("people/c9", "John", "Doe", email="john@example.com")])

        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert (result.added, result.updated) == (0, 1)
        assert store.get_link(integration.id, "people/c9").contact_id == "c1"

    def test_expired_cursor_falls_back_to_full_sync(self, store, integration, pipeline, client):
        pipeline.cursors.advance(integration.id, "stale")
        client.expired_cursors.add("stale")
        client.set_listing([google_person("people/c1", "John")], next_cursor="fresh")

        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert result.full_sync
        assert result.added == 1
        assert store.get_cursor(integration.id).cursor == "fresh"
        assert [cursor for cursor, _ in client.fetch_calls] == ["stale", None]

    def test_cursor_untouched_when_a_batch_fails(
        self, store, integration, pipeline, client, clock, monkeypatch
    ):
        """A store failure mid-page leaves the old cursor; replaying adds no duplicates."""
        pipeline.cursors.advance(integration.id, "sync-1")
        client.set_listing(
            [google_person(f"people/c{i}", distinct_name(i)) for i in range(6)],
            cursor="sync-1",
            next_cursor="sync-2",
        )

        original = pipeline._apply_record
        calls = []

        def failing(uow, ctx, record):
            calls.append(record.external_id)
            if len(calls) == 4:
                raise sqlite3.OperationalError("database is locked")
            return original(uow, ctx, record)

        monkeypatch.setattr(pipeline, "_apply_record", failing)
        job = sync_job(integration)
        with pytest.raises(sqlite3.OperationalError):
            pipeline.run_incremental(job, integration, client)

        assert store.get_cursor(integration.id).cursor == "sync-1"
        assert store.get_job(job.id).status == JobStatus.FAILED
        assert len(store.list_contacts(USER_ID)) == 2

        replay = ReconciliationPipeline(store, batch_size=2, clock=clock)
        result = replay.run_incremental(sync_job(integration), integration, client)

        assert (result.added, result.updated) == (4, 2)
        assert len(store.list_contacts(USER_ID)) == 6
        assert store.get_cursor(integration.id).cursor == "sync-2"

    def test_cursor_advances_per_page(self, store, integration, pipeline, client):
        """Only a page carrying a cursor advances it."""
        client.set_pages(
            [
                DirectoryPage(records=[google_person("people/c1", "John")]),
                DirectoryPage(records=[google_person("people/c2", "Jane")], next_sync_cursor="end"),
            ]
        )
        result = pipeline.run_incremental(sync_job(integration), integration, client)
        assert result.added == 2
        assert store.get_cursor(integration.id).cursor == "end"

    def test_summary_text(self, integration, pipeline, client):
        client.set_listing([google_person("people/c1", "John")])
        result = pipeline.run_incremental(sync_job(integration), integration, client)
        text = result.summary("Work")
        assert "Sync Summary (Work, full):" in text
        assert "Added: 1" in text


# =============================================================================
# Conflicts and write-back
# =============================================================================


class TestWriteBack:
    """Tests for linked contacts on write-back integrations."""

    def _baseline(self, store, pipeline, integration, client):
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+15550100", updated="2024-01-05T00:00:00Z")]
        )
        pipeline.run_incremental(sync_job(integration), integration, client)
        return store.get_link(integration.id, "people/c1").contact_id

    def _edit_locally(self, store, contact_id, **fields):
        contact = store.get_contact(contact_id)
        for name, value in fields.items():
            setattr(contact, name, value)
        contact.updated_at = utc(2024, 1, 15)
        store.update_contact(contact)

    def test_local_edit_pushed(self, store, write_back_integration, pipeline, client, clock):
        integration = write_back_integration
        contact_id = self._baseline(store, pipeline, integration, client)
        self._edit_locally(store, contact_id, phone="+15550199")

        clock.now = utc(2024, 1, 20)
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+15550100", updated="2024-01-05T00:00:00Z")],
            cursor="sync-1",
            next_cursor="sync-2",
        )
        pipeline.run_incremental(sync_job(integration), integration, client)

        assert len(client.updated) == 1
        external_id, pushed = client.updated[0]
        assert external_id == "people/c1"
        assert pushed.phone == "+15550199"
        assert store.get_contact(contact_id).phone == "+15550199"
        assert store.get_link(integration.id, "people/c1").last_synced_at == utc(2024, 1, 20)

    def test_failed_push_is_retried_next_sync(self, store, write_back_integration, pipeline, client, clock):
        integration = write_back_integration
        contact_id = self._baseline(store, pipeline, integration, client)
        self._edit_locally(store, contact_id, phone="+15550199")

        clock.now = utc(2024, 1, 20)
        client.update_error = DirectoryError("rejected")
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+15550100", updated="2024-01-05T00:00:00Z")],
            cursor="sync-1",
            next_cursor="sync-2",
        )
        job = sync_job(integration)
        pipeline.run_incremental(job, integration, client)

        assert job.status == JobStatus.COMPLETED
        assert "write-back failed" in job.errors[-1].message
        assert store.get_link(integration.id, "people/c1").last_synced_at == utc(2024, 1, 10)

        client.update_error = None
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+15550100", updated="2024-01-05T00:00:00Z")],
            cursor="sync-2",
            next_cursor="sync-3",
        )
        pipeline.run_incremental(sync_job(integration), integration, client)
        assert client.updated[-1][1].phone == "+15550199"

    def test_last_write_wins_conflict(self, store, write_back_integration, pipeline, client, clock):
        integration = write_back_integration
        contact_id = self._baseline(store, pipeline, integration, client)
        self._edit_locally(store, contact_id, phone="+15550199")

        clock.now = utc(2024, 1, 20)
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+15550777", updated="2024-01-16T00:00:00Z")],
            cursor="sync-1",
            next_cursor="sync-2",
        )
        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert result.conflicts_found == 1
        assert result.conflicts_auto_resolved == 1
        assert store.get_contact(contact_id).phone == "+15550777"
        assert client.updated == []

    def test_manual_review_conflict_stored_once_and_held(
        self, store, write_back_integration, pipeline, client, clock
    ):
        integration = write_back_integration
        integration.conflict_strategy = ConflictStrategy.MANUAL_REVIEW.value
        store.update_integration(integration)
        contact_id = self._baseline(store, pipeline, integration, client)
        self._edit_locally(store, contact_id, phone="+15550199")

        remote = google_person(
            "people/c1", "John", "Doe", phone="+15550777", updated="2024-01-16T00:00:00Z"
        )
        clock.now = utc(2024, 1, 20)
        client.set_listing([remote], cursor="sync-1", next_cursor="sync-2")
        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert result.conflicts_deferred == 1
        pending = store.list_conflicts(integration.id)
        assert [(c.field, c.local_value, c.remote_value) for c in pending] == [
            ("phone", "+15550199", "+15550777")
        ]

        # The directory changes again; the held field still stays local
        clock.now = utc(2024, 1, 25)
        remote_again = google_person(
            "people/c1", "John", "Doe", phone="+15550777", updated="2024-01-22T00:00:00Z"
        )
        client.set_listing([remote_again], cursor="sync-2", next_cursor="sync-3")
        pipeline.run_incremental(sync_job(integration), integration, client)

        assert len(store.list_conflicts(integration.id)) == 1
        assert store.get_contact(contact_id).phone == "+15550199"
        assert client.updated == []

    def test_no_conflict_handling_without_write_back(self, store, integration, pipeline, client):
        """Plain integrations just take the directory's values."""
        contact_id = self._baseline(store, pipeline, integration, client)
        self._edit_locally(store, contact_id, phone="+15550199")
        client.set_listing(
            [google_person("people/c1", "John", "Doe", phone="+15550777", updated="2024-01-16T00:00:00Z")],
            cursor="sync-1",
            next_cursor="sync-2",
        )
        result = pipeline.run_incremental(sync_job(integration), integration, client)

        assert result.conflicts_found == 0
        assert store.get_contact(contact_id).phone == "+15550777"


class TestNormalizedInput:
    """Pipeline input comes from the normalizer."""

    def test_raw_contacts_normalize_before_import(self, store, integration, pipeline):
        records = [normalize(google_person("people/c1", "John", groups=("friends",)))]
        pipeline.run_import(import_job(integration), records, SKIP)
        assert store.list_contacts(USER_ID)[0].tags == ["friends"]



# =============================================================================
# Run-wide candidate index
# =============================================================================


class TestRunContext:
    """Tests for the candidate index kept current across batches."""

    @pytest.fixture
    def ctx(self, integration, pipeline):
        index = pipeline.engine.build_index(
            [make_contact("c1", "John", "Doe", email="john@example.com")]
        )
        return _RunContext(
            job=import_job(integration), integration=integration, config=SKIP, candidates=index
        )

    def test_staged_contact_matches_later_records(self, ctx, pipeline):
        ctx.stage(make_contact("c2", "Alice", "Walker", email="alice@example.com"))

        match = pipeline.engine.best_match(
            rec("people/c9", "A.", email="alice@example.com"), ctx.candidates
        )
        assert match.existing_contact.id == "c2"

    def test_rollback_restores_pre_batch_state(self, ctx):
        """Test that a rolled-back batch leaves no trace in the index."""
        ctx.stage(make_contact("c1", "John", "Doe", email="john@new.example"))
        ctx.stage(make_contact("c2", "Alice", "Walker"))

        ctx.rollback_staged()

        assert ctx.lookup("c1").email == "john@example.com"
        assert ctx.lookup("c2") is None
        matches = ctx.candidates.exact_candidates(rec("people/c9", "J", email="john@example.com"))
        assert [c.id for c in matches] == ["c1"]
        assert ctx.candidates.exact_candidates(rec("people/c9", "J", email="john@new.example")) == []

    def test_staged_deletion_leaves_index_until_rolled_back(self, ctx):
        gone = make_contact("c1", "John", "Doe", email="john@example.com")
        gone.deleted_at = utc(2024, 1, 5)

        ctx.stage(gone)
        assert "c1" not in ctx.candidates

        ctx.rollback_staged()
        assert "c1" in ctx.candidates

    def test_committed_contacts_survive_later_rollback(self, ctx):
        ctx.stage(make_contact("c2", "Alice", "Walker"))
        ctx.commit_staged()

        ctx.rollback_staged()
        assert ctx.lookup("c2").first_name == "Alice"

    def test_index_built_once_per_run(self, integration, pipeline):
        """Test that a multi-batch import builds its candidate index once."""
        records = [rec(f"people/c{i}", distinct_name(i)) for i in range(5)]
        with patch.object(
            pipeline.engine, "build_index", wraps=pipeline.engine.build_index
        ) as build:
            pipeline.run_import(import_job(integration), records, SKIP)

        build.assert_called_once()
