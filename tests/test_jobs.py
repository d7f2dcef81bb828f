"""Tests for the ImportJob state machine."""

import pytest

from contact_reconciler.sync.jobs import (
    CANCELLED_MESSAGE,
    MAX_JOB_ERRORS,
    ImportJob,
    InvalidJobTransitionError,
    JobKind,
    JobStatus,
    error_ring,
)


@pytest.fixture
def job():
    return ImportJob(user_id="u1", integration_id="i1")


class TestTransitions:
    """Tests for allowed and forbidden status changes."""

    def test_new_job_is_queued(self, job):
        assert job.status == JobStatus.QUEUED
        assert job.kind == JobKind.IMPORT
        assert job.started_at is None

    def test_happy_path(self, job):
        """QUEUED -> PROCESSING -> COMPLETED stamps start and end."""
        job.start()
        assert job.status == JobStatus.PROCESSING
        assert job.started_at is not None
        job.complete()
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None
        assert job.is_terminal

    def test_queued_can_fail(self, job):
        job.fail("boom")
        assert job.status == JobStatus.FAILED
        assert job.error_message == "boom"

    def test_queued_cannot_complete(self, job):
        """A job must start before it completes."""
        with pytest.raises(InvalidJobTransitionError):
            job.complete()

    @pytest.mark.parametrize("final", ["complete", "fail"])
    def test_terminal_states_are_final(self, job, final):
        job.start()
        if final == "complete":
            job.complete()
        else:
            job.fail("boom")
        with pytest.raises(InvalidJobTransitionError):
            job.start()
        with pytest.raises(InvalidJobTransitionError):
            job.fail("again")

    def test_cancelled_job(self, job):
        job.start()
        job.fail(CANCELLED_MESSAGE)
        assert job.was_cancelled

    def test_ordinary_failure_is_not_cancellation(self, job):
        job.fail("network down")
        assert not job.was_cancelled


class TestProgress:
    """Tests for progress reporting."""

    def test_zero_total(self, job):
        assert job.progress == 0

    def test_partial(self, job):
        job.total_count = 8
        job.processed_count = 3
        assert job.progress == 37

    def test_completed_is_100(self, job):
        job.start()
        job.complete()
        assert job.progress == 100


class TestErrorRing:
    """Tests for the bounded per-record error list."""

    def test_default_bound(self, job):
        """Only the most recent errors are kept."""
        for i in range(MAX_JOB_ERRORS + 50):
            job.record_error(f"ext-{i}", "bad record")

        assert len(job.errors) == MAX_JOB_ERRORS == 100
        assert job.errors[0].external_id == "ext-50"
        assert job.errors[-1].external_id == "ext-149"

    def test_custom_bound(self):
        job = ImportJob(user_id="u1", integration_id="i1", errors=error_ring(3))
        for i in range(5):
            job.record_error(f"ext-{i}", "bad")
        assert [e.external_id for e in job.errors] == ["ext-2", "ext-3", "ext-4"]

    def test_snapshot_is_independent(self, job):
        job.record_error("ext-1", "bad")
        copy = job.snapshot()
        job.record_error("ext-2", "bad")
        job.processed_count = 5

        assert len(copy.errors) == 1
        assert copy.processed_count == 0
        assert copy.errors.maxlen == job.errors.maxlen


class TestSerialization:
    """Tests for the dictionary form."""

    def test_to_dict(self, job):
        job.start()
        job.record_error("ext-1", "missing name")
        data = job.to_dict()

        assert data["status"] == "PROCESSING"
        assert data["kind"] == "IMPORT"
        assert data["errors"] == [{"externalId": "ext-1", "message": "missing name"}]
        assert data["startedAt"] is not None
        assert data["completedAt"] is None
