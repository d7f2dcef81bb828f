"""
Import job state machine.

An ImportJob tracks one import or incremental sync for a (user, integration)
pair. Status only moves forward:

    QUEUED -> PROCESSING -> COMPLETED
                         -> FAILED
    QUEUED -> FAILED            (cancelled before it started)

A terminal job is never resurrected; retrying means creating a new job.
Counters only grow, and the error list keeps the most recent MAX_JOB_ERRORS
entries.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from contact_reconciler.sync.records import format_timestamp, utc_now

# Most recent per-record errors kept on a job
MAX_JOB_ERRORS = 100

# Error message recorded on a cancelled job
CANCELLED_MESSAGE = "cancelled"


class JobError(Exception):
    """Base exception for job-related errors."""

    pass


class InvalidJobTransitionError(JobError):
    """Raised on a status change the state machine does not allow."""

    pass


class JobAlreadyActiveError(JobError):
    """Raised when a (user, integration) pair already has an active job."""

    pass


class JobCancelledError(JobError):
    """Raised at a batch boundary once cancellation has been requested."""

    pass


class JobNotFoundError(JobError):
    """Raised when a job id is unknown."""

    pass


class BatchFailedError(JobError):
    """Raised when every record in a batch failed (systemic failure)."""

    pass


class JobStatus(Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobKind(Enum):
    IMPORT = "IMPORT"
    SYNC = "SYNC"


ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class JobRecordError:
    """A per-record failure attributed to its external id."""

    external_id: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"externalId": self.external_id, "message": self.message}


def _new_job_id() -> str:
    return uuid.uuid4().hex


def error_ring(maxlen: int = MAX_JOB_ERRORS) -> deque[JobRecordError]:
    """Bounded error list; appending to a full ring evicts the oldest entry."""
    return deque(maxlen=maxlen)


@dataclass
class ImportJob:
    """
    Progress and outcome of one import or sync run.

    Attributes:
        id: Job identifier
        user_id: Owner of the local contact set
        integration_id: Integration the job reads from
        kind: IMPORT (one-shot) or SYNC (incremental)
        status: Current state machine status
        total_count: Records to process (known once fetching finishes)
        processed_count: Records processed so far
        imported_count: New local contacts created
        updated_count: Local contacts updated in place
        skipped_count: Duplicates skipped
        failed_count: Records that failed
        deleted_count: Local contacts soft-deleted on provider removal
        errors: Most recent per-record errors
        error_message: Reason a job failed ("cancelled" when cancelled)
    """

    user_id: str
    integration_id: str
    kind: JobKind = JobKind.IMPORT
    id: str = field(default_factory=_new_job_id)
    status: JobStatus = JobStatus.QUEUED
    total_count: int = 0
    processed_count: int = 0
    imported_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    deleted_count: int = 0
    errors: deque[JobRecordError] = field(default_factory=error_ring)
    error_message: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def was_cancelled(self) -> bool:
        return self.status == JobStatus.FAILED and self.error_message == CANCELLED_MESSAGE

    @property
    def progress(self) -> int:
        """Percentage of processed records, 0-100."""
        if self.status == JobStatus.COMPLETED:
            return 100
        if self.total_count <= 0:
            return 0
        return min(100, int(self.processed_count * 100 / self.total_count))

    def transition_to(self, status: JobStatus, now: datetime | None = None) -> None:
        """
        Move the job to a new status.

        Raises:
            InvalidJobTransitionError: If the move is not allowed
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransitionError(
                f"Job {self.id} cannot move from {self.status.value} to {status.value}"
            )
        now = now or utc_now()
        self.status = status
        if status == JobStatus.PROCESSING:
            self.started_at = now
        elif status.is_terminal:
            self.completed_at = now

    def start(self) -> None:
        self.transition_to(JobStatus.PROCESSING)

    def complete(self) -> None:
        self.transition_to(JobStatus.COMPLETED)

    def fail(self, message: str) -> None:
        self.error_message = message
        self.transition_to(JobStatus.FAILED)

    def record_error(self, external_id: str, message: str) -> None:
        """Append a per-record error; the oldest is evicted when full."""
        self.errors.append(JobRecordError(external_id, message))

    def snapshot(self) -> ImportJob:
        """Return a copy safe to hand to callers."""
        copy = ImportJob(
            user_id=self.user_id,
            integration_id=self.integration_id,
            kind=self.kind,
            id=self.id,
            status=self.status,
            total_count=self.total_count,
            processed_count=self.processed_count,
            imported_count=self.imported_count,
            updated_count=self.updated_count,
            skipped_count=self.skipped_count,
            failed_count=self.failed_count,
            deleted_count=self.deleted_count,
            error_message=self.error_message,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )
        copy.errors = deque(self.errors, maxlen=self.errors.maxlen)
        return copy

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "integrationId": self.integration_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "progress": self.progress,
            "totalCount": self.total_count,
            "processedCount": self.processed_count,
            "importedCount": self.imported_count,
            "updatedCount": self.updated_count,
            "skippedCount": self.skipped_count,
            "failedCount": self.failed_count,
            "deletedCount": self.deleted_count,
            "errors": [e.to_dict() for e in self.errors],
            "errorMessage": self.error_message,
            "createdAt": format_timestamp(self.created_at),
            "startedAt": format_timestamp(self.started_at),
            "completedAt": format_timestamp(self.completed_at),
        }
