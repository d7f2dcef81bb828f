"""
Background job dispatch.

Runs import and sync jobs on a thread pool while enforcing the one rule the
pipeline depends on: at most one active job per (user, integration) pair.
A second submission for a busy pair is rejected, not queued, so two workers
never race on the same local contact set.
"""

import logging
import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Optional

from contact_reconciler.sync.jobs import ImportJob, JobAlreadyActiveError, JobNotFoundError

# Default number of concurrent jobs
DEFAULT_MAX_WORKERS = 4

# Finished jobs whose results stay available to wait()
DEFAULT_FINISHED_KEPT = 100

logger = logging.getLogger(__name__)

JobKey = tuple[str, str]
Work = Callable[[threading.Event], Any]


@dataclass
class _ActiveJob:
    job_id: str
    key: JobKey
    cancel_event: threading.Event = field(default_factory=threading.Event)


class JobRunner:
    """
    Thread pool runner for reconciliation jobs.

    Usage:
        runner = JobRunner(max_workers=4)
        future = runner.submit(job, lambda cancel: pipeline.run_import(
            job, records, config, cancel_event=cancel))
        runner.cancel(job.id)      # checked at the next batch boundary
        runner.wait(job.id)
        runner.shutdown()
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_MAX_WORKERS,
        finished_kept: int = DEFAULT_FINISHED_KEPT,
    ):
        self.max_workers = max_workers
        self.finished_kept = finished_kept
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reconcile"
        )
        self._lock = threading.RLock()
        self._active: dict[JobKey, _ActiveJob] = {}
        self._by_job_id: dict[str, _ActiveJob] = {}
        self._futures: dict[str, Future] = {}
        self._finished: deque[str] = deque()
        self._closed = False

    def submit(
        self,
        job: ImportJob,
        work: Work,
        on_accept: Optional[Callable[[], Any]] = None,
    ) -> Future:
        """
        Dispatch a job.

        Args:
            job: The job being run (its user and integration form the key)
            work: Callable receiving the job's cancel event
            on_accept: Called under the registry lock once the job is
                accepted and before it is dispatched (e.g. to persist it)

        Returns:
            Future resolving to the work's return value

        Raises:
            JobAlreadyActiveError: If the pair already has an active job
            RuntimeError: If the runner has been shut down
        """
        key = (job.user_id, job.integration_id)
        with self._lock:
            if self._closed:
                raise RuntimeError("JobRunner has been shut down")
            current = self._active.get(key)
            if current is not None:
                raise JobAlreadyActiveError(
                    f"Integration {job.integration_id} already has an active job "
                    f"({current.job_id})"
                )

            entry = _ActiveJob(job_id=job.id, key=key)
            if on_accept is not None:
                on_accept()
            self._active[key] = entry
            self._by_job_id[job.id] = entry
            future = self._executor.submit(self._run, entry, work)
            self._futures[job.id] = future
            future.add_done_callback(lambda _f, job_id=job.id: self._retire(job_id))

        logger.debug(f"Submitted job {job.id} for integration {job.integration_id}")
        return future

    def _run(self, entry: _ActiveJob, work: Work) -> Any:
        # The slot is freed before the future resolves, so a waiter can
        # submit the next job for the pair straight away
        try:
            return work(entry.cancel_event)
        except Exception as e:
            logger.debug(f"Job {entry.job_id} raised {type(e).__name__}: {e}")
            raise
        finally:
            self._release(entry)

    def _release(self, entry: _ActiveJob) -> None:
        with self._lock:
            if self._active.get(entry.key) is entry:
                del self._active[entry.key]
            self._by_job_id.pop(entry.job_id, None)

    def _retire(self, job_id: str) -> None:
        # Oldest finished futures are dropped so the map stays bounded
        with self._lock:
            self._finished.append(job_id)
            while len(self._finished) > self.finished_kept:
                self._futures.pop(self._finished.popleft(), None)

    def is_active(self, user_id: str, integration_id: str) -> bool:
        with self._lock:
            return (user_id, integration_id) in self._active

    def active_job_id(self, user_id: str, integration_id: str) -> Optional[str]:
        with self._lock:
            entry = self._active.get((user_id, integration_id))
            return entry.job_id if entry else None

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a running or queued job.

        Returns:
            True if the job was active and has been signalled
        """
        with self._lock:
            entry = self._by_job_id.get(job_id)
            if entry is None:
                return False
            entry.cancel_event.set()
        logger.info(f"Cancellation requested for job {job_id}")
        return True

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Any:
        """
        Block until a job finishes and return its result.

        Raises:
            JobNotFoundError: If the job was never submitted here, or
                finished long enough ago that its result was discarded
            Whatever the job raised
        """
        with self._lock:
            future = self._futures.get(job_id)
        if future is None:
            raise JobNotFoundError(f"Job {job_id} was not submitted to this runner")
        return future.result(timeout=timeout)

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        """Stop accepting jobs; optionally signal running ones to cancel."""
        with self._lock:
            self._closed = True
            if cancel_running:
                for entry in self._by_job_id.values():
                    entry.cancel_event.set()
        self._executor.shutdown(wait=wait)
        logger.debug("JobRunner shut down")

    def __enter__(self) -> "JobRunner":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def __repr__(self) -> str:
        return f"JobRunner(max_workers={self.max_workers}, active={len(self._active)})"
