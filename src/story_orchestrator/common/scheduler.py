"""Dependency scheduler - decides when pending jobs may run.

A pending job is eligible once every job it depends on is done. The
scheduler never runs work itself: it flips eligible jobs into the ready
sub-state (compare-and-set guarded, so a job is dispatched at most once)
and fails dependents of a failed job without ever starting them.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Callable

from loguru import logger

from .errors import BrokerUnavailableError, InvalidTransitionError
from .job_store import JobStore
from .schema_job_record import JobRecord, JobRecordUpdate, JobStatus

ReadyListener = Callable[[JobRecord], None]


class DependencyScheduler:
    """Re-evaluates dependents whenever a job reaches a terminal state.

    Attaches itself to the store on construction. Listeners registered via
    ``add_ready_listener`` are told about each job that becomes ready;
    dispatchers that prefer polling use ``JobStore.list_ready`` instead.
    No order is promised among jobs that become ready together.
    """

    def __init__(self, store: JobStore):
        self.store: JobStore = store
        self._ready_listeners: list[ReadyListener] = []
        self._local: threading.local = threading.local()
        store.add_created_hook(self.on_job_created)
        store.add_terminal_hook(lambda job: self.on_dependency_terminal(job.job_id))

    def add_ready_listener(self, listener: ReadyListener) -> None:
        self._ready_listeners.append(listener)

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------

    def _dependency_statuses(self, job: JobRecord) -> dict[str, JobStatus | None]:
        statuses: dict[str, JobStatus | None] = {}
        for dep_id in job.depends_on:
            dep = self.store.repository.get_job(dep_id)
            statuses[dep_id] = dep.status if dep is not None else None
        return statuses

    def is_eligible(self, job_id: str) -> bool:
        """True if the job is pending and all its dependencies are done."""
        job = self.store.get(job_id)
        if job.status != JobStatus.pending:
            return False
        return all(s == JobStatus.done for s in self._dependency_statuses(job).values())

    def _failed_dependency(self, job: JobRecord) -> JobRecord | None:
        for dep_id in job.depends_on:
            dep = self.store.repository.get_job(dep_id)
            if dep is not None and dep.status == JobStatus.failed:
                return dep
        return None

    # ------------------------------------------------------------------
    # Store hooks
    # ------------------------------------------------------------------

    def on_job_created(self, job: JobRecord) -> None:
        if job.depends_on:
            self._evaluate(job.job_id)
        elif job.ready:
            self._announce_ready(job)

    def on_dependency_terminal(self, job_id: str) -> None:
        """Re-evaluate every job that lists ``job_id`` as a dependency.

        Failing a dependent re-enters this hook through the store. Nested
        calls only queue their job id; the outermost call on the thread
        drains the queue, so chains of any depth are walked breadth-first.
        """
        queue: deque[str] | None = getattr(self._local, "queue", None)
        if queue is not None:
            queue.append(job_id)
            return

        queue = deque([job_id])
        self._local.queue = queue
        try:
            while queue:
                finished = queue.popleft()
                dependents = self.store.list_dependents(finished)
                if dependents:
                    logger.debug(
                        f"Job {finished} finished, re-evaluating {len(dependents)} dependents"
                    )
                for dependent in dependents:
                    self._evaluate(dependent.job_id)
        finally:
            self._local.queue = None

    def _evaluate(self, job_id: str) -> None:
        job = self.store.repository.get_job(job_id)
        if job is None or job.status != JobStatus.pending:
            return

        failed = self._failed_dependency(job)
        if failed is not None:
            self._fail_dependent(job, failed)
            return

        if job.ready or not self.is_eligible(job_id):
            return

        if self.store.mark_ready(job_id):
            ready = self.store.repository.get_job(job_id)
            if ready is not None:
                self._announce_ready(ready)

    def _fail_dependent(self, job: JobRecord, failed: JobRecord) -> None:
        reason = f"Dependency {failed.job_id} failed: {failed.error or 'unknown error'}"
        try:
            _ = self.store.transition(
                job.job_id,
                JobStatus.failed,
                JobRecordUpdate(error=reason),
                expected_status=JobStatus.pending,
            )
            logger.warning(f"Job {job.job_id} failed because dependency {failed.job_id} failed")
        except InvalidTransitionError:
            # already failed by a sibling dependency's hook
            logger.debug(f"Job {job.job_id} left pending before failure propagation")
        except BrokerUnavailableError:
            logger.warning(f"Job {job.job_id} failed but the failure event was not published")

    def _announce_ready(self, job: JobRecord) -> None:
        for listener in self._ready_listeners:
            try:
                listener(job)
            except Exception as e:
                logger.error(f"Error in ready listener for job {job.job_id}: {e}")
