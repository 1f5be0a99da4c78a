"""Job store - the single source of truth for job state.

Every state change is a version-checked compare-and-set against the
repository, followed by one change event on the broker. Persisting and
notifying are separate steps: a broker outage surfaces as
BrokerUnavailableError after the new state is already stored.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from uuid import uuid4

from loguru import logger
from pydantic import JsonValue

from ..events.event_names import job_event_name, topic_for_job
from ..events.publisher import EventPublisher
from .errors import (
    ActiveJobError,
    BrokerUnavailableError,
    CyclicDependencyError,
    InvalidTransitionError,
    JobAlreadyExistsError,
    JobNotFoundError,
    UnknownDependencyError,
)
from .job_repository import JobRepository
from .schema_job_record import (
    JobKind,
    JobPage,
    JobRecord,
    JobRecordUpdate,
    JobStats,
    JobStatus,
    utcnow,
)

JobHook = Callable[[JobRecord], None]

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.running, JobStatus.failed}),
    JobStatus.running: frozenset({JobStatus.running, JobStatus.done, JobStatus.failed}),
    JobStatus.done: frozenset(),
    JobStatus.failed: frozenset(),
}

_EVENT_FIELDS = {
    "job_id",
    "correlation_id",
    "kind",
    "status",
    "progress",
    "story_id",
    "page_id",
    "error",
    "result",
}


def job_event_payload(job: JobRecord) -> dict[str, object]:
    return job.model_dump(mode="json", include=_EVENT_FIELDS)


def _newest_first(jobs: Iterable[JobRecord]) -> list[JobRecord]:
    # Ties on created_at keep reverse insertion order
    return sorted(jobs, key=lambda j: j.created_at)[::-1]


class JobStore:
    """Creates jobs, enforces the state machine and emits change events.

    Example:
        repository = InMemoryJobRepository()
        publisher = EventPublisher(create_broadcaster(None))
        store = JobStore(repository, publisher)
        scheduler = DependencyScheduler(store)

        images = store.create(JobKind.image, story_id=1)
        video = store.create(JobKind.video, story_id=1, depends_on=[images.job_id])
    """

    def __init__(self, repository: JobRepository, publisher: EventPublisher):
        self.repository: JobRepository = repository
        self.publisher: EventPublisher = publisher
        self._created_hooks: list[JobHook] = []
        self._terminal_hooks: list[JobHook] = []

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def add_created_hook(self, hook: JobHook) -> None:
        """Call ``hook`` with every newly created job."""
        self._created_hooks.append(hook)

    def add_terminal_hook(self, hook: JobHook) -> None:
        """Call ``hook`` after every accepted transition into done/failed."""
        self._terminal_hooks.append(hook)

    def _run_hooks(self, hooks: Sequence[JobHook], job: JobRecord) -> None:
        for hook in hooks:
            try:
                hook(job)
            except Exception as e:
                logger.error(f"Error in job hook {hook!r} for job {job.job_id}: {e}")

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        kind: JobKind | str,
        *,
        story_id: int | None = None,
        page_id: int | None = None,
        depends_on: Iterable[str] = (),
        metadata: Mapping[str, JsonValue] | None = None,
        job_id: str | None = None,
        correlation_id: str | None = None,
    ) -> JobRecord:
        """Create a pending job.

        Raises:
            CyclicDependencyError: depends_on reaches the new job
            UnknownDependencyError: depends_on names a job that does not exist
            JobAlreadyExistsError: job_id is already taken
        """
        job_id = job_id or str(uuid4())
        dependencies = list(dict.fromkeys(depends_on))
        self._check_dependencies(job_id, dependencies)

        now = utcnow()
        job = JobRecord(
            job_id=job_id,
            correlation_id=correlation_id,
            kind=JobKind(kind),
            story_id=story_id,
            page_id=page_id,
            depends_on=dependencies,
            metadata=dict(metadata or {}),
            ready=not dependencies,
            created_at=now,
            updated_at=now,
        )

        if not self.repository.add_job(job):
            raise JobAlreadyExistsError(job_id)

        logger.info(
            f"Created job: {job_id}, kind: {job.kind.value}, depends_on: {dependencies}"
        )
        self._run_hooks(self._created_hooks, job)
        return self.repository.get_job(job_id) or job

    def _check_dependencies(self, job_id: str, dependencies: Sequence[str]) -> None:
        if job_id in dependencies:
            raise CyclicDependencyError(job_id)

        missing = [d for d in dependencies if self.repository.get_job(d) is None]
        if missing:
            raise UnknownDependencyError(missing)

        path = self._find_path(dependencies, job_id)
        if path is not None:
            raise CyclicDependencyError(job_id, path)

    def _find_path(self, start: Sequence[str], target: str) -> list[str] | None:
        """Depth-first search of the dependency closure for ``target``."""
        visited: set[str] = set()
        parents: dict[str, str | None] = {}
        stack: list[tuple[str, str | None]] = [(d, None) for d in reversed(start)]
        while stack:
            node, parent = stack.pop()
            if node in visited:
                continue
            visited.add(node)
            parents[node] = parent
            if node == target:
                path: list[str] = []
                step: str | None = node
                while step is not None:
                    path.append(step)
                    step = parents[step]
                return path[::-1]
            job = self.repository.get_job(node)
            if job is None:
                continue
            for dep in reversed(job.depends_on):
                if dep not in visited:
                    stack.append((dep, node))
        return None

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        job_id: str,
        status: JobStatus | str,
        patch: JobRecordUpdate | None = None,
        *,
        expected_status: JobStatus | None = None,
    ) -> JobRecord:
        """Move a job to ``status`` and publish one change event.

        Args:
            job_id: Unique job identifier
            status: Target status (running -> running updates progress)
            patch: Progress, result, error or correlation id to store
            expected_status: Reject the move unless the job is currently in
                             this status (used for claiming)

        Raises:
            JobNotFoundError: Unknown job id
            InvalidTransitionError: The state machine forbids the move
            BrokerUnavailableError: The state was stored but the event was
                                    not published; ``exc.job`` holds the job
        """
        status = JobStatus(status)
        patch = patch or JobRecordUpdate()

        while True:
            current = self.get(job_id)
            if expected_status is not None and current.status != expected_status:
                raise InvalidTransitionError(
                    job_id, current.status, status, f"expected {expected_status.value}"
                )
            updated = self._apply(current, status, patch)
            if self.repository.compare_and_set(job_id, current.version, updated):
                break
            logger.debug(f"Concurrent update on job {job_id}, re-validating")

        logger.info(f"Updated job: {job_id}, status: {updated.status.value}")
        return self._notify(updated)

    def _apply(
        self,
        current: JobRecord,
        status: JobStatus,
        patch: JobRecordUpdate,
    ) -> JobRecord:
        def reject(reason: str) -> InvalidTransitionError:
            return InvalidTransitionError(current.job_id, current.status, status, reason)

        if status not in _ALLOWED_TRANSITIONS[current.status]:
            if current.status.is_terminal:
                raise reject("job already finished")
            raise reject("transition not allowed")

        if current.status == JobStatus.pending and status == JobStatus.running:
            if not current.ready:
                raise reject("dependencies not satisfied")

        if status == JobStatus.failed:
            if not patch.error:
                raise reject("a failure reason is required")
            if patch.result:
                raise reject("a failed job cannot carry a result")
        elif status == JobStatus.done:
            if patch.error:
                raise reject("a successful job cannot carry an error")
        elif patch.result or patch.error:
            raise reject("result and error are only accepted on completion")

        if (
            patch.correlation_id
            and current.correlation_id
            and patch.correlation_id != current.correlation_id
        ):
            raise reject("correlation id is already set")

        now = utcnow()
        update: dict[str, object] = {
            "status": status,
            "updated_at": now,
            "version": current.version + 1,
        }
        if patch.progress is not None:
            update["progress"] = patch.progress
        if patch.correlation_id:
            update["correlation_id"] = patch.correlation_id
        if status.is_terminal:
            update["completed_at"] = now
            update["duration_millis"] = int(
                (now - current.created_at).total_seconds() * 1000
            )
            if status == JobStatus.done:
                update["result"] = dict(patch.result) if patch.result else None
            else:
                update["error"] = patch.error

        return current.model_copy(update=update)

    def _notify(self, job: JobRecord) -> JobRecord:
        broker_error: BrokerUnavailableError | None = None
        try:
            self.publisher.publish(
                topic_for_job(job), job_event_name(job.status), job_event_payload(job)
            )
        except BrokerUnavailableError as e:
            logger.warning(f"Job {job.job_id} stored as {job.status.value} but not announced")
            broker_error = e

        if job.status.is_terminal:
            self._run_hooks(self._terminal_hooks, job)

        if broker_error is not None:
            broker_error.job = job
            raise broker_error
        return job

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def mark_ready(self, job_id: str) -> bool:
        """Flip a pending job into the ready sub-state.

        Returns:
            True for the single caller whose flip won, False otherwise
        """
        while True:
            current = self.repository.get_job(job_id)
            if current is None or current.status != JobStatus.pending or current.ready:
                return False
            updated = current.model_copy(
                update={
                    "ready": True,
                    "updated_at": utcnow(),
                    "version": current.version + 1,
                }
            )
            if self.repository.compare_and_set(job_id, current.version, updated):
                logger.info(f"Job {job_id} is ready to run")
                return True

    def claim_next(self, kinds: Iterable[JobKind] | None = None) -> JobRecord | None:
        """Atomically move the oldest ready job to running.

        Returns:
            The claimed job, or None if nothing is ready
        """
        for job in self.list_ready(kinds):
            try:
                return self.transition(
                    job.job_id, JobStatus.running, expected_status=JobStatus.pending
                )
            except InvalidTransitionError:
                continue
        return None

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get(self, job_id: str) -> JobRecord:
        job = self.repository.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def get_by_correlation_id(self, correlation_id: str) -> JobRecord | None:
        return self.repository.get_job_by_correlation_id(correlation_id)

    def list_by_story(self, story_id: int) -> list[JobRecord]:
        jobs = self.repository.list_jobs(story_id=story_id)
        return _newest_first(jobs)

    def list_pending(self) -> list[JobRecord]:
        jobs = self.repository.list_jobs(status=JobStatus.pending)
        return sorted(jobs, key=lambda j: j.created_at)

    def list_ready(self, kinds: Iterable[JobKind] | None = None) -> list[JobRecord]:
        wanted = {JobKind(k) for k in kinds} if kinds is not None else None
        return [
            job
            for job in self.list_pending()
            if job.ready and (wanted is None or job.kind in wanted)
        ]

    def list_dependents(self, job_id: str) -> list[JobRecord]:
        return self.repository.list_jobs(depends_on=job_id)

    def list_jobs(self, page: int = 1, page_size: int = 10) -> JobPage:
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")
        jobs = _newest_first(self.repository.list_jobs())
        start = (page - 1) * page_size
        return JobPage(
            jobs=jobs[start : start + page_size],
            total=len(jobs),
            page=page,
            page_size=page_size,
        )

    def stats(self) -> JobStats:
        jobs = _newest_first(self.repository.list_jobs())
        return JobStats(
            by_status=dict(Counter(job.status.value for job in jobs)),
            by_kind=dict(Counter(job.kind.value for job in jobs)),
            total_count=len(jobs),
            recent_jobs=jobs[:5],
        )

    def assert_no_active_job(self, story_id: int, kinds: Iterable[JobKind]) -> None:
        """Raise ActiveJobError if the story has pending/running work of ``kinds``."""
        wanted = {JobKind(k) for k in kinds}
        for job in self.list_by_story(story_id):
            if job.kind in wanted and not job.status.is_terminal:
                raise ActiveJobError(job)
