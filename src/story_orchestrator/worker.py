"""Worker runtime - claims ready jobs and runs their generation tasks."""

from collections.abc import Iterable
from importlib.metadata import entry_points
from typing import cast

from loguru import logger

from .common.errors import BrokerUnavailableError, InvalidTransitionError
from .common.generation_task import GenerationTask
from .common.job_store import JobStore
from .common.schema_job_record import (
    JobKind,
    JobProgress,
    JobProgressValue,
    JobRecord,
    JobRecordUpdate,
    JobStatus,
)


def get_task_registry() -> dict[JobKind, GenerationTask]:
    """Dynamically load all tasks from entry points.

    Discovers tasks from [project.entry-points."story_orchestrator.tasks"]
    in pyproject.toml.

    Returns:
        Dict mapping job kind -> GenerationTask instance

    Raises:
        RuntimeError: If a plugin fails to load (missing dependency, etc.)
    """
    registry: dict[JobKind, GenerationTask] = {}
    eps = entry_points(group="story_orchestrator.tasks")

    for ep in eps:
        try:
            task_class = cast(type[GenerationTask], ep.load())
            task = task_class()
            registry[task.kind] = task
        except Exception as e:
            # Plugin dependency missing = exception (fail fast)
            raise RuntimeError(f"Failed to load task '{ep.name}': {e}")

    return registry


class Worker:
    """Worker runtime that dispatches ready jobs to generation tasks.

    Responsibilities:
    - Maintains task registry (auto-discovered from entry points)
    - Claims ready jobs from the store (compare-and-set, never twice)
    - Reports progress and the terminal outcome back to the store

    Example:
        worker = Worker(store)

        # Process jobs forever
        while True:
            if not await worker.run_once():
                await asyncio.sleep(1.0)
    """

    def __init__(
        self,
        store: JobStore,
        task_registry: dict[JobKind, GenerationTask] | None = None,
    ):
        """Initialize worker.

        Args:
            store: JobStore holding the jobs to run
            task_registry: Optional custom registry. If None, auto-discovers from entry points.
        """
        self.store: JobStore = store
        self.task_registry: dict[JobKind, GenerationTask] = (
            task_registry if task_registry is not None else get_task_registry()
        )

    def get_supported_kinds(self) -> list[JobKind]:
        return list(self.task_registry.keys())

    async def run_once(self, kinds: Iterable[JobKind] | None = None) -> bool:
        """Process one job and return.

        Args:
            kinds: Job kinds to process. If None, uses all registered kinds.

        Returns:
            True if a job was processed, False if no job was ready.
        """
        if kinds is None:
            valid_kinds = self.get_supported_kinds()
        else:
            valid_kinds = [k for k in kinds if k in self.task_registry]

        if not valid_kinds:
            return False

        job = self._claim(valid_kinds)
        if job is None:
            return False

        task = self.task_registry[job.kind]
        job_id = job.job_id

        def progress_callback(progress: JobProgressValue) -> None:
            if isinstance(progress, JobProgress):
                progress = progress.model_copy(
                    update={"percentage": min(99, progress.percentage)}
                )
            else:
                progress = min(99, progress)
            self._report(job_id, JobStatus.running, JobRecordUpdate(progress=progress))

        logger.info(f"Processing {job.kind.value} job {job_id}")
        status, update = await task.execute(job, progress_callback)
        self._report(job_id, status, update)
        return True  # Job failure is recorded on the job, not the worker

    def _claim(self, kinds: list[JobKind]) -> JobRecord | None:
        try:
            return self.store.claim_next(kinds)
        except BrokerUnavailableError as e:
            logger.warning(f"Claimed job without announcing it: {e}")
            return e.job

    def _report(self, job_id: str, status: JobStatus, update: JobRecordUpdate) -> None:
        try:
            _ = self.store.transition(job_id, status, update)
        except BrokerUnavailableError as e:
            logger.warning(f"Job {job_id} stored as {status.value} but not announced: {e}")
        except InvalidTransitionError as e:
            # e.g. cancelled externally while running
            logger.warning(f"Dropped update for job {job_id}: {e}")
