"""GenerationTask - Abstract base class for provider-backed generation work."""

from abc import ABC, abstractmethod
from typing import Callable

from .schema_job_record import (
    JobKind,
    JobProgressValue,
    JobRecord,
    JobRecordUpdate,
    JobResultRecord,
    JobStatus,
)

ProgressCallback = Callable[[JobProgressValue], None]


class GenerationTask(ABC):
    """
    Stateless, template-method based generation task.

    - run() talks to the provider and returns the opaque result payload
    - execute() turns that (or any exception) into the terminal update
    """

    @property
    @abstractmethod
    def kind(self) -> JobKind: ...

    def setup(self) -> None:
        """Optional per-execution setup."""
        pass

    @abstractmethod
    async def run(
        self,
        job: JobRecord,
        progress_callback: ProgressCallback | None = None,
    ) -> JobResultRecord:
        """
        Execute the work for ``job``.

        - May report progress as a percentage or JobProgress
        - Must return a JSON-compatible result mapping
        """
        ...

    async def execute(
        self,
        job: JobRecord,
        progress_callback: ProgressCallback | None = None,
    ) -> tuple[JobStatus, JobRecordUpdate]:
        try:
            self.setup()

            result = await self.run(job, progress_callback)

            return JobStatus.done, JobRecordUpdate(result=result, progress=100)

        except Exception as exc:
            return JobStatus.failed, JobRecordUpdate(error=str(exc) or type(exc).__name__)
