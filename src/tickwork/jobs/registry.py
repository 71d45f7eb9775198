"""Job registry - the fixed set of jobs for this process.

Populated once at startup, read-only afterwards, so the dispatcher can
iterate it from the tick loop without locking.
"""

from collections.abc import Iterator

from tickwork.cadence import validate_cadence
from tickwork.errors import DuplicateJobName
from tickwork.jobs.definition import COMMON, JobDefinition
from tickwork.otel import get_logger

log = get_logger()


class JobRegistry:
    """Registered job definitions, in registration order."""

    def __init__(self, jobs=()):
        self._jobs: dict[str, JobDefinition] = {}
        for job in jobs:
            self.register(job)

    def register(self, job: JobDefinition) -> JobDefinition:
        """Add a job. Raises DuplicateJobName or InvalidCadence."""
        if job.name in self._jobs:
            raise DuplicateJobName(job.name)
        validate_cadence(job.cadence)
        self._jobs[job.name] = job
        log.debug(f"Registered {job.name} ({job.cadence}, {job.overlap.value}, tier={job.tier})")
        return job

    def get(self, name: str) -> JobDefinition:
        return self._jobs[name]

    def names(self) -> list[str]:
        return list(self._jobs)

    def jobs_for_tier(self, tier: str) -> list[JobDefinition]:
        """Common jobs plus the jobs of `tier`, in registration order."""
        tier = tier.strip().lower()
        return [job for job in self._jobs.values() if job.tier in (COMMON, tier)]

    def __contains__(self, name: str) -> bool:
        return name in self._jobs

    def __iter__(self) -> Iterator[JobDefinition]:
        return iter(self._jobs.values())

    def __len__(self) -> int:
        return len(self._jobs)
