"""Tickwork exceptions.

Structural errors (bad cadence, duplicate names) abort startup.
RunnerFailure is contained per job at the dispatch boundary.
ShutdownTimeout means a job outlived the drain timeout.
"""


class TickworkError(Exception):
    """Base class for all Tickwork errors."""


class InvalidCadence(TickworkError, ValueError):
    """A cadence, cron expression or time window is malformed."""


class DuplicateJobName(TickworkError):
    """A job with this name is already registered."""

    def __init__(self, name: str):
        super().__init__(f"Job {name!r} is already registered")
        self.name = name


class RunnerFailure(TickworkError):
    """A job's command failed, timed out, or could not be started."""

    def __init__(self, job_name: str, reason: str):
        super().__init__(f"{job_name}: {reason}")
        self.job_name = job_name
        self.reason = reason


class ShutdownTimeout(TickworkError):
    """In-flight jobs were still running when the drain timeout expired."""

    def __init__(self, pending: list[str], timeout: float):
        super().__init__(
            f"{len(pending)} job(s) still running after {timeout}s: {', '.join(pending)}"
        )
        self.pending = pending
        self.timeout = timeout
