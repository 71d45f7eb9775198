"""Job definitions and run records."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from tickwork.cadence import Cadence, TimeWindow, validate_cadence

COMMON = "common"


class OverlapPolicy(str, Enum):
    ALLOW_CONCURRENT = "allow-concurrent"
    NO_OVERLAP = "no-overlap"


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED_OVERLAP = "skipped-overlap"
    SKIPPED_CAPACITY = "skipped-capacity"


@dataclass(frozen=True)
class JobDefinition:
    """One scheduled job. Immutable once registered.

    The command is opaque to the scheduler - it's handed to the Runner
    as-is. The tier decides which environments run the job: "common"
    jobs run everywhere, anything else only where the environment matches.
    """

    name: str
    command: tuple[str, ...]
    cadence: Cadence
    window: TimeWindow | None = None
    overlap: OverlapPolicy = OverlapPolicy.NO_OVERLAP
    tier: str = COMMON
    timeout: timedelta | None = None
    cwd: str | None = None
    description: str = ""

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ValueError(f"Job name must be a non-empty string, got {self.name!r}")
        # Accept lists from config; store an immutable argv
        object.__setattr__(self, "command", tuple(self.command))
        object.__setattr__(self, "overlap", OverlapPolicy(self.overlap))
        object.__setattr__(self, "tier", self.tier.strip().lower())
        validate_cadence(self.cadence)

    @property
    def exclusive(self) -> bool:
        return self.overlap is OverlapPolicy.NO_OVERLAP


@dataclass
class RunRecord:
    """A single dispatch decision and, once finished, its result."""

    job_name: str
    started_at: datetime
    finished_at: datetime | None = None
    outcome: Outcome | None = None
    error: str | None = None

    @property
    def running(self) -> bool:
        return self.outcome is None

    @property
    def duration(self) -> float | None:
        """Seconds between start and finish, None while running."""
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def finish(self, outcome: Outcome, finished_at: datetime, error: str | None = None):
        self.outcome = outcome
        self.finished_at = finished_at
        self.error = error
