"""Schedule configuration - jobs as data, loaded from TOML.

    tiers = ["production", "staging"]

    [[jobs]]
    name = "export_prices"
    command = ["bin/export-prices"]
    tier = "production"
    cron = "15 6,8,10 * * *"
    between = ["08:00", "19:00"]
    overlap = "no-overlap"
    timeout = "30m"

Each job takes exactly one cadence key: every, daily_at, cron, hourly or
hourly_at. Adding a tier is a matter of listing it and tagging jobs with
it; nothing else changes.
"""

import shlex
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tickwork.cadence import CADENCE_KEYS, TimeWindow, parse_cadence, parse_duration, parse_time_of_day
from tickwork.jobs.definition import COMMON, JobDefinition, OverlapPolicy


class JobConfig(BaseModel):
    """One [[jobs]] entry."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    command: list[str] = Field(min_length=1)
    description: str = ""
    tier: str = COMMON

    # Cadence - exactly one
    every: str | None = None
    daily_at: str | None = None
    cron: str | None = None
    hourly: bool = False
    hourly_at: int | None = None

    between: tuple[str, str] | None = None
    overlap: OverlapPolicy = OverlapPolicy.NO_OVERLAP
    timeout: str | None = None
    cwd: str | None = None

    @field_validator("command", mode="before")
    @classmethod
    def split_command(cls, value: Any) -> Any:
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("tier")
    @classmethod
    def normalize_tier(cls, value: str) -> str:
        return value.strip().lower()

    def to_definition(self) -> JobDefinition:
        """Parse cadence, window and timeout. Raises InvalidCadence."""
        cadence = parse_cadence({key: getattr(self, key) for key in CADENCE_KEYS})

        window = None
        if self.between is not None:
            start, end = self.between
            window = TimeWindow(parse_time_of_day(start), parse_time_of_day(end))

        return JobDefinition(
            name=self.name,
            command=tuple(self.command),
            cadence=cadence,
            window=window,
            overlap=self.overlap,
            tier=self.tier,
            timeout=parse_duration(self.timeout) if self.timeout else None,
            cwd=self.cwd,
            description=self.description,
        )


class ScheduleConfig(BaseModel):
    """The whole schedule file."""

    model_config = ConfigDict(extra="forbid")

    tiers: list[str] = Field(default_factory=list)
    jobs: list[JobConfig] = Field(default_factory=list)

    @field_validator("tiers")
    @classmethod
    def normalize_tiers(cls, value: list[str]) -> list[str]:
        return [t.strip().lower() for t in value]

    @model_validator(mode="after")
    def check_job_tiers(self) -> "ScheduleConfig":
        # Only enforced when tiers are declared
        if self.tiers:
            allowed = {COMMON, *self.tiers}
            for job in self.jobs:
                if job.tier not in allowed:
                    raise ValueError(
                        f"Job {job.name!r} uses undeclared tier {job.tier!r} "
                        f"(declared: {', '.join(sorted(allowed))})"
                    )
        return self

    def definitions(self) -> list[JobDefinition]:
        return [job.to_definition() for job in self.jobs]


def load_schedule(path: Path | str) -> ScheduleConfig:
    """Load and validate a schedule file.

    Raises:
        FileNotFoundError: The file doesn't exist
        tomllib.TOMLDecodeError: The file isn't valid TOML
        pydantic.ValidationError: The structure is wrong
    """
    with open(path, "rb") as f:
        data = tomllib.load(f)
    return ScheduleConfig.model_validate(data)
