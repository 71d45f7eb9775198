"""Job definitions, the registry, and tier composition."""

from tickwork.jobs.definition import COMMON, JobDefinition, OverlapPolicy, Outcome, RunRecord
from tickwork.jobs.registry import JobRegistry
from tickwork.jobs.tiers import build_schedule

__all__ = [
    "COMMON",
    "JobDefinition",
    "JobRegistry",
    "OverlapPolicy",
    "Outcome",
    "RunRecord",
    "build_schedule",
]
