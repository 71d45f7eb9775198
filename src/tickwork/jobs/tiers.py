"""Tier composer - pick the jobs this environment should run.

Every process runs the "common" tier. On top of that it runs exactly one
environment tier, chosen by the environment string (TICKWORK_ENV).
An unknown or empty environment gets common jobs only: a typo in the
environment must never turn on production-weight jobs.
"""

from collections.abc import Iterable

from tickwork.jobs.definition import COMMON, JobDefinition
from tickwork.jobs.registry import JobRegistry
from tickwork.otel import get_logger

log = get_logger()


def normalize_environment(environment: str | None) -> str:
    return (environment or "").strip().lower()


def build_schedule(
    environment: str | None,
    definitions: Iterable[JobDefinition],
    tiers: Iterable[str] | None = None,
) -> JobRegistry:
    """Build the registry for `environment`: common jobs plus that tier's jobs.

    Args:
        environment: The environment string, read once at startup
        definitions: Every job from the schedule, all tiers
        tiers: Declared tier names. None or empty means the tiers the jobs use,
            the same reading the schedule config gives a missing `tiers` line.

    Jobs from other tiers are left out before registration, so the same
    name may appear once per tier (e.g. a production and a staging variant
    of one sync job).
    """
    definitions = list(definitions)
    tiers = list(tiers or ())
    if not tiers:
        known = {job.tier for job in definitions}
    else:
        known = {normalize_environment(t) for t in tiers}
    known.discard(COMMON)

    tier = normalize_environment(environment)
    if tier not in known:
        log.warning(f"Unknown environment {environment!r}; running common jobs only")
        tier = COMMON

    registry = JobRegistry(job for job in definitions if job.tier in (COMMON, tier))
    log.info(f"Schedule for {tier!r}: {registry.names()}")
    return registry
