"""Runners - how a job's command actually gets executed.

The dispatcher only needs something with execute(job) that raises (or
returns False) when the job failed. SubprocessRunner runs the job's
command as a child process, the same way every job is just a script.
"""

import os
import subprocess
from typing import Protocol

from tickwork.errors import RunnerFailure
from tickwork.jobs.definition import JobDefinition
from tickwork.otel import get_logger, get_tracer

log = get_logger()

# Used when a job sets no timeout of its own
DEFAULT_TIMEOUT_SECONDS = 60 * 60


class Runner(Protocol):
    def execute(self, job: JobDefinition) -> object: ...


class SubprocessRunner:
    """Run job.command with a timeout, logging the tail of its output."""

    def __init__(
        self,
        cwd: str | None = None,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        env: dict[str, str] | None = None,
    ):
        self.cwd = cwd
        self.default_timeout = default_timeout
        self.env = env

    def _timeout(self, job: JobDefinition) -> float:
        if job.timeout is not None:
            return job.timeout.total_seconds()
        return self.default_timeout

    def execute(self, job: JobDefinition):
        tracer = get_tracer()
        with tracer.start_as_current_span(f"tickwork.job.{job.name}") as span:
            span.set_attribute("tier", job.tier)
            span.set_attribute("cadence", str(job.cadence))

            if not job.command:
                span.set_attribute("status", "error")
                raise RunnerFailure(job.name, "no command configured")

            timeout = self._timeout(job)
            env = {**os.environ, **self.env} if self.env else None
            log.info(f"Starting {job.name}: {' '.join(job.command)}")

            try:
                result = subprocess.run(
                    list(job.command),
                    cwd=job.cwd or self.cwd,
                    capture_output=True,
                    text=True,
                    timeout=timeout,
                    env=env,
                )

            except subprocess.TimeoutExpired:
                span.set_attribute("status", "timeout")
                log.warning(f"{job.name} timed out after {timeout}s")
                raise RunnerFailure(job.name, f"timed out after {timeout}s") from None

            except OSError as e:
                span.set_attribute("status", "exception")
                span.set_attribute("error", str(e))
                raise RunnerFailure(job.name, f"could not start: {e}") from e

            # Log stdout for debugging (last 15 lines)
            if result.stdout:
                for line in result.stdout.strip().split("\n")[-15:]:
                    log.info(f"  > {line}")

            if result.returncode != 0:
                span.set_attribute("status", "error")
                span.set_attribute("error", result.stderr[:1000] if result.stderr else "")
                if result.stderr:
                    for line in result.stderr.strip().split("\n")[-10:]:
                        log.error(f"  ! {line}")
                raise RunnerFailure(job.name, f"exited with code {result.returncode}")

            span.set_attribute("status", "success")
            log.info(f"{job.name} complete")
