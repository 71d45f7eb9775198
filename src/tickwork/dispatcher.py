"""Dispatcher - the per-minute tick.

On each tick, for every job in the active tier set:

    is_due?  ──no──► nothing
       │yes
    try_acquire? ──no──► skipped-overlap
       │yes
    pool full? ──yes──► skipped-capacity (dropped, never queued)
       │no
    submit to worker pool ──► callback: release lock, record success/failure

The tick never waits for a job. Every job in one tick sees the same `now`.
A job's slot counts as used whenever its cadence fires, even if the run
was skipped, so nothing piles up behind a slow job or a paused process.

Job errors stop at the completion callback: they become a `failure`
record and a log line, and the next tick runs as usual.
"""

import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime
from functools import partial

import pendulum

from tickwork.errors import RunnerFailure, ShutdownTimeout
from tickwork.evaluator import is_due
from tickwork.guard import OverlapGuard
from tickwork.jobs.definition import JobDefinition, Outcome, RunRecord
from tickwork.jobs.registry import JobRegistry
from tickwork.otel import get_logger, record_run, span
from tickwork.runner import Runner

log = get_logger()

Observer = Callable[[str, Outcome, float | None], None]


class Dispatcher:
    def __init__(
        self,
        registry: JobRegistry,
        guard: OverlapGuard,
        runner: Runner,
        environment: str,
        clock: Callable[[], datetime] | None = None,
        observer: Observer | None = None,
        max_workers: int = 4,
        executor: Executor | None = None,
        history: int = 500,
    ):
        """Wire the scheduling loop together.

        Args:
            registry: All jobs for this process (read-only from here on)
            guard: Overlap guard shared by every dispatch
            runner: Anything with execute(job); raises or returns False on failure
            environment: Active tier name
            clock: Returns "now"; defaults to pendulum.now
            observer: Called with (job_name, outcome, duration) for every record
            max_workers: Concurrent runs allowed before new ones are dropped
            executor: Worker pool; a ThreadPoolExecutor of max_workers by default
            history: How many recent RunRecords to keep for reporting
        """
        self.registry = registry
        self.guard = guard
        self.runner = runner
        self.environment = environment
        self.jobs = registry.jobs_for_tier(environment)
        self.clock = clock or pendulum.now
        self.observer = observer or record_run
        self.max_workers = max_workers

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="tickwork-job"
        )

        self.records: deque[RunRecord] = deque(maxlen=history)
        self._last: dict[str, datetime] = {}
        self._pending: dict[Future, RunRecord] = {}
        self._state = threading.Lock()
        self._idle = threading.Condition(self._state)
        self._accepting = True

    # === Tick ===

    def tick(self, now: datetime | None = None) -> list[RunRecord]:
        """Evaluate every job against one snapshot of `now` and dispatch the due ones.

        Returns the records created this tick (running, or already skipped).
        """
        if not self._accepting:
            log.warning("Tick ignored: dispatcher is shutting down")
            return []

        now = now if now is not None else self.clock()
        created = []

        with span("tickwork.tick", now=now.isoformat(), jobs=len(self.jobs)):
            for job in self.jobs:
                if not is_due(job.cadence, now, self._last.get(job.name), job.window):
                    continue
                self._last[job.name] = now
                created.append(self._dispatch(job, now))

        if created:
            log.info(f"Tick {now.isoformat()}: {[(r.job_name, 'running' if r.running else r.outcome.value) for r in created]}")
        return created

    def _dispatch(self, job: JobDefinition, now: datetime) -> RunRecord:
        record = RunRecord(job_name=job.name, started_at=now)
        self.records.append(record)

        if not self.guard.try_acquire(job.name, job.overlap):
            since = self.guard.held_since(job.name)
            log.info(f"Skipping {job.name}: still running since {since}")
            return self._skip(record, Outcome.SKIPPED_OVERLAP, now)

        with self._state:
            full = len(self._pending) >= self.max_workers
        if full:
            log.warning(f"Skipping {job.name}: all {self.max_workers} workers busy")
            self._release(job)
            return self._skip(record, Outcome.SKIPPED_CAPACITY, now)

        try:
            future = self.executor.submit(self._execute, job)
        except RuntimeError as e:
            # Pool already shut down
            self._release(job)
            record.finish(Outcome.FAILURE, now, error=str(e))
            log.error(f"Could not dispatch {job.name}: {e}")
            self._report(record)
            return record

        with self._state:
            self._pending[future] = record
        future.add_done_callback(partial(self._complete, job, record))
        return record

    def _execute(self, job: JobDefinition):
        result = self.runner.execute(job)
        if result is False or result == Outcome.FAILURE:
            raise RunnerFailure(job.name, "runner reported failure")
        return result

    def _complete(self, job: JobDefinition, record: RunRecord, future: Future):
        """Completion callback. Runs on the worker thread that finished the job."""
        finished = self.clock()
        try:
            if future.cancelled():
                record.finish(Outcome.FAILURE, finished, error="cancelled")
            elif (error := future.exception()) is not None:
                record.finish(Outcome.FAILURE, finished, error=str(error))
                log.error(f"Job {job.name} failed: {error}")
            else:
                record.finish(Outcome.SUCCESS, finished)
        finally:
            self._release(job)

        try:
            self._report(record)
        finally:
            # drain() waits on this, so it only returns once outcomes are reported
            with self._idle:
                self._pending.pop(future, None)
                self._idle.notify_all()

    def _skip(self, record: RunRecord, outcome: Outcome, now: datetime) -> RunRecord:
        record.finish(outcome, now)
        self._report(record)
        return record

    def _release(self, job: JobDefinition):
        if job.exclusive:
            self.guard.release(job.name)

    def _report(self, record: RunRecord):
        # Fire-and-forget: an observer problem must not reach the tick loop
        try:
            self.observer(record.job_name, record.outcome, record.duration)
        except Exception as e:
            log.error(f"Observer failed for {record.job_name}: {e}")

    # === Introspection ===

    def in_flight(self) -> list[str]:
        with self._state:
            return sorted(r.job_name for r in self._pending.values())

    def last_evaluated(self, job_name: str) -> datetime | None:
        return self._last.get(job_name)

    # === Shutdown ===

    def drain(self, timeout: float) -> None:
        """Wait for in-flight jobs. Raises ShutdownTimeout if any outlive `timeout`."""
        deadline = time.monotonic() + timeout
        with self._idle:
            if self._pending:
                log.info(f"Waiting up to {timeout}s for {len(self._pending)} running job(s)")
            while self._pending:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    pending = sorted(r.job_name for r in self._pending.values())
                    raise ShutdownTimeout(pending, timeout)
                self._idle.wait(remaining)

    def shutdown(self, timeout: float = 30.0) -> list[str]:
        """Stop ticking, let running jobs finish, then force-release what's left.

        Returns the names of locks that had to be force-released (empty on a
        clean drain).
        """
        self._accepting = False
        forced = []
        try:
            self.drain(timeout)
        except ShutdownTimeout as e:
            log.warning(f"⚠️ Shutdown timeout: {e}")
            forced = self.guard.force_release_all()
        finally:
            if self._owns_executor:
                self.executor.shutdown(wait=False, cancel_futures=True)

        log.info("Dispatcher stopped")
        return forced
