"""Overlap guard - keeps no-overlap jobs from running twice at once.

One lock per job name, either free or held since a timestamp. The
check-and-set in try_acquire() happens under a single mutex, so any
number of threads asking for the same name get exactly one True.

A durable LockStore (optional) mirrors the held set so a crashed process
leaves a trace. Since one scheduler owns every job, anything still in the
store at startup belongs to a dead process: recover() clears it.
"""

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Protocol

import pendulum

from tickwork.jobs.definition import OverlapPolicy
from tickwork.otel import get_logger

log = get_logger()


class LockStore(Protocol):
    """Durable mirror of held locks."""

    def load_locks(self) -> set[str]: ...

    def persist_lock(self, job_name: str) -> None: ...

    def clear_lock(self, job_name: str) -> None: ...


class OverlapGuard:
    """In-memory lock table keyed by job name.

    Example:
        >>> guard = OverlapGuard()
        >>> guard.try_acquire("export_prices")
        True
        >>> guard.try_acquire("export_prices")
        False
        >>> guard.release("export_prices")
        >>> guard.try_acquire("export_prices")
        True
    """

    def __init__(self, store: LockStore | None = None, clock: Callable[[], datetime] | None = None):
        self.store = store
        self.clock = clock or pendulum.now
        self._mutex = threading.Lock()
        self._held: dict[str, datetime] = {}

    def try_acquire(self, job_name: str, policy: OverlapPolicy = OverlapPolicy.NO_OVERLAP) -> bool:
        """Take the lock for `job_name`. False, with no side effect, if held.

        allow-concurrent jobs never take a lock and always get True.
        """
        if OverlapPolicy(policy) is OverlapPolicy.ALLOW_CONCURRENT:
            return True

        with self._mutex:
            if job_name in self._held:
                return False
            self._held[job_name] = self.clock()
            self._persist(job_name)
        return True

    def release(self, job_name: str) -> None:
        """Free the lock. Releasing a free lock is a no-op."""
        with self._mutex:
            if self._held.pop(job_name, None) is not None:
                self._clear(job_name)

    def held(self, job_name: str) -> bool:
        with self._mutex:
            return job_name in self._held

    def held_since(self, job_name: str) -> datetime | None:
        with self._mutex:
            return self._held.get(job_name)

    def held_names(self) -> list[str]:
        with self._mutex:
            return sorted(self._held)

    def force_release_all(self) -> list[str]:
        """Free every held lock. Used on shutdown timeout."""
        with self._mutex:
            names = sorted(self._held)
            self._held.clear()
            for name in names:
                log.warning(f"Force-released lock for {name}")
                self._clear(name)
        return names

    def recover(self) -> list[str]:
        """Clear locks a previous process left in the durable store."""
        if self.store is None:
            return []

        try:
            stale = sorted(self.store.load_locks())
        except Exception as e:
            log.error(f"Could not load persisted locks: {e}")
            return []

        with self._mutex:
            for name in stale:
                log.warning(f"Clearing stale lock for {name} left by a previous run")
                self._clear(name)
        return stale

    # === Durable store ===
    # Called with _mutex held so the store never lags a concurrent release.
    # The in-memory table is authoritative; store errors are logged only.

    def _persist(self, job_name: str):
        if self.store is None:
            return
        try:
            self.store.persist_lock(job_name)
        except Exception as e:
            log.error(f"Could not persist lock for {job_name}: {e}")

    def _clear(self, job_name: str):
        if self.store is None:
            return
        try:
            self.store.clear_lock(job_name)
        except Exception as e:
            log.error(f"Could not clear persisted lock for {job_name}: {e}")
