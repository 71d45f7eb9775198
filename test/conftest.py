"""Shared fixtures: a hand-driven clock, a controllable runner, a fake Redis."""

import threading
from collections import defaultdict

import pendulum
import pytest

TZ = "Europe/Amsterdam"


def at(hour: int, minute: int = 0, day: int = 12, month: int = 1, year: int = 2026):
    """Mon Jan 12 2026 by default."""
    return pendulum.datetime(year, month, day, hour, minute, tz=TZ)


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def set(self, moment):
        self.now = moment


class Events:
    """Thread-safe name -> threading.Event map."""

    def __init__(self):
        self._events = {}
        self._lock = threading.Lock()

    def __getitem__(self, name):
        with self._lock:
            return self._events.setdefault(name, threading.Event())


class FakeRunner:
    """Runs instantly unless a job is blocked; can be told to fail a job."""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.started = Events()
        self.finished = Events()
        self._gates = {}
        self._lock = threading.Lock()

    def block(self, job_name):
        gate = threading.Event()
        self._gates[job_name] = gate
        return gate

    def execute(self, job):
        with self._lock:
            self.calls.append(job.name)
        self.started[job.name].set()
        try:
            gate = self._gates.get(job.name)
            if gate is not None:
                gate.wait(timeout=10)
            if job.name in self.failing:
                raise RuntimeError(f"{job.name} exploded")
        finally:
            self.finished[job.name].set()


class Observed:
    """Collects (job_name, outcome, duration) reports."""

    def __init__(self):
        self.reports = []
        self._lock = threading.Lock()

    def __call__(self, job_name, outcome, duration):
        with self._lock:
            self.reports.append((job_name, outcome, duration))

    def outcomes(self, job_name):
        with self._lock:
            return [o for name, o, _ in self.reports if name == job_name]


class FakeRedis:
    """Just the set commands RedisLockStore uses. Returns bytes like redis-py."""

    def __init__(self):
        self.sets = defaultdict(set)

    def smembers(self, key):
        return {m.encode() for m in self.sets[key]}

    def sadd(self, key, member):
        self.sets[key].add(member)

    def srem(self, key, member):
        self.sets[key].discard(member)


@pytest.fixture
def clock():
    return FakeClock(at(9, 0))


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def observed():
    return Observed()


@pytest.fixture
def fake_redis():
    return FakeRedis()
