"""Dispatcher tick loop, end to end with a fake clock and runner."""

from datetime import timedelta

import pytest

from conftest import at
from tickwork.cadence import CronExpression, Hourly, Interval
from tickwork.dispatcher import Dispatcher
from tickwork.errors import ShutdownTimeout
from tickwork.guard import OverlapGuard
from tickwork.jobs import JobDefinition, JobRegistry, OverlapPolicy, Outcome

EVERY_MINUTE = CronExpression()


def job(name, cadence=EVERY_MINUTE, overlap=OverlapPolicy.NO_OVERLAP, tier="common"):
    return JobDefinition(name=name, command=[name], cadence=cadence, overlap=overlap, tier=tier)


@pytest.fixture
def make_dispatcher(clock, runner, observed):
    created = []

    def make(*jobs, environment="production", **kwargs):
        kwargs.setdefault("guard", OverlapGuard(clock=clock))
        dispatcher = Dispatcher(
            JobRegistry(jobs),
            runner=runner,
            environment=environment,
            clock=clock,
            observer=observed,
            **kwargs,
        )
        created.append(dispatcher)
        return dispatcher

    yield make

    for dispatcher in created:
        dispatcher.shutdown(timeout=5)


def outcomes(records):
    return {r.job_name: r.outcome for r in records}


def test_end_to_end_overlap_scenario(make_dispatcher, clock, runner, observed):
    a = job("A", Interval(timedelta(hours=1)), OverlapPolicy.NO_OVERLAP)
    b = job("B", Hourly(), OverlapPolicy.ALLOW_CONCURRENT)
    gate = runner.block("A")
    dispatcher = make_dispatcher(a, b)

    # 10:00 - both dispatch
    clock.set(at(10, 0))
    first = dispatcher.tick()
    assert [r.job_name for r in first] == ["A", "B"]
    assert runner.started["A"].wait(2)
    assert runner.finished["B"].wait(2)

    # 10:01 - interval not elapsed, not the top of the hour
    clock.set(at(10, 1))
    assert dispatcher.tick() == []

    # 11:00 - A still running: skipped; B dispatches again
    clock.set(at(11, 0))
    second = dispatcher.tick()
    assert outcomes(second)["A"] is Outcome.SKIPPED_OVERLAP
    assert "B" in outcomes(second)
    assert second[1].outcome in (None, Outcome.SUCCESS)
    assert dispatcher.in_flight() in (["A"], ["A", "B"])

    gate.set()
    dispatcher.drain(timeout=5)

    assert first[0].outcome is Outcome.SUCCESS
    assert runner.calls.count("A") == 1
    assert runner.calls.count("B") == 2
    assert observed.outcomes("A") == [Outcome.SKIPPED_OVERLAP, Outcome.SUCCESS]
    assert observed.outcomes("B") == [Outcome.SUCCESS, Outcome.SUCCESS]
    assert dispatcher.in_flight() == []
    assert not dispatcher.guard.held("A")


def test_lock_released_after_completion(make_dispatcher, clock, runner):
    dispatcher = make_dispatcher(job("A"))
    clock.set(at(10, 0))
    dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert not dispatcher.guard.held("A")

    clock.set(at(10, 1))
    records = dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert records[0].outcome is Outcome.SUCCESS
    assert runner.calls == ["A", "A"]


def test_tick_uses_one_now_for_every_job(make_dispatcher, clock):
    dispatcher = make_dispatcher(job("A"), job("B"), job("C"))
    clock.set(at(10, 0))
    records = dispatcher.tick()
    assert {r.started_at for r in records} == {at(10, 0)}
    assert {dispatcher.last_evaluated(name) for name in "ABC"} == {at(10, 0)}


def test_same_minute_tick_does_not_refire(make_dispatcher, clock, runner):
    dispatcher = make_dispatcher(job("A"))
    clock.set(at(10, 0))
    assert len(dispatcher.tick()) == 1
    clock.set(at(10, 0).add(seconds=40))
    assert dispatcher.tick() == []
    dispatcher.drain(timeout=5)
    assert runner.calls == ["A"]


def test_missed_ticks_do_not_backlog(make_dispatcher, clock, runner):
    dispatcher = make_dispatcher(job("hourly", Hourly()))
    clock.set(at(10, 0))
    dispatcher.tick()
    dispatcher.drain(timeout=5)

    # Process paused for three hours
    clock.set(at(13, 0))
    assert len(dispatcher.tick()) == 1
    assert dispatcher.tick() == []
    dispatcher.drain(timeout=5)
    assert runner.calls == ["hourly", "hourly"]


def test_explicit_now_overrides_clock(make_dispatcher, clock):
    dispatcher = make_dispatcher(job("hourly", Hourly()))
    clock.set(at(10, 30))
    assert [r.job_name for r in dispatcher.tick(at(11, 0))] == ["hourly"]


def test_only_active_tier_is_dispatched(make_dispatcher, clock, runner):
    dispatcher = make_dispatcher(
        job("common_job"),
        job("prod_job", tier="production"),
        job("staging_job", tier="staging"),
        environment="staging",
    )
    clock.set(at(10, 0))
    assert [r.job_name for r in dispatcher.tick()] == ["common_job", "staging_job"]


def test_failure_is_isolated(make_dispatcher, clock, runner, observed):
    runner.failing.add("flaky")
    dispatcher = make_dispatcher(job("flaky"), job("steady"))

    clock.set(at(10, 0))
    records = dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert outcomes(records) == {"flaky": Outcome.FAILURE, "steady": Outcome.SUCCESS}
    assert "exploded" in records[0].error
    assert not dispatcher.guard.held("flaky")

    # The loop keeps going and the failed job runs again next slot
    clock.set(at(10, 1))
    records = dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert [r.job_name for r in records] == ["flaky", "steady"]
    assert observed.outcomes("flaky") == [Outcome.FAILURE, Outcome.FAILURE]


def test_runner_returning_false_is_a_failure(make_dispatcher, clock):
    class FalseRunner:
        def execute(self, job):
            return False

    dispatcher = Dispatcher(
        JobRegistry([job("A")]), OverlapGuard(), FalseRunner(), "production", clock=clock, observer=lambda *a: None
    )
    clock.set(at(10, 0))
    records = dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert records[0].outcome is Outcome.FAILURE
    dispatcher.shutdown(timeout=1)


def test_pool_saturation_drops_the_run(make_dispatcher, clock, runner, observed):
    gate = runner.block("slow")
    dispatcher = make_dispatcher(job("slow"), job("other"), max_workers=1)

    clock.set(at(10, 0))
    records = dispatcher.tick()
    assert outcomes(records)["other"] is Outcome.SKIPPED_CAPACITY
    assert not dispatcher.guard.held("other")
    assert observed.outcomes("other") == [Outcome.SKIPPED_CAPACITY]

    gate.set()
    dispatcher.drain(timeout=5)

    # Capacity is back next tick
    clock.set(at(10, 1))
    records = dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert outcomes(records) == {"slow": Outcome.SUCCESS, "other": Outcome.SUCCESS}


def test_observer_errors_do_not_reach_the_tick(clock, runner):
    def broken_observer(*args):
        raise RuntimeError("collector down")

    dispatcher = Dispatcher(
        JobRegistry([job("A")]), OverlapGuard(), runner, "production", clock=clock, observer=broken_observer
    )
    clock.set(at(10, 0))
    records = dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert records[0].outcome is Outcome.SUCCESS
    dispatcher.shutdown(timeout=1)


def test_records_are_bounded(make_dispatcher, clock):
    dispatcher = make_dispatcher(job("A", overlap=OverlapPolicy.ALLOW_CONCURRENT), history=3)
    for minute in range(5):
        clock.set(at(10, minute))
        dispatcher.tick()
    dispatcher.drain(timeout=5)
    assert [r.started_at for r in dispatcher.records] == [at(10, 2), at(10, 3), at(10, 4)]


def test_drain_raises_on_timeout(make_dispatcher, clock, runner):
    gate = runner.block("A")
    dispatcher = make_dispatcher(job("A"))
    clock.set(at(10, 0))
    dispatcher.tick()
    assert runner.started["A"].wait(2)

    with pytest.raises(ShutdownTimeout) as excinfo:
        dispatcher.drain(timeout=0.05)
    assert excinfo.value.pending == ["A"]
    gate.set()


def test_shutdown_drains_running_jobs(make_dispatcher, clock, runner):
    dispatcher = make_dispatcher(job("A"))
    clock.set(at(10, 0))
    records = dispatcher.tick()
    assert dispatcher.shutdown(timeout=5) == []
    assert records[0].outcome is Outcome.SUCCESS


def test_shutdown_timeout_force_releases_locks(make_dispatcher, clock, runner):
    gate = runner.block("A")
    dispatcher = make_dispatcher(job("A"))
    clock.set(at(10, 0))
    dispatcher.tick()
    assert runner.started["A"].wait(2)

    assert dispatcher.shutdown(timeout=0.05) == ["A"]
    assert not dispatcher.guard.held("A")

    # No more ticks after shutdown
    clock.set(at(10, 1))
    assert dispatcher.tick() == []
    gate.set()


def test_submit_failure_is_recorded(clock, runner, observed):
    class ClosedExecutor:
        def submit(self, fn, *args):
            raise RuntimeError("cannot schedule new futures after shutdown")

    guard = OverlapGuard()
    dispatcher = Dispatcher(
        JobRegistry([job("A")]), guard, runner, "production",
        clock=clock, observer=observed, executor=ClosedExecutor(),
    )
    clock.set(at(10, 0))
    records = dispatcher.tick()
    assert records[0].outcome is Outcome.FAILURE
    assert not guard.held("A")
