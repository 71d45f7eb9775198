"""Tickwork entry point - schedule setup and environment configuration."""

import logging
import os
import signal
import sys

import pendulum

from tickwork.config import load_schedule
from tickwork.dispatcher import Dispatcher
from tickwork.env import init_env
from tickwork.evaluator import next_due
from tickwork.guard import OverlapGuard
from tickwork.jobs import build_schedule
from tickwork.otel import get_logger, init_otel, span
from tickwork.runner import SubprocessRunner
from tickwork.scheduler import build_ticker
from tickwork.store import RedisLockStore

log = get_logger()


def main():
    """Start the Tickwork scheduler."""
    settings = init_env()
    init_otel(environment=settings.environment)

    def clock():
        return pendulum.now(settings.timezone)

    # Structural errors (bad cadence, duplicate names) stop us here
    config = load_schedule(settings.schedule_path)
    registry = build_schedule(settings.environment, config.definitions(), tiers=config.tiers or None)

    store = RedisLockStore.from_url(settings.redis_url) if settings.redis_url else None
    guard = OverlapGuard(store=store, clock=clock)
    guard.recover()

    dispatcher = Dispatcher(
        registry,
        guard,
        SubprocessRunner(),
        environment=settings.environment,
        clock=clock,
        max_workers=settings.max_workers,
    )
    ticker = build_ticker(dispatcher, timezone=settings.timezone)

    now = clock()
    with span("tickwork.startup", environment=settings.environment, jobs=str(registry.names())):
        log.info("⏱️ Tickwork starting...")
        log.info(f"   Environment: {settings.environment or '(none)'}")
        log.info(f"   Timezone: {settings.timezone}")
        for job in dispatcher.jobs:
            upcoming = next_due(job.cadence, now, window=job.window)
            window = f", {job.window}" if job.window else ""
            log.info(
                f"   {job.name}: {job.cadence}{window}, {job.overlap.value}, "
                f"next {upcoming.isoformat() if upcoming else 'never'}"
            )

    # SIGTERM (systemd stop) drains like Ctrl-C does
    signal.signal(signal.SIGTERM, lambda *_: sys.exit(0))

    try:
        ticker.start()  # Blocks forever
    except (KeyboardInterrupt, SystemExit):
        if ticker.running:
            ticker.shutdown(wait=False)

    with span("tickwork.shutdown"):
        forced = dispatcher.shutdown(timeout=settings.shutdown_timeout)
        log.info("⏱️ Tickwork stopped")

    if forced:
        # Workers are still busy; don't wait on them at interpreter exit
        logging.shutdown()
        os._exit(1)


if __name__ == "__main__":
    main()
