"""APScheduler ticker - calls the dispatcher at the top of every minute.

APScheduler only provides the clock here. Which jobs are due, overlap
checks and execution all live in the Dispatcher.
"""

from apscheduler.schedulers.blocking import BlockingScheduler

from tickwork.dispatcher import Dispatcher


def build_ticker(dispatcher: Dispatcher, timezone: str = "UTC") -> BlockingScheduler:
    ticker = BlockingScheduler(
        timezone=timezone,
        job_defaults={
            "coalesce": True,  # If ticks were missed, run once not N times
            "max_instances": 1,  # A slow tick is never overlapped by the next one
            "misfire_grace_time": 30,  # A tick more than 30s late is simply missed
        },
    )
    ticker.add_job(dispatcher.tick, "cron", minute="*", second=0, id="tick")
    return ticker
