"""Recurrence evaluator - is a cadence due at this minute?

is_due() is a pure function of (cadence, now, last_evaluated, window).
The dispatcher owns last_evaluated and moves it forward whenever a job
fires, which is what makes a second call in the same minute return False.

Only the current instant is ever considered. A job whose slot was missed
(process paused, clock jumped) fires at most once on the next matching
tick; there is no catch-up.

All timestamps passed in must agree on awareness: either all tz-aware
(the normal case, pendulum.now(tz)) or all naive.
"""

from datetime import datetime, time, timedelta

from croniter import CroniterBadDateError, croniter

from tickwork.cadence import (
    Cadence,
    CronExpression,
    DailyAt,
    Hourly,
    HourlyAt,
    Interval,
    TimeWindow,
)
from tickwork.errors import InvalidCadence

# How far next_due() searches before giving up
SEARCH_DAYS = 5 * 366


def _minute(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


def _hour(moment: datetime) -> datetime:
    return moment.replace(minute=0, second=0, microsecond=0)


def cron_weekday(moment: datetime) -> int:
    """Day of week in cron numbering (0 = Sunday)."""
    return (moment.weekday() + 1) % 7


def _day_matches(cron: CronExpression, moment: datetime) -> bool:
    if cron.month is not None and moment.month not in cron.month:
        return False
    dom_ok = cron.day_of_month is None or moment.day in cron.day_of_month
    dow_ok = cron.day_of_week is None or cron_weekday(moment) in cron.day_of_week
    return dom_ok and dow_ok


def cron_matches(cron: CronExpression, moment: datetime) -> bool:
    """True if every field of `moment` is in the corresponding cron field set."""
    if cron.minute is not None and moment.minute not in cron.minute:
        return False
    if cron.hour is not None and moment.hour not in cron.hour:
        return False
    return _day_matches(cron, moment)


def is_due(
    cadence: Cadence,
    now: datetime,
    last_evaluated: datetime | None = None,
    window: TimeWindow | None = None,
) -> bool:
    """Decide whether `cadence` fires at `now`.

    Args:
        cadence: The job's cadence
        now: The tick instant (truncated to the minute)
        last_evaluated: When the job last fired, or None if never
        window: Optional between(start, end) constraint on local time of day

    Returns:
        True if the job should run in this minute.
    """
    now = _minute(now)
    last = _minute(last_evaluated) if last_evaluated is not None else None

    # Already fired in this minute, or the clock stepped backwards
    if last is not None and now <= last:
        return False

    if window is not None and not window.contains(time(now.hour, now.minute)):
        return False

    if isinstance(cadence, Interval):
        return last is None or now - last >= cadence.every

    if isinstance(cadence, DailyAt):
        if (now.hour, now.minute) != (cadence.hour, cadence.minute):
            return False
        return last is None or last.date() != now.date()

    if isinstance(cadence, (Hourly, HourlyAt)):
        if now.minute != cadence.minute:
            return False
        return last is None or _hour(last) != _hour(now)

    if isinstance(cadence, CronExpression):
        return cron_matches(cadence, now)

    raise InvalidCadence(f"Unknown cadence type: {type(cadence).__name__}")


def _as_cron(cadence: Cadence) -> CronExpression:
    if isinstance(cadence, CronExpression):
        return cadence
    if isinstance(cadence, DailyAt):
        return CronExpression(minute={cadence.minute}, hour={cadence.hour})
    if isinstance(cadence, (Hourly, HourlyAt)):
        return CronExpression(minute={cadence.minute})
    raise InvalidCadence(f"No calendar form for {type(cadence).__name__}")


def next_due(
    cadence: Cadence,
    after: datetime,
    last_evaluated: datetime | None = None,
    window: TimeWindow | None = None,
) -> datetime | None:
    """The first minute strictly after `after` at which is_due() would fire.

    Assumes no run happens in between. Returns None if nothing matches
    within the search horizon (e.g. a daily time that sits outside its
    window).
    """
    start = _minute(after) + timedelta(minutes=1)

    if isinstance(cadence, Interval):
        if last_evaluated is not None:
            start = max(start, _minute(last_evaluated) + cadence.every)
        # Once elapsed an interval stays due, so only the window can delay it
        for step in range(24 * 60 + 1):
            candidate = start + timedelta(minutes=step)
            if is_due(cadence, candidate, last_evaluated, window):
                return candidate
        return None

    # get_next() is strictly after its base; day_or=False keeps the AND rule
    schedule = croniter(_as_cron(cadence).crontab, start - timedelta(minutes=1), day_or=False)
    horizon = start + timedelta(days=SEARCH_DAYS)
    try:
        while True:
            candidate = schedule.get_next(datetime)
            if candidate > horizon:
                return None
            if is_due(cadence, candidate, last_evaluated, window):
                return candidate
    except CroniterBadDateError:
        return None
