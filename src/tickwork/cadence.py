"""Cadences - the rules that decide how often a job is due.

Five variants:
- Interval: every N minutes/hours/days since the last run
- DailyAt: once a day at HH:MM
- CronExpression: standard five-field cron, expanded by croniter into explicit field sets
- Hourly / HourlyAt: once an hour at :00 or :MM

All variants validate on construction and raise InvalidCadence, so a
broken rule never reaches the evaluator. Cron strings are parsed once
here (parse_cron) rather than re-read on every tick.
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import time, timedelta
from typing import Any, Union

import pendulum
from croniter import croniter

from tickwork.errors import InvalidCadence

# (low, high) inclusive, in cron field order
MINUTES = (0, 59)
HOURS = (0, 23)
DAYS_OF_MONTH = (1, 31)
MONTHS = (1, 12)
DAYS_OF_WEEK = (0, 6)  # 0 = Sunday

MONTH_LENGTHS = {1: 31, 2: 29, 3: 31, 4: 30, 5: 31, 6: 30, 7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}


def _check_int(value: Any, bounds: tuple[int, int], label: str) -> int:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidCadence(f"{label} must be an integer, got {value!r}")
    if not low <= value <= high:
        raise InvalidCadence(f"{label} {value} out of range {low}-{high}")
    return value


def _check_field(values: Iterable[int] | None, bounds: tuple[int, int], label: str):
    """Normalize a cron field to a frozenset, or None for the wildcard."""
    if values is None:
        return None
    if isinstance(values, (str, bytes)):
        raise InvalidCadence(f"{label} must be a set of integers, got {values!r}")
    try:
        checked = frozenset(_check_int(v, bounds, label) for v in values)
    except TypeError:
        raise InvalidCadence(f"{label} must be a set of integers, got {values!r}") from None
    if not checked:
        raise InvalidCadence(f"{label} must not be empty")
    return checked


def _format_field(values: frozenset[int] | None) -> str:
    if values is None:
        return "*"
    return ",".join(str(v) for v in sorted(values))


# === CADENCE VARIANTS ===


@dataclass(frozen=True)
class Interval:
    """Due when at least `every` has elapsed since the last run."""

    every: timedelta

    def __post_init__(self):
        self.validate()

    def validate(self):
        if not isinstance(self.every, timedelta):
            raise InvalidCadence(f"interval must be a timedelta, got {self.every!r}")
        seconds = self.every.total_seconds()
        if seconds <= 0:
            raise InvalidCadence(f"interval must be positive, got {self.every}")
        # Evaluation runs once a minute; anything finer can't be honored
        if seconds % 60:
            raise InvalidCadence(f"interval must be a whole number of minutes, got {self.every}")

    def __str__(self):
        return f"every {int(self.every.total_seconds() // 60)}m"


@dataclass(frozen=True)
class DailyAt:
    """Due once per calendar day at hour:minute."""

    hour: int
    minute: int = 0

    def __post_init__(self):
        self.validate()

    def validate(self):
        _check_int(self.hour, HOURS, "hour")
        _check_int(self.minute, MINUTES, "minute")

    def __str__(self):
        return f"daily at {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class CronExpression:
    """Five cron fields, each an explicit set of values or None (wildcard)."""

    minute: frozenset[int] | None = None
    hour: frozenset[int] | None = None
    day_of_month: frozenset[int] | None = None
    month: frozenset[int] | None = None
    day_of_week: frozenset[int] | None = None

    def __post_init__(self):
        self.validate()

    def validate(self):
        for name, bounds in (
            ("minute", MINUTES),
            ("hour", HOURS),
            ("day_of_month", DAYS_OF_MONTH),
            ("month", MONTHS),
            ("day_of_week", DAYS_OF_WEEK),
        ):
            object.__setattr__(self, name, _check_field(getattr(self, name), bounds, name))

        # "0 0 31 4 *" would never fire
        if self.day_of_month is not None and self.month is not None:
            if min(self.day_of_month) > max(MONTH_LENGTHS[m] for m in self.month):
                raise InvalidCadence(
                    f"day_of_month {_format_field(self.day_of_month)} never occurs "
                    f"in month {_format_field(self.month)}"
                )

    @property
    def crontab(self) -> str:
        """The five fields back in crontab form, for croniter."""
        return " ".join(
            _format_field(v)
            for v in (self.minute, self.hour, self.day_of_month, self.month, self.day_of_week)
        )

    def __str__(self):
        return f"cron {self.crontab}"


@dataclass(frozen=True)
class Hourly:
    """Due at the top of every hour."""

    def validate(self):
        pass

    @property
    def minute(self) -> int:
        return 0

    def __str__(self):
        return "hourly"


@dataclass(frozen=True)
class HourlyAt:
    """Due once an hour at :minute."""

    minute: int

    def __post_init__(self):
        self.validate()

    def validate(self):
        _check_int(self.minute, MINUTES, "minute")

    def __str__(self):
        return f"hourly at :{self.minute:02d}"


Cadence = Union[Interval, DailyAt, CronExpression, Hourly, HourlyAt]
CADENCE_TYPES = (Interval, DailyAt, CronExpression, Hourly, HourlyAt)


def validate_cadence(cadence: Any) -> Cadence:
    """Re-check a cadence before it is registered."""
    if not isinstance(cadence, CADENCE_TYPES):
        raise InvalidCadence(f"Unknown cadence type: {type(cadence).__name__}")
    cadence.validate()
    return cadence


# === TIME WINDOW ===


@dataclass(frozen=True)
class TimeWindow:
    """between(start, end) on local time of day, inclusive on both ends.

    A window whose start is after its end wraps midnight: 22:00-02:00
    covers late evening and early morning.
    """

    start: time
    end: time

    def __post_init__(self):
        if not isinstance(self.start, time) or not isinstance(self.end, time):
            raise InvalidCadence(f"window bounds must be times, got {self.start!r}, {self.end!r}")
        # Minute granularity
        object.__setattr__(self, "start", self.start.replace(second=0, microsecond=0, tzinfo=None))
        object.__setattr__(self, "end", self.end.replace(second=0, microsecond=0, tzinfo=None))

    def contains(self, moment: time) -> bool:
        t = moment.replace(second=0, microsecond=0, tzinfo=None)
        if self.start <= self.end:
            return self.start <= t <= self.end
        return t >= self.start or t <= self.end

    def __str__(self):
        return f"between {self.start:%H:%M}-{self.end:%H:%M}"


# === PARSING ===

_DURATION_RE = re.compile(r"^(?:(\d+)d)?(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_duration(text: str) -> pendulum.Duration:
    """Parse '1h', '90m', '1d12h', '30s' into a pendulum Duration."""
    match = _DURATION_RE.match(str(text).strip().lower())
    if not text or not match or not any(match.groups()):
        raise InvalidCadence(f"Invalid duration: {text!r}")
    days, hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    duration = pendulum.duration(days=days, hours=hours, minutes=minutes, seconds=seconds)
    if duration.total_seconds() <= 0:
        raise InvalidCadence(f"Duration must be positive: {text!r}")
    return duration


def parse_time_of_day(text: str) -> time:
    """Parse 'HH:MM' into a time."""
    match = _TIME_RE.match(str(text).strip())
    if not match:
        raise InvalidCadence(f"Invalid time of day: {text!r} (expected HH:MM)")
    hour, minute = int(match.group(1)), int(match.group(2))
    _check_int(hour, HOURS, "hour")
    _check_int(minute, MINUTES, "minute")
    return time(hour, minute)


CRON_FIELDS = ("minute", "hour", "day_of_month", "month", "day_of_week")


def _expanded_field(values: list, label: str):
    """croniter's expansion of one field -> frozenset, or None for '*'."""
    if values == ["*"]:
        return None
    if not all(isinstance(v, int) for v in values):
        raise InvalidCadence(f"Unsupported {label} values: {values!r}")
    if label == "day_of_week":
        # croniter accepts 7 as a second Sunday
        return frozenset(0 if v == 7 else v for v in values)
    return frozenset(values)


def parse_cron(expression: str) -> CronExpression:
    """Parse a five-field cron string (or @hourly/@daily/...) into a CronExpression."""
    text = str(expression).strip().lower()
    if not text.startswith("@") and len(text.split()) != 5:
        raise InvalidCadence(f"Cron expression needs 5 fields, got {len(text.split())}: {expression!r}")

    try:
        parsed = croniter(text)
    except (ValueError, KeyError, IndexError) as e:
        raise InvalidCadence(f"Invalid cron expression {expression!r}: {e}") from None
    # "fri#2" / "5L" pick one weekday of the month; a field set can't say that
    if parsed.nth_weekday_of_month:
        raise InvalidCadence(f"Nth-weekday cron fields are not supported: {expression!r}")

    # Any seconds or year field croniter adds comes after these five
    fields = {
        label: _expanded_field(values, label) for label, values in zip(CRON_FIELDS, parsed.expanded)
    }
    return CronExpression(**fields)


CADENCE_KEYS = ("every", "daily_at", "cron", "hourly", "hourly_at")


def parse_cadence(fields: Mapping[str, Any]) -> Cadence:
    """Build a cadence from config data. Exactly one cadence key must be set.

    Examples:
        {"every": "1h"}             -> Interval
        {"daily_at": "03:30"}       -> DailyAt
        {"cron": "15 6,8,10 * * *"} -> CronExpression
        {"hourly": True}            -> Hourly
        {"hourly_at": 5}            -> HourlyAt
    """
    present = [key for key in CADENCE_KEYS if fields.get(key) is not None and fields.get(key) is not False]
    if len(present) != 1:
        raise InvalidCadence(
            f"Exactly one of {', '.join(CADENCE_KEYS)} is required, got {present or 'none'}"
        )

    key = present[0]
    value = fields[key]
    if key == "every":
        return Interval(parse_duration(value))
    if key == "daily_at":
        t = parse_time_of_day(value)
        return DailyAt(t.hour, t.minute)
    if key == "cron":
        return parse_cron(value)
    if key == "hourly":
        if value is not True:
            raise InvalidCadence(f"hourly must be true, got {value!r}")
        return Hourly()
    return HourlyAt(value)
