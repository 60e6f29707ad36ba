"""Sprint boundary calculator.

Pure date arithmetic, no I/O. Given a repository's sprint settings it answers
"which sprint does this moment belong to" and "what are that sprint's
boundaries" the same way for sync, dashboards and history.

Weekdays use the tracker convention: 0=Sunday, 1=Monday, ..., 6=Saturday.
Sprint 1 starts on ``base_date`` snapped back to the configured weekday.
Moments before that yield sprint numbers <= 0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sprintscore.errors import ConfigurationError

DEFAULT_START_DAY_OF_WEEK = 6  # Saturday
DEFAULT_DURATION_WEEKS = 1
ALLOWED_DURATIONS = (1, 2)

DAY_NAMES = ("Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat")

END_OF_DAY = time(23, 59, 59, 999000)


def tracker_weekday(d: date) -> int:
    """Weekday of ``d`` with Sunday as 0."""
    return d.isoweekday() % 7


def resolve_timezone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"Unknown timezone: {name!r}") from e


@dataclass(frozen=True)
class SprintConfig:
    start_day_of_week: int = DEFAULT_START_DAY_OF_WEEK
    duration_weeks: int = DEFAULT_DURATION_WEEKS
    base_date: date = field(default_factory=date.today)
    timezone: str = "UTC"

    def __post_init__(self) -> None:
        if isinstance(self.start_day_of_week, bool) or not isinstance(self.start_day_of_week, int):
            raise ConfigurationError(f"start_day_of_week must be an integer: {self.start_day_of_week!r}")
        if not 0 <= self.start_day_of_week <= 6:
            raise ConfigurationError(f"start_day_of_week must be 0-6, got {self.start_day_of_week}")
        if self.duration_weeks not in ALLOWED_DURATIONS or isinstance(self.duration_weeks, bool):
            raise ConfigurationError(f"duration_weeks must be 1 or 2, got {self.duration_weeks!r}")
        if not isinstance(self.base_date, date):
            raise ConfigurationError(f"base_date must be a date, got {self.base_date!r}")
        if isinstance(self.base_date, datetime):
            # frozen dataclass: truncate the time part in place
            object.__setattr__(self, "base_date", _local_date(self.base_date, resolve_timezone(self.timezone)))
        resolve_timezone(self.timezone)

    @property
    def tzinfo(self) -> tzinfo:
        return resolve_timezone(self.timezone)

    @property
    def duration_days(self) -> int:
        return self.duration_weeks * 7


@dataclass(frozen=True, order=True)
class SprintNumber:
    """A sprint index relative to the base date.

    Use ``create`` for ordinary sprints (>= 1). ``allowing_non_positive`` is
    the explicit path for sprints that precede the base date.
    """

    value: int

    def __post_init__(self) -> None:
        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise TypeError(f"Sprint number must be an integer, got {self.value!r}")

    @classmethod
    def create(cls, value: int) -> SprintNumber:
        number = cls(value)
        if number.value < 1:
            raise ValueError(f"Sprint number must be >= 1, got {value}")
        return number

    @classmethod
    def allowing_non_positive(cls, value: int) -> SprintNumber:
        return cls(value)

    @property
    def is_before_base(self) -> bool:
        return self.value < 1

    def offset(self, delta: int) -> SprintNumber:
        return SprintNumber.allowing_non_positive(self.value + delta)

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return f"Sprint {self.value}"


@dataclass(frozen=True)
class SprintPeriod:
    """Inclusive sprint boundaries: midnight of the first day to 23:59:59.999 of the last."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError("Sprint end must not precede its start")

    @property
    def start_date(self) -> date:
        return self.start.date()

    @property
    def end_date(self) -> date:
        return self.end.date()

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def contains(self, moment: date | datetime) -> bool:
        """Inclusive on both ends, compared by calendar day in the period's zone."""
        day = _local_date(moment, self.start.tzinfo)
        return self.start_date <= day <= self.end_date

    def format(self) -> str:
        """Short label such as ``1/6(Sat) - 1/12(Fri)``."""
        return f"{_short(self.start_date)} - {_short(self.end_date)}"

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class Sprint:
    number: SprintNumber
    period: SprintPeriod
    is_current: bool


def _short(d: date) -> str:
    return f"{d.month}/{d.day}({DAY_NAMES[tracker_weekday(d)]})"


def _local_date(moment: date | datetime, tz: tzinfo | None) -> date:
    if isinstance(moment, datetime):
        if moment.tzinfo is not None and tz is not None:
            moment = moment.astimezone(tz)
        return moment.date()
    return moment


class SprintCalculator:
    """Maps moments to sprint numbers and sprint numbers to periods."""

    def __init__(self, config: SprintConfig) -> None:
        self._config = config
        self._tz = config.tzinfo
        self._base_start = self._snap(config.base_date)

    @property
    def config(self) -> SprintConfig:
        return self._config

    @property
    def base_start(self) -> date:
        return self._base_start

    def _snap(self, day: date) -> date:
        """Move ``day`` back to the most recent configured start weekday."""
        diff = (tracker_weekday(day) - self._config.start_day_of_week) % 7
        return day - timedelta(days=diff)

    def local_date(self, moment: date | datetime) -> date:
        return _local_date(moment, self._tz)

    def sprint_number(self, moment: date | datetime) -> SprintNumber:
        start = self._snap(self.local_date(moment))
        days = (start - self._base_start).days
        # floor division, so moments before the base land in sprint 0, -1, ...
        return SprintNumber.allowing_non_positive(days // self._config.duration_days + 1)

    def period_for(self, number: SprintNumber | int) -> SprintPeriod:
        value = int(number)
        first = self._base_start + timedelta(days=(value - 1) * self._config.duration_days)
        last = first + timedelta(days=self._config.duration_days - 1)
        return SprintPeriod(
            start=datetime.combine(first, time.min, tzinfo=self._tz),
            end=datetime.combine(last, END_OF_DAY, tzinfo=self._tz),
        )

    def current_sprint(self, now: datetime) -> Sprint:
        number = self.sprint_number(now)
        return Sprint(number=number, period=self.period_for(number), is_current=True)

    def sprint_with_offset(self, now: datetime, offset: int) -> Sprint:
        number = self.sprint_number(now).offset(offset)
        return Sprint(number=number, period=self.period_for(number), is_current=offset == 0)

    def format(self, period: SprintPeriod) -> str:
        return period.format()


def compute_sprint(config: SprintConfig, moment: datetime, offset: int = 0) -> Sprint:
    """One-shot helper: the sprint ``offset`` sprints away from ``moment``'s."""
    return SprintCalculator(config).sprint_with_offset(moment, offset)
