"""
Time Window Resolver - Calendar day/week/month windows in a user's timezone

Windows are computed from local calendar fields and converted back to UTC with
the zone's offset at each boundary, so days spanning a DST change are 23 or 25
hours long rather than shifted by an hour.
"""

from dataclasses import dataclass
from datetime import datetime, date, time, timedelta, timezone
from enum import Enum
from typing import Optional, Tuple, Union
import logging

import pytz

from goalcoach.core.config import settings
from goalcoach.core.context import ensure_utc

logger = logging.getLogger(__name__)

# Smallest representable step; a window ends one step before the next begins
RESOLUTION = timedelta(microseconds=1)


class Cadence(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value: Union["Cadence", str, None]) -> "Cadence":
        if isinstance(value, cls):
            return value
        if not value:
            return cls.DAILY
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.warning(f"Unknown cadence {value!r}, treating as daily")
            return cls.DAILY


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [start, end] pair of UTC instants"""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        instant = ensure_utc(instant)
        return self.start <= instant <= self.end

    @property
    def next_start(self) -> datetime:
        return self.end + RESOLUTION

    def as_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def resolve_timezone(name: Optional[str]):
    """Return the pytz zone for an IANA name.

    Absent or unknown names fall back to the configured default zone, then UTC.
    Never raises.
    """
    for candidate in (name, settings.default_timezone):
        if not candidate:
            continue
        try:
            return pytz.timezone(candidate)
        except (pytz.UnknownTimeZoneError, ValueError, TypeError):
            logger.warning(f"Invalid timezone {candidate!r}, falling back to default zone")
    return pytz.utc


def local_date(instant: datetime, tz_name: Optional[str]) -> date:
    """Calendar date of an instant as seen in the given zone"""
    tz = resolve_timezone(tz_name)
    return ensure_utc(instant).astimezone(tz).date()


def local_midnight_utc(day: date, tz) -> datetime:
    """UTC instant of local 00:00 on day, using the offset in force at that moment"""
    # is_dst=False resolves a skipped midnight to the first valid instant after it
    local = tz.localize(datetime.combine(day, time.min), is_dst=False)
    return local.astimezone(timezone.utc)


def period_bounds(day: date, cadence: Cadence) -> Tuple[date, date]:
    """First local day of the period containing day, and first day of the next period"""
    if cadence is Cadence.WEEKLY:
        first = day - timedelta(days=day.weekday())  # ISO week, Monday start
        return first, first + timedelta(days=7)
    if cadence is Cadence.MONTHLY:
        first = day.replace(day=1)
        if first.month == 12:
            following = first.replace(year=first.year + 1, month=1)
        else:
            following = first.replace(month=first.month + 1)
        return first, following
    return day, day + timedelta(days=1)


def window_for_days(first_day: date, next_first_day: date, tz) -> TimeWindow:
    start = local_midnight_utc(first_day, tz)
    end = local_midnight_utc(next_first_day, tz) - RESOLUTION
    return TimeWindow(start=start, end=end)


def resolve_day(now_utc: datetime, tz_name: Optional[str]) -> TimeWindow:
    """Local calendar day containing now_utc, expressed in UTC"""
    return resolve_period(now_utc, tz_name, Cadence.DAILY)


def resolve_period(now_utc: datetime, tz_name: Optional[str], cadence: Union[Cadence, str, None]) -> TimeWindow:
    """Local day, ISO week or month containing now_utc, expressed in UTC"""
    tz = resolve_timezone(tz_name)
    day = ensure_utc(now_utc).astimezone(tz).date()
    first, following = period_bounds(day, Cadence.parse(cadence))
    return window_for_days(first, following, tz)
