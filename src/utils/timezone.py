"""
Period Boundaries

Day / week / month boundaries in the deployment timezone.
Budgets, counters and alert guards all roll over on local midnight,
while the event log stores naive UTC timestamps.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


def local_now(tz_name: str = "UTC") -> datetime:
    """Current time as an aware datetime in the given timezone."""
    return datetime.now(ZoneInfo(tz_name))


def _localize(moment: datetime, tz_name: Optional[str]) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    if tz_name:
        moment = moment.astimezone(ZoneInfo(tz_name))
    return moment


def day_bounds(moment: datetime, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Start (inclusive) and end (exclusive) of the local day containing moment."""
    moment = _localize(moment, tz_name)
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return start, end


def week_bounds(moment: datetime, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Monday-based week containing moment."""
    day_start, _ = day_bounds(moment, tz_name)
    start = day_start - timedelta(days=day_start.weekday())
    end = start + timedelta(days=7)
    return start, end


def month_bounds(moment: datetime, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """Calendar month containing moment."""
    moment = _localize(moment, tz_name)
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def end_of_day(moment: datetime, tz_name: Optional[str] = None) -> datetime:
    return day_bounds(moment, tz_name)[1]


def end_of_month(moment: datetime, tz_name: Optional[str] = None) -> datetime:
    return month_bounds(moment, tz_name)[1]


def days_in_month(moment: datetime) -> int:
    start, end = month_bounds(moment)
    return (end.date() - start.date()).days


def to_utc_naive(moment: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in the database."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)
