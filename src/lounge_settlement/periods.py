"""Local-day, week, and month windows used for fetching and bulk deletes.

Every window is half-open: the start is inclusive and the end exclusive, so
consecutive days (or weeks, or months) never overlap and a record stamped
exactly at midnight belongs to the day that begins there.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from .constants import DEFAULT_TIMEZONE


@dataclass(frozen=True)
class DateRange:
    """Half-open ``[start, end)`` window of aware datetimes."""

    start: datetime
    end: datetime
    label: str

    def __post_init__(self) -> None:
        if self.start.tzinfo is None or self.end.tzinfo is None:
            raise ValueError("DateRange bounds must be timezone-aware")
        if self.end <= self.start:
            raise ValueError("DateRange end must be after its start")

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return self.start <= moment < self.end

    @classmethod
    def day(cls, day: date, tz: tzinfo) -> "DateRange":
        start = _local_midnight(day, tz)
        end = _local_midnight(day + timedelta(days=1), tz)
        return cls(start=start, end=end, label=day.isoformat())

    @classmethod
    def week(cls, any_day: date, tz: tzinfo) -> "DateRange":
        """Monday-to-Sunday week containing ``any_day``."""

        monday = any_day - timedelta(days=any_day.weekday())
        sunday = monday + timedelta(days=6)
        start = _local_midnight(monday, tz)
        end = _local_midnight(monday + timedelta(days=7), tz)
        return cls(start=start, end=end, label=f"{monday.isoformat()} to {sunday.isoformat()}")

    @classmethod
    def month(cls, year: int, month: int, tz: tzinfo) -> "DateRange":
        first = date(year, month, 1)
        following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        start = _local_midnight(first, tz)
        end = _local_midnight(following, tz)
        return cls(start=start, end=end, label=first.strftime("%B %Y"))


def _local_midnight(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """Return the configured zone, defaulting to UTC for blank names."""

    return ZoneInfo((name or "").strip() or DEFAULT_TIMEZONE)


def local_day(moment: datetime, tz: tzinfo) -> date:
    """Calendar day of ``moment`` as seen in ``tz``."""

    return moment.astimezone(tz).date()


__all__ = ["DateRange", "resolve_timezone", "local_day"]
