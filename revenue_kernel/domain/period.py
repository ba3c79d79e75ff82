"""
Reporting window value object.

A window is a pair of inclusive calendar dates interpreted in the reporting
timezone.  ``bounds()`` turns it into a half-open UTC interval
``[start, end)`` that the selectors compare stored timestamps against, so an
event at 23:59:59 local time on the end date is inside the window and one at
00:00:00 on the next day is not.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


@dataclass(frozen=True)
class ReportingPeriod:
    start_date: date
    end_date: date
    timezone_name: str = "UTC"

    def __post_init__(self) -> None:
        if self.end_date < self.start_date:
            raise ValueError(
                f"Period end {self.end_date} is before start {self.start_date}"
            )
        try:
            ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {self.timezone_name!r}") from None

    @classmethod
    def single_day(cls, day: date, timezone_name: str = "UTC") -> ReportingPeriod:
        return cls(day, day, timezone_name)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def bounds(self) -> tuple[datetime, datetime]:
        """UTC ``[start, end)`` covering every local instant of the window."""
        tz = self.tz
        start = datetime.combine(self.start_date, time.min, tzinfo=tz)
        end = datetime.combine(self.end_date + timedelta(days=1), time.min, tzinfo=tz)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def contains(self, moment: datetime) -> bool:
        start, end = self.bounds()
        return start <= moment < end

    def local_date(self, moment: datetime) -> date:
        """Calendar date of ``moment`` in the reporting timezone."""
        return moment.astimezone(self.tz).date()

    def previous(self) -> ReportingPeriod:
        """The window of equal length ending the day before this one starts."""
        end = self.start_date - timedelta(days=1)
        start = end - timedelta(days=self.days - 1)
        return ReportingPeriod(start, end, self.timezone_name)

    def each_day(self) -> list[date]:
        return [self.start_date + timedelta(days=n) for n in range(self.days)]

    def __str__(self) -> str:
        return f"{self.start_date.isoformat()}..{self.end_date.isoformat()} ({self.timezone_name})"
