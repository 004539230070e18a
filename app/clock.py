from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.errors import InvalidArgument


class Clock:
    """
    Single place where instants meet the business timezone.

    Everything is stored and compared as aware UTC; local time only appears
    when a calendar date or a slot window has to be resolved.
    """

    def __init__(self, tz_name: str) -> None:
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    @staticmethod
    def to_utc(dt: datetime) -> datetime:
        if dt.tzinfo is None:
            raise InvalidArgument(
                "datetime must be timezone-aware (include UTC offset)",
                {"value": dt.isoformat()},
            )
        return dt.astimezone(timezone.utc)

    def to_local(self, dt: datetime) -> datetime:
        return self.to_utc(dt).astimezone(self.tz)

    def local_date(self, dt: datetime) -> date:
        return self.to_local(dt).date()

    def local_window(
        self, day: date, start: time, end: time
    ) -> tuple[datetime, datetime]:
        """Resolve local wall-clock times on ``day`` to a UTC range.

        An end time at or before the start time (``00:00`` for "midnight")
        lands on the following day.
        """
        local_start = datetime.combine(day, start, tzinfo=self.tz)
        end_day = day if end > start else day + timedelta(days=1)
        local_end = datetime.combine(end_day, end, tzinfo=self.tz)
        return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)

    def day_bounds(self, day: date) -> tuple[datetime, datetime]:
        return self.local_window(day, time(0, 0), time(0, 0))
