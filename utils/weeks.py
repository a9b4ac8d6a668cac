"""utils/weeks.py

Balanced week buckets for a calendar month.

Every week view (calendar grid, weekly summary) must go through
get_balanced_weeks so the buckets never drift between screens.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date

SUNDAY = 6
ORPHAN_MAX_DAYS = 2


@dataclass
class WeekBucket:
    week_index: int
    days: list[int] = field(default_factory=list)

    def to_dict(self):
        return {"weekIndex": self.week_index, "days": list(self.days)}


def get_balanced_weeks(day: date) -> list[WeekBucket]:
    """Split the month of ``day`` into weeks ending on Sunday.

    A leading or trailing week of two days or fewer is folded into its
    neighbour.
    """
    year, month = day.year, day.month
    days_in_month = calendar.monthrange(year, month)[1]

    weeks: list[list[int]] = []
    current: list[int] = []
    for d in range(1, days_in_month + 1):
        current.append(d)
        if date(year, month, d).weekday() == SUNDAY or d == days_in_month:
            weeks.append(current)
            current = []

    if len(weeks) > 1 and len(weeks[0]) <= ORPHAN_MAX_DAYS:
        first = weeks.pop(0)
        weeks[0] = first + weeks[0]

    if len(weeks) > 1 and len(weeks[-1]) <= ORPHAN_MAX_DAYS:
        last = weeks.pop()
        weeks[-1] = weeks[-1] + last

    return [WeekBucket(week_index=i, days=days) for i, days in enumerate(weeks)]


def week_for_day(weeks: list[WeekBucket], day_of_month: int) -> int:
    """Index of the bucket holding ``day_of_month`` (0 when not found)."""
    for bucket in weeks:
        if day_of_month in bucket.days:
            return bucket.week_index
    return 0
