import calendar
from datetime import date

import pytest

from utils.weeks import get_balanced_weeks, week_for_day


def test_february_2026_covers_every_day_once():
    weeks = get_balanced_weeks(date(2026, 2, 10))
    days = [d for w in weeks for d in w.days]
    assert days == list(range(1, 29))
    assert sum(len(w.days) for w in weeks) == 28


def test_february_2026_folds_leading_sunday():
    # 1 Feb 2026 is a Sunday: a one-day first week is merged forward
    weeks = get_balanced_weeks(date(2026, 2, 1))
    assert weeks[0].days == list(range(1, 9))
    assert [w.week_index for w in weeks] == list(range(len(weeks)))


def test_weeks_end_on_sunday_except_month_end():
    weeks = get_balanced_weeks(date(2026, 3, 1))
    for w in weeks[:-1]:
        assert date(2026, 3, w.days[-1]).weekday() == 6
    assert weeks[-1].days[-1] == 31


@pytest.mark.parametrize("year", [2024, 2025, 2026, 2027])
def test_every_month_is_covered_without_orphans(year):
    for month in range(1, 13):
        n = calendar.monthrange(year, month)[1]
        weeks = get_balanced_weeks(date(year, month, 1))
        days = [d for w in weeks for d in w.days]
        assert days == list(range(1, n + 1))
        assert all(len(w.days) > 2 for w in weeks)


def test_week_for_day():
    weeks = get_balanced_weeks(date(2026, 2, 1))
    assert week_for_day(weeks, 1) == 0
    assert week_for_day(weeks, 28) == weeks[-1].week_index
    assert week_for_day(weeks, 40) == 0


def test_bucket_to_dict():
    bucket = get_balanced_weeks(date(2026, 2, 1))[0]
    assert bucket.to_dict() == {"weekIndex": 0, "days": list(range(1, 9))}
