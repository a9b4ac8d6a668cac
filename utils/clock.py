"""Server-side clock.

The server is the only trusted time source: submission windows and edit
locks are evaluated here, never from a time sent by the browser.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

from services.errors import ValidationError

MONTH_KEY_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _zone():
    name = None
    if has_app_context():
        name = current_app.config.get("APP_TIMEZONE")
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return None


def now() -> datetime:
    tz = _zone()
    return datetime.now(tz) if tz else datetime.now()


def today() -> date:
    return now().date()


# =========================
# Month keys
# =========================
def parse_month_key(month_key: str) -> tuple[int, int]:
    m = MONTH_KEY_RE.match(month_key or "")
    if not m:
        raise ValidationError(f"Invalid month key: {month_key!r} (expected YYYY-MM)")
    return int(m.group(1)), int(m.group(2))


def month_key_of(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def days_in_month(month_key: str) -> int:
    year, month = parse_month_key(month_key)
    return calendar.monthrange(year, month)[1]


def first_day(month_key: str) -> date:
    year, month = parse_month_key(month_key)
    return date(year, month, 1)


def day_key(day: int) -> str:
    return f"{int(day):02d}"


def compare_month(month_key: str, ref: date) -> int:
    """-1 if month_key is before ref's month, 0 if same, 1 if after."""
    year, month = parse_month_key(month_key)
    a = (year, month)
    b = (ref.year, ref.month)
    return (a > b) - (a < b)


def parse_date(value: str) -> date:
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise ValidationError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")
