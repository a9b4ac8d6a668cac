"""services/progress_service.py

Daily progress store: per employee / month / day / activity completion
flags plus the per-month activation gate.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy.exc import IntegrityError

from extensions import db
from models import DailyProgress, MonthActivation, MonthlyReportSubmission
from services.catalog import ENTRY_DAILY, get_catalog
from services.errors import (
    MonthLockedError,
    MonthNotActivatedError,
    SubmissionWindowError,
    ValidationError,
)
from utils import clock
from workflow.states import SubmissionStatus, parse_status

logger = logging.getLogger(__name__)


@dataclass
class EditState:
    editable: bool
    reason: str | None = None
    status: str = SubmissionStatus.NONE.value

    def to_dict(self):
        return {"editable": self.editable, "reason": self.reason, "status": self.status}


# =========================
# Activation
# =========================
def get_activated_months(employee_id: int) -> list[str]:
    rows = (
        db.session.query(MonthActivation.month_key)
        .filter(MonthActivation.employee_id == employee_id)
        .order_by(MonthActivation.month_key.asc())
        .all()
    )
    return [mk for (mk,) in rows]


def is_month_activated(employee_id: int, month_key: str) -> bool:
    return (
        MonthActivation.query
        .filter_by(employee_id=employee_id, month_key=month_key)
        .first()
        is not None
    )


def activate_month(employee_id: int, month_key: str, *, today: date | None = None, force: bool = False) -> bool:
    """Open a month for daily check-offs. Idempotent.

    Employees may only activate the current month; ``force`` (administrators)
    skips the calendar check.
    """
    clock.parse_month_key(month_key)
    today = today or clock.today()

    if is_month_activated(employee_id, month_key):
        return True

    if not force:
        cmp = clock.compare_month(month_key, today)
        if cmp < 0:
            raise MonthLockedError(f"Month {month_key} has already closed", month_key=month_key)
        if cmp > 0:
            raise SubmissionWindowError(f"Month {month_key} is not open yet", month_key=month_key)

    db.session.add(MonthActivation(employee_id=employee_id, month_key=month_key))
    try:
        db.session.commit()
    except IntegrityError:
        # concurrent activation of the same month
        db.session.rollback()
    logger.info("Month activated | employee=%s | month=%s | force=%s", employee_id, month_key, force)
    return True


# =========================
# Edit lock
# =========================
def _submission_status(employee_id: int, month_key: str) -> SubmissionStatus:
    row = (
        db.session.query(MonthlyReportSubmission.status)
        .filter_by(employee_id=employee_id, month_key=month_key)
        .first()
    )
    return parse_status(row[0] if row else None)


def month_edit_state(employee_id: int, month_key: str, today: date | None = None) -> EditState:
    today = today or clock.today()
    status = _submission_status(employee_id, month_key)

    if status is SubmissionStatus.APPROVED:
        return EditState(False, "approved", status.value)
    if status.is_pending:
        return EditState(False, "under_review", status.value)

    cmp = clock.compare_month(month_key, today)
    if cmp > 0:
        return EditState(False, "not_open", status.value)
    if cmp < 0 and not status.is_rejected:
        return EditState(False, "period_closed", status.value)
    return EditState(True, None, status.value)


def ensure_month_not_approved(employee_id: int, month_key: str):
    """Administrator corrections may touch closed months, never approved ones."""
    if _submission_status(employee_id, month_key) is SubmissionStatus.APPROVED:
        raise MonthLockedError(
            f"Month {month_key} is approved and read-only",
            month_key=month_key,
            reason="approved",
        )


def ensure_month_editable(employee_id: int, month_key: str, today: date | None = None) -> EditState:
    state = month_edit_state(employee_id, month_key, today)
    if not state.editable:
        raise MonthLockedError(
            f"Month {month_key} cannot be edited ({state.reason})",
            month_key=month_key,
            reason=state.reason,
        )
    return state


# =========================
# Reads
# =========================
def get_month_progress(employee_id: int, month_key: str) -> dict:
    rows = (
        db.session.query(DailyProgress.day_key, DailyProgress.activity_id)
        .filter_by(employee_id=employee_id, month_key=month_key)
        .all()
    )
    progress: dict = {}
    for day_key, activity_id in rows:
        progress.setdefault(day_key, {})[activity_id] = True
    return progress


def get_all_progress(employee_id: int) -> dict:
    rows = (
        db.session.query(DailyProgress.month_key, DailyProgress.day_key, DailyProgress.activity_id)
        .filter_by(employee_id=employee_id)
        .all()
    )
    result: dict = {}
    for month_key, day_key, activity_id in rows:
        result.setdefault(month_key, {}).setdefault(day_key, {})[activity_id] = True
    return result


# =========================
# Writes
# =========================
def _validate_day(month_key: str, day) -> str:
    try:
        day_int = int(day)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid day: {day!r}")
    if day_int < 1 or day_int > clock.days_in_month(month_key):
        raise ValidationError(f"Day {day_int} is outside {month_key}", month_key=month_key)
    return clock.day_key(day_int)


def _validate_daily_activity(activity_id: str):
    activity = get_catalog().get(activity_id)
    if activity.entry_kind != ENTRY_DAILY:
        raise ValidationError(
            f"Activity {activity_id} is reported by entry, not by daily check-off",
            activity_id=activity_id,
        )
    return activity


def _guard_month(employee_id: int, month_key: str, today: date | None):
    if not is_month_activated(employee_id, month_key):
        raise MonthNotActivatedError(f"Month {month_key} has not been activated", month_key=month_key)
    ensure_month_editable(employee_id, month_key, today)


def set_daily_progress(employee_id: int, month_key: str, day, activity_id: str, done: bool,
                       *, today: date | None = None) -> dict:
    """Check or uncheck one activity on one day; returns the month progress."""
    clock.parse_month_key(month_key)
    dkey = _validate_day(month_key, day)
    _validate_daily_activity(activity_id)
    _guard_month(employee_id, month_key, today)

    existing = DailyProgress.query.filter_by(
        employee_id=employee_id,
        month_key=month_key,
        day_key=dkey,
        activity_id=activity_id,
    ).first()

    if done and existing is None:
        db.session.add(DailyProgress(
            employee_id=employee_id,
            month_key=month_key,
            day_key=dkey,
            activity_id=activity_id,
        ))
    elif not done and existing is not None:
        db.session.delete(existing)

    try:
        db.session.commit()
    except IntegrityError:
        # same cell checked twice concurrently: already true
        db.session.rollback()
    return get_month_progress(employee_id, month_key)


def save_month_progress(employee_id: int, month_key: str, progress: dict,
                        *, today: date | None = None) -> dict:
    """Replace the whole month with ``progress`` ({day_key: {activity_id: bool}})."""
    clock.parse_month_key(month_key)
    if not isinstance(progress, dict):
        raise ValidationError("progress must be an object keyed by day")

    cells = set()
    for day, flags in progress.items():
        dkey = _validate_day(month_key, day)
        if not isinstance(flags, dict):
            raise ValidationError(f"Day {dkey} must map activity ids to booleans")
        for activity_id, value in flags.items():
            if value is True:
                _validate_daily_activity(activity_id)
                cells.add((dkey, activity_id))

    _guard_month(employee_id, month_key, today)

    try:
        DailyProgress.query.filter_by(employee_id=employee_id, month_key=month_key).delete(
            synchronize_session=False
        )
        db.session.add_all([
            DailyProgress(employee_id=employee_id, month_key=month_key, day_key=d, activity_id=a)
            for d, a in sorted(cells)
        ])
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Month progress saved | employee=%s | month=%s | cells=%s", employee_id, month_key, len(cells))
    return get_month_progress(employee_id, month_key)


def reset_month(employee_id: int, month_key: str, *, today: date | None = None) -> int:
    clock.parse_month_key(month_key)
    ensure_month_editable(employee_id, month_key, today)
    deleted = DailyProgress.query.filter_by(employee_id=employee_id, month_key=month_key).delete(
        synchronize_session=False
    )
    db.session.commit()
    logger.info("Month progress reset | employee=%s | month=%s | removed=%s", employee_id, month_key, deleted)
    return deleted
