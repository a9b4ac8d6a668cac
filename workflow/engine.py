# workflow/engine.py

from datetime import datetime
import json
import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import MonthlyReportSubmission, User
from services.aggregation_service import employee_monthly_performance
from services.errors import (
    IllegalTransitionError,
    NotFoundError,
    ReviewerMismatchError,
    SubmissionWindowError,
    UnsavedChangesError,
    ValidationError,
)
from utils import clock
from utils.events import audit, emit_event
from workflow.states import (
    Decision,
    ReviewerRole,
    SubmissionStatus,
    parse_decision,
    parse_role,
    parse_status,
    review_transition,
    reviewer_chain,
    submission_window_open,
    submit_transition,
)

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    ReviewerRole.MENTOR: "Mentor",
    ReviewerRole.SUPERVISOR: "Supervisor",
    ReviewerRole.KAUNIT: "Kepala Unit",
    ReviewerRole.MANAGER: "Manajer",
}


# =========================
# Helpers
# =========================
def _reviewer_id(sub: MonthlyReportSubmission, role: ReviewerRole):
    return getattr(sub, f"{role.field_prefix}_id")


def _can_review_as(user: User, role: ReviewerRole) -> bool:
    return bool(getattr(user, f"can_be_{role.field_prefix}", False))


def chain_for(sub: MonthlyReportSubmission) -> tuple:
    return reviewer_chain(
        has_supervisor=bool(sub.supervisor_id),
        has_kaunit=bool(sub.ka_unit_id),
        has_manager=bool(sub.manager_id),
    )


def _open_day() -> int:
    return int(current_app.config.get("SUBMISSION_OPEN_DAY", 28))


# =========================
# Queries
# =========================
def get_submission(employee_id: int, month_key: str):
    return MonthlyReportSubmission.query.filter_by(employee_id=employee_id, month_key=month_key).first()


def list_submissions(employee_id: int):
    return (
        MonthlyReportSubmission.query
        .filter_by(employee_id=employee_id)
        .order_by(MonthlyReportSubmission.month_key.desc())
        .all()
    )


def list_review_queue(reviewer: User):
    """Submissions waiting at a stage where ``reviewer`` is the assigned reviewer."""
    out = []
    for role in ReviewerRole:
        if not _can_review_as(reviewer, role):
            continue
        column = getattr(MonthlyReportSubmission, f"{role.field_prefix}_id")
        out.extend(
            MonthlyReportSubmission.query
            .filter(
                column == reviewer.id,
                MonthlyReportSubmission.status == role.pending_status.value,
            )
            .order_by(MonthlyReportSubmission.submitted_at.asc())
            .all()
        )
    return out


# =========================
# Engine API
# =========================
def submit_monthly_report(employee: User, month_key: str, *, has_unsaved_changes: bool = False, today=None):
    """Create or resubmit the month's submission; returns the row.

    Nothing is written unless every check passes.
    """
    clock.parse_month_key(month_key)
    if has_unsaved_changes:
        raise UnsavedChangesError("Save your changes before submitting", month_key=month_key)

    today = today or clock.today()
    if not submission_window_open(month_key, today, _open_day()):
        raise SubmissionWindowError(
            f"Submission for {month_key} opens on day {_open_day()}",
            month_key=month_key,
        )

    sub = get_submission(employee.id, month_key)
    old_status = parse_status(sub.status if sub else None)
    new_status = submit_transition(old_status)

    if not employee.mentor_id:
        raise ValidationError("No mentor assigned; the report cannot be reviewed", month_key=month_key)

    snapshot = employee_monthly_performance(employee.id, month_key).to_dict()

    if sub is None:
        sub = MonthlyReportSubmission(employee_id=employee.id, month_key=month_key)
        db.session.add(sub)

    sub.employee_name = employee.full_name
    sub.status = new_status.value
    sub.submitted_at = datetime.utcnow()
    sub.mentor_id = employee.mentor_id
    sub.supervisor_id = employee.supervisor_id
    sub.ka_unit_id = employee.ka_unit_id
    sub.manager_id = employee.manager_id
    for role in ReviewerRole:
        setattr(sub, f"{role.field_prefix}_reviewed_at", None)
        setattr(sub, f"{role.field_prefix}_notes", None)
    sub.snapshot_json = json.dumps(snapshot, ensure_ascii=False)

    try:
        db.session.flush()
        audit(
            employee.id,
            "REPORT_SUBMITTED" if old_status is SubmissionStatus.NONE else "REPORT_RESUBMITTED",
            note=f"Month {month_key}",
            old_status=old_status.value,
            new_status=new_status.value,
            target_type="MONTHLY_REPORT",
            target_id=sub.id,
        )
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise IllegalTransitionError("Report was submitted concurrently", month_key=month_key) from e

    logger.info("Report submitted | employee=%s | month=%s | %s -> %s",
                employee.id, month_key, old_status.value, new_status.value)

    emit_event(
        employee.id,
        f"{employee.full_name} submitted the mutaba'ah report for {month_key}",
        notify_user_ids=[sub.mentor_id],
        title="Laporan bulanan baru",
        ntype="report_submitted",
        related_entity_id=sub.id,
    )
    return sub


def review_monthly_report(submission_id: int, reviewer: User, decision, notes: str = "", role=None):
    """Approve or reject the stage owned by ``role``; returns the row."""
    decision = parse_decision(decision)

    sub = db.session.get(MonthlyReportSubmission, submission_id)
    if sub is None:
        raise NotFoundError("Submission not found", submission_id=submission_id)

    current = parse_status(sub.status)
    if role is None:
        role = current.stage
        if role is None or not current.is_pending:
            raise IllegalTransitionError(f"Report is {current.value}; nothing to review", status=current.value)
    role = parse_role(role)

    if _reviewer_id(sub, role) != reviewer.id or not _can_review_as(reviewer, role):
        raise ReviewerMismatchError(
            f"You are not the assigned {role.value} for this report",
            submission_id=submission_id,
        )

    new_status = review_transition(current, decision, role, chain_for(sub))

    notes = (notes or "").strip() or None
    sub.status = new_status.value
    setattr(sub, f"{role.field_prefix}_reviewed_at", datetime.utcnow())
    setattr(sub, f"{role.field_prefix}_notes", notes)

    audit(
        reviewer.id,
        f"REPORT_{decision.value.upper()}",
        note=f"{role.value}: {notes or ''}".strip(),
        old_status=current.value,
        new_status=new_status.value,
        target_type="MONTHLY_REPORT",
        target_id=sub.id,
    )
    db.session.commit()

    logger.info("Report reviewed | submission=%s | role=%s | %s -> %s",
                sub.id, role.value, current.value, new_status.value)

    label = ROLE_LABELS[role]
    if decision is Decision.REJECTED:
        msg = f"Laporan {sub.month_key} ditolak oleh {label} ({reviewer.full_name})"
    elif new_status is SubmissionStatus.APPROVED:
        msg = f"Laporan {sub.month_key} telah disetujui"
    else:
        msg = f"Laporan {sub.month_key} disetujui {label}, diteruskan ke tahap berikutnya"
    if notes:
        msg += f" | Catatan: {notes}"
    emit_event(
        reviewer.id,
        msg,
        notify_user_ids=[sub.employee_id],
        title="Status laporan bulanan",
        ntype="report_status",
        related_entity_id=sub.id,
    )

    next_role = new_status.stage if new_status.is_pending else None
    if next_role is not None:
        emit_event(
            sub.employee_id,
            f"{sub.employee_name or 'Karyawan'} menunggu review laporan {sub.month_key}",
            notify_user_ids=[_reviewer_id(sub, next_role)],
            title="Laporan bulanan perlu review",
            ntype="report_submitted",
            related_entity_id=sub.id,
        )
    return sub
