import json
from datetime import date

import pytest

from extensions import db
from models import AuditLog, MonthlyReportSubmission, Notification, User
from services.errors import (
    IllegalTransitionError,
    MonthLockedError,
    ReviewerMismatchError,
    SubmissionWindowError,
    UnsavedChangesError,
    ValidationError,
)
from services.progress_service import activate_month, set_daily_progress
from workflow.engine import (
    get_submission,
    list_review_queue,
    list_submissions,
    review_monthly_report,
    submit_monthly_report,
)

OPEN = date(2026, 3, 29)


def _u(user_id):
    return db.session.get(User, user_id)


def _notifications(user_id):
    return Notification.query.filter_by(user_id=user_id).order_by(Notification.id).all()


def test_submission_refused_before_window(ctx, people):
    emp = _u(people["employee"])
    with pytest.raises(SubmissionWindowError):
        submit_monthly_report(emp, "2026-03", today=date(2026, 3, 15))
    assert MonthlyReportSubmission.query.count() == 0


def test_unsaved_changes_block_submission(ctx, people):
    emp = _u(people["employee"])
    with pytest.raises(UnsavedChangesError):
        submit_monthly_report(emp, "2026-03", has_unsaved_changes=True, today=OPEN)
    assert get_submission(emp.id, "2026-03") is None


def test_mentor_is_required(ctx, people):
    admin = _u(people["admin"])
    with pytest.raises(ValidationError):
        submit_monthly_report(admin, "2026-03", today=OPEN)
    assert MonthlyReportSubmission.query.count() == 0


def test_submit_creates_pending_row_and_notifies_mentor(ctx, people):
    emp = _u(people["employee"])
    activate_month(emp.id, "2026-03", today=OPEN)
    set_daily_progress(emp.id, "2026-03", 2, "shalat_berjamaah", True, today=OPEN)

    sub = submit_monthly_report(emp, "2026-03", today=OPEN)
    assert sub.status == "pending_mentor"
    assert sub.mentor_id == people["mentor"]
    assert sub.manager_id == people["manager"]

    snapshot = json.loads(sub.snapshot_json)
    assert snapshot["monthKeys"] == ["2026-03"]

    assert [n.type for n in _notifications(people["mentor"])] == ["report_submitted"]
    assert AuditLog.query.filter_by(action="REPORT_SUBMITTED", target_id=sub.id).count() == 1

    # locked while under review
    with pytest.raises(MonthLockedError):
        set_daily_progress(emp.id, "2026-03", 3, "shalat_berjamaah", True, today=OPEN)
    with pytest.raises(IllegalTransitionError):
        submit_monthly_report(emp, "2026-03", today=OPEN)


def test_wrong_reviewer_is_refused(ctx, people):
    emp = _u(people["employee"])
    sub = submit_monthly_report(emp, "2026-03", today=OPEN)
    supervisor = _u(people["supervisor"])

    with pytest.raises(ReviewerMismatchError):
        review_monthly_report(sub.id, supervisor, "approved")
    with pytest.raises(IllegalTransitionError):
        review_monthly_report(sub.id, supervisor, "approved", role="supervisor")
    with pytest.raises(ReviewerMismatchError):
        review_monthly_report(sub.id, _u(people["solo"]), "approved", role="mentor")

    assert db.session.get(MonthlyReportSubmission, sub.id).status == "pending_mentor"


def test_full_chain_walks_to_approved(ctx, people):
    emp = _u(people["employee"])
    sub = submit_monthly_report(emp, "2026-03", today=OPEN)

    expected = [
        ("mentor", "pending_supervisor"),
        ("supervisor", "pending_kaunit"),
        ("kaunit", "pending_manager"),
        ("manager", "approved"),
    ]
    for key, status in expected:
        sub = review_monthly_report(sub.id, _u(people[key]), "approved", notes="ok")
        assert sub.status == status

    assert sub.mentor_reviewed_at is not None
    assert sub.manager_notes == "ok"
    employee_updates = [n for n in _notifications(emp.id) if n.type == "report_status"]
    assert len(employee_updates) == 4
    assert "disetujui" in employee_updates[-1].message
    # each later stage was told it has work
    for key in ("supervisor", "kaunit", "manager"):
        assert [n.type for n in _notifications(people[key])] == ["report_submitted"]


def test_chain_without_optional_stages(ctx, people):
    solo = _u(people["solo"])
    sub = submit_monthly_report(solo, "2026-03", today=OPEN)
    sub = review_monthly_report(sub.id, _u(people["mentor"]), "approved")
    assert sub.status == "approved"


def test_rejection_then_resubmission(ctx, people):
    emp = _u(people["employee"])
    sub = submit_monthly_report(emp, "2026-03", today=OPEN)
    review_monthly_report(sub.id, _u(people["mentor"]), "approved")
    sub = review_monthly_report(sub.id, _u(people["supervisor"]), "rejected", notes="lengkapi infaq")
    assert sub.status == "rejected_supervisor"
    assert "lengkapi infaq" in _notifications(emp.id)[-1].message

    sub = submit_monthly_report(emp, "2026-03", today=OPEN)
    assert sub.status == "pending_mentor"
    assert sub.mentor_reviewed_at is None
    assert sub.supervisor_notes is None
    assert AuditLog.query.filter_by(action="REPORT_RESUBMITTED").count() == 1


def test_review_queue_lists_only_current_stage(ctx, people):
    emp = _u(people["employee"])
    solo = _u(people["solo"])
    first = submit_monthly_report(emp, "2026-03", today=OPEN)
    submit_monthly_report(solo, "2026-03", today=OPEN)

    mentor = _u(people["mentor"])
    assert len(list_review_queue(mentor)) == 2
    assert list_review_queue(_u(people["supervisor"])) == []

    review_monthly_report(first.id, mentor, "approved")
    assert [s.id for s in list_review_queue(_u(people["supervisor"]))] == [first.id]
    assert len(list_review_queue(mentor)) == 1


def test_list_submissions_newest_first(ctx, people):
    emp = _u(people["employee"])
    submit_monthly_report(emp, "2026-02", today=OPEN)
    submit_monthly_report(emp, "2026-03", today=OPEN)
    assert [s.month_key for s in list_submissions(emp.id)] == ["2026-03", "2026-02"]
