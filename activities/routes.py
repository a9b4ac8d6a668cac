from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from services.aggregation_service import (
    employee_monthly_performance,
    employee_weekly_summary,
    employee_yearly_history,
    employee_yearly_performance,
)
from services.catalog import ENTRY_BOOK, get_catalog
from services.errors import NotFoundError, ValidationError
from services.progress_service import (
    activate_month,
    get_activated_months,
    get_month_progress,
    is_month_activated,
    month_edit_state,
    reset_month,
    save_month_progress,
    set_daily_progress,
)
from services.report_service import (
    add_book_reading_report,
    add_manual_report_by_date,
    get_book_reading_entries,
    get_manual_report_entries,
    get_monthly_reports,
    reports_to_document,
    reports_to_progress,
)
from utils import clock
from utils.weeks import get_balanced_weeks, week_for_day
from workflow.engine import get_submission

# =========================
# Blueprint
# =========================
activities_bp = Blueprint(
    "activities",
    __name__,
    url_prefix="/mutabaah"
)


def _body():
    return request.get_json(silent=True) or {}


def _weeks(month_key):
    return get_balanced_weeks(clock.first_day(month_key))


# =========================
# Catalog
# =========================
@activities_bp.route("/catalog")
@login_required
def catalog():
    return jsonify(get_catalog().to_list())


# =========================
# Month view
# =========================
@activities_bp.route("/months")
@login_required
def activated_months():
    return jsonify({"activatedMonths": get_activated_months(current_user.id)})


@activities_bp.route("/months/<month_key>")
@login_required
def month_view(month_key):
    clock.parse_month_key(month_key)
    today = clock.today()
    weeks = _weeks(month_key)
    sub = get_submission(current_user.id, month_key)
    reports = get_monthly_reports(current_user.id)

    current_week = None
    if clock.compare_month(month_key, today) == 0:
        current_week = week_for_day(weeks, today.day)

    return jsonify({
        "monthKey": month_key,
        "activated": is_month_activated(current_user.id, month_key),
        "progress": get_month_progress(current_user.id, month_key),
        "reportProgress": reports_to_progress({month_key: reports.get(month_key, {})}).get(month_key, {}),
        "weeks": [w.to_dict() for w in weeks],
        "currentWeek": current_week,
        "editState": month_edit_state(current_user.id, month_key, today).to_dict(),
        "submission": sub.to_dict() if sub else None,
    })


@activities_bp.route("/months/<month_key>/activate", methods=["POST"])
@login_required
def activate(month_key):
    activate_month(current_user.id, month_key)
    return jsonify({"activatedMonths": get_activated_months(current_user.id)})


@activities_bp.route("/months/<month_key>/days/<day>/<activity_id>", methods=["PUT"])
@login_required
def toggle_day(month_key, day, activity_id):
    done = _body().get("done", True)
    if not isinstance(done, bool):
        raise ValidationError("done must be a boolean")
    progress = set_daily_progress(current_user.id, month_key, day, activity_id, done)
    return jsonify({"monthKey": month_key, "progress": progress})


@activities_bp.route("/months/<month_key>/progress", methods=["PUT"])
@login_required
def save_month(month_key):
    progress = save_month_progress(current_user.id, month_key, _body().get("progress"))
    return jsonify({"monthKey": month_key, "progress": progress})


@activities_bp.route("/months/<month_key>/progress", methods=["DELETE"])
@login_required
def reset(month_key):
    removed = reset_month(current_user.id, month_key)
    return jsonify({"monthKey": month_key, "removed": removed})


# =========================
# Performance views
# =========================
@activities_bp.route("/months/<month_key>/weeks/<int:week_index>")
@login_required
def weekly(month_key, week_index):
    weeks = _weeks(month_key)
    if week_index < 0 or week_index >= len(weeks):
        raise NotFoundError(f"Week {week_index} does not exist in {month_key}")
    bucket = weeks[week_index]
    result = employee_weekly_summary(current_user.id, month_key, bucket.days)
    return jsonify({"week": bucket.to_dict(), "performance": result.to_dict()})


@activities_bp.route("/months/<month_key>/performance")
@login_required
def monthly(month_key):
    return jsonify(employee_monthly_performance(current_user.id, month_key).to_dict())


@activities_bp.route("/years/<int:year>/performance")
@login_required
def yearly(year):
    return jsonify(employee_yearly_performance(current_user.id, year).to_dict())


@activities_bp.route("/history")
@login_required
def history():
    raw = request.args.get("years") or str(clock.today().year)
    try:
        years = [int(y) for y in raw.split(",") if y.strip()]
    except ValueError:
        raise ValidationError("years must be a comma separated list of years")
    return jsonify(employee_yearly_history(current_user.id, years))


# =========================
# Counter reports
# =========================
@activities_bp.route("/reports")
@login_required
def reports():
    return jsonify(reports_to_document(get_monthly_reports(current_user.id)))


@activities_bp.route("/months/<month_key>/reports/<activity_id>/entries")
@login_required
def list_entries(month_key, activity_id):
    activity = get_catalog().get(activity_id)
    if activity.entry_kind == ENTRY_BOOK:
        entries = get_book_reading_entries(current_user.id, month_key, activity_id)
    else:
        entries = get_manual_report_entries(current_user.id, month_key, activity_id)
    return jsonify([e.to_dict() for e in entries])


@activities_bp.route("/months/<month_key>/reports/<activity_id>/entries", methods=["POST"])
@login_required
def add_entry(month_key, activity_id):
    data = _body()
    rec = add_manual_report_by_date(
        current_user.id,
        month_key,
        activity_id,
        data.get("date"),
        data.get("note"),
    )
    return jsonify(rec.to_dict()), 201


@activities_bp.route("/months/<month_key>/reports/<activity_id>/books", methods=["POST"])
@login_required
def add_book(month_key, activity_id):
    data = _body()
    rec = add_book_reading_report(
        current_user.id,
        month_key,
        activity_id,
        data.get("bookTitle"),
        data.get("pagesRead"),
        data.get("dateCompleted"),
    )
    return jsonify(rec.to_dict()), 201
