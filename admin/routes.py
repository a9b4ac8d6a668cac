from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from extensions import db
from models import ROLE_EMPLOYEE, User
from permissions import roles_required
from services.errors import NotFoundError
from services.progress_service import activate_month, get_activated_months
from services.relations_service import assign_relations
from services.report_service import (
    decrement_report_activity,
    delete_reports_for_month,
    get_monthly_reports,
    increment_report_activity,
    remove_report_entry,
    reports_to_document,
)
from utils.events import audit

# =========================
# Blueprint
# =========================
admin_bp = Blueprint(
    "admin",
    __name__,
    url_prefix="/admin"
)

# Register sub-modules
from .performance import register_performance_routes  # noqa: E402
register_performance_routes(admin_bp)


def _body():
    return request.get_json(silent=True) or {}


def _employee_or_404(employee_id):
    employee = db.session.get(User, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found", employee_id=employee_id)
    return employee


def _commit_audit(action, employee_id, note):
    audit(current_user.id, action, note=note, target_type="USER", target_id=employee_id)
    db.session.commit()


# =========================
# Employees
# =========================
@admin_bp.route("/employees")
@login_required
@roles_required("ADMIN")
def employees():
    q = User.query.filter(User.role == ROLE_EMPLOYEE)
    unit = request.args.get("unit")
    if unit:
        q = q.filter(User.unit == unit)
    return jsonify([u.to_dict() for u in q.order_by(User.name.asc(), User.id.asc()).all()])


@admin_bp.route("/employees/<int:employee_id>/relations", methods=["PATCH"])
@login_required
@roles_required("ADMIN")
def update_relations(employee_id):
    employee = assign_relations(employee_id, _body(), actor_id=current_user.id)
    return jsonify(employee.to_dict())


@admin_bp.route("/employees/<int:employee_id>/months/<month_key>/activate", methods=["POST"])
@login_required
@roles_required("ADMIN")
def force_activate(employee_id, month_key):
    _employee_or_404(employee_id)
    activate_month(employee_id, month_key, force=True)
    _commit_audit("MONTH_ACTIVATED", employee_id, f"Month {month_key} (admin)")
    return jsonify({"activatedMonths": get_activated_months(employee_id)})


# =========================
# Counter reports (admin tooling)
# =========================
@admin_bp.route("/employees/<int:employee_id>/reports")
@login_required
@roles_required("ADMIN")
def employee_reports(employee_id):
    _employee_or_404(employee_id)
    return jsonify(reports_to_document(get_monthly_reports(employee_id)))


@admin_bp.route(
    "/employees/<int:employee_id>/reports/<month_key>/<activity_id>/entries/<entry_date>",
    methods=["DELETE"],
)
@login_required
@roles_required("ADMIN")
def remove_entry(employee_id, month_key, activity_id, entry_date):
    _employee_or_404(employee_id)
    rec = remove_report_entry(employee_id, month_key, activity_id, entry_date)
    _commit_audit("REPORT_ENTRY_REMOVED", employee_id, f"{month_key}/{activity_id} {entry_date}")
    return jsonify(rec.to_dict())


@admin_bp.route("/employees/<int:employee_id>/reports/<month_key>/<activity_id>/increment", methods=["POST"])
@login_required
@roles_required("ADMIN")
def increment(employee_id, month_key, activity_id):
    _employee_or_404(employee_id)
    rec = increment_report_activity(employee_id, month_key, activity_id, _body().get("note"))
    return jsonify(rec.to_dict())


@admin_bp.route("/employees/<int:employee_id>/reports/<month_key>/<activity_id>/decrement", methods=["POST"])
@login_required
@roles_required("ADMIN")
def decrement(employee_id, month_key, activity_id):
    _employee_or_404(employee_id)
    rec = decrement_report_activity(employee_id, month_key, activity_id)
    return jsonify(rec.to_dict())


@admin_bp.route("/employees/<int:employee_id>/reports/<month_key>", methods=["DELETE"])
@login_required
@roles_required("ADMIN")
def delete_month_reports(employee_id, month_key):
    _employee_or_404(employee_id)
    deleted = delete_reports_for_month(employee_id, month_key)
    if deleted:
        _commit_audit("REPORTS_DELETED", employee_id, f"Month {month_key}")
    return jsonify({"monthKey": month_key, "deleted": deleted})
