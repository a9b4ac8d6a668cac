from io import BytesIO

from flask import jsonify, request, send_file
from flask_login import login_required

from extensions import db
from models import MonthlyReportSubmission, ROLE_EMPLOYEE, User
from permissions import roles_required
from services.aggregation_service import (
    collect_month_progress,
    employee_monthly_performance,
    employee_yearly_performance,
)
from services.catalog import get_catalog
from services.errors import NotFoundError, ValidationError
from services.report_pdf import build_checklist_pdf, build_transcript_pdf, find_signatory, month_label
from utils import clock
from utils.excel import analytics_workbook
from workflow.states import SubmissionStatus


def _month_arg():
    month_key = request.args.get("month") or clock.month_key_of(clock.today())
    clock.parse_month_key(month_key)
    return month_key


def _employee_or_404(employee_id):
    employee = db.session.get(User, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found", employee_id=employee_id)
    return employee


def analytics_rows(month_key: str, unit: str | None = None) -> list:
    """One row per active employee: identity, submission status, performance."""
    q = User.query.filter(User.is_active_user.is_(True), User.role == ROLE_EMPLOYEE)
    if unit:
        q = q.filter(User.unit == unit)
    employees = q.order_by(User.name.asc(), User.id.asc()).all()

    statuses = {
        employee_id: status
        for employee_id, status in (
            db.session.query(MonthlyReportSubmission.employee_id, MonthlyReportSubmission.status)
            .filter(MonthlyReportSubmission.month_key == month_key)
            .all()
        )
    }

    rows = []
    for u in employees:
        rows.append({
            "employeeId": u.id,
            "nip": u.nip,
            "name": u.full_name,
            "unit": u.unit,
            "status": statuses.get(u.id, SubmissionStatus.NONE.value),
            "performance": employee_monthly_performance(u.id, month_key).to_dict(),
        })
    return rows


def register_performance_routes(admin_bp):

    @admin_bp.route("/analytics")
    @login_required
    @roles_required("ADMIN")
    def analytics():
        month_key = _month_arg()
        rows = analytics_rows(month_key, request.args.get("unit"))

        counters = {}
        for row in rows:
            counters[row["status"]] = counters.get(row["status"], 0) + 1

        return jsonify({"monthKey": month_key, "counters": counters, "employees": rows})


    @admin_bp.route("/analytics/export.xlsx")
    @login_required
    @roles_required("ADMIN")
    def analytics_export_excel():
        month_key = _month_arg()
        data = analytics_workbook(month_key, analytics_rows(month_key, request.args.get("unit")))
        return send_file(
            BytesIO(data),
            as_attachment=True,
            download_name=f"mutabaah_analytics_{month_key}.xlsx",
            mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )


    @admin_bp.route("/employees/<int:employee_id>/transcript.pdf")
    @login_required
    @roles_required("ADMIN")
    def transcript_pdf(employee_id):
        employee = _employee_or_404(employee_id)

        year = request.args.get("year", type=int)
        if year:
            performance = employee_yearly_performance(employee.id, year)
            period = f"Tahun {year}"
            suffix = str(year)
        elif request.args.get("year"):
            raise ValidationError("year must be a number")
        else:
            month_key = _month_arg()
            performance = employee_monthly_performance(employee.id, month_key)
            period = month_label(month_key)
            suffix = month_key

        data = build_transcript_pdf(employee, performance, period, find_signatory())
        return send_file(
            BytesIO(data),
            as_attachment=True,
            download_name=f"transkrip_{employee.nip or employee.id}_{suffix}.pdf",
            mimetype="application/pdf",
        )


    @admin_bp.route("/employees/<int:employee_id>/checklist.pdf")
    @login_required
    @roles_required("ADMIN")
    def checklist_pdf(employee_id):
        employee = _employee_or_404(employee_id)
        month_key = _month_arg()
        data = build_checklist_pdf(
            employee,
            get_catalog(),
            month_key,
            collect_month_progress(employee.id, month_key),
        )
        return send_file(
            BytesIO(data),
            as_attachment=True,
            download_name=f"mutabaah_{employee.nip or employee.id}_{month_key}.pdf",
            mimetype="application/pdf",
        )
