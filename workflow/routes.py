from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user

from permissions import reviewer_required
from utils import clock
from workflow.engine import (
    get_submission,
    list_review_queue,
    list_submissions,
    review_monthly_report,
    submit_monthly_report,
)

# =========================
# Blueprint
# =========================
workflow_bp = Blueprint(
    "workflow",
    __name__,
    url_prefix="/workflow"
)


def _body():
    return request.get_json(silent=True) or {}


# =========================
# Employee side
# =========================
@workflow_bp.route("/submissions", methods=["POST"])
@login_required
def submit():
    data = _body()
    sub = submit_monthly_report(
        current_user,
        data.get("monthKey"),
        has_unsaved_changes=bool(data.get("hasUnsavedChanges")),
    )
    return jsonify(sub.to_dict()), 201


@workflow_bp.route("/submissions")
@login_required
def my_submissions():
    return jsonify([s.to_dict() for s in list_submissions(current_user.id)])


@workflow_bp.route("/submissions/<month_key>")
@login_required
def my_submission(month_key):
    clock.parse_month_key(month_key)
    sub = get_submission(current_user.id, month_key)
    # no submission yet is an empty result, not an error
    return jsonify(sub.to_dict() if sub else None)


# =========================
# Reviewer side
# =========================
@workflow_bp.route("/queue")
@login_required
@reviewer_required
def queue():
    return jsonify([s.to_dict() for s in list_review_queue(current_user)])


@workflow_bp.route("/submissions/<int:submission_id>/review", methods=["POST"])
@login_required
@reviewer_required
def review(submission_id):
    data = _body()
    sub = review_monthly_report(
        submission_id,
        current_user,
        data.get("decision"),
        data.get("notes") or "",
        role=data.get("role"),
    )
    return jsonify(sub.to_dict())
