"""Reviewer assignment (mentor / supervisor / ka-unit / manager) for employees."""

from __future__ import annotations

import logging

from extensions import db
from models import User
from services.errors import NotFoundError, ValidationError
from utils.events import audit, emit_event

logger = logging.getLogger(__name__)

# payload key -> (User column, capability flag, label)
RELATION_FIELDS = {
    "mentorId": ("mentor_id", "can_be_mentor", "Mentor"),
    "supervisorId": ("supervisor_id", "can_be_supervisor", "Supervisor"),
    "kaUnitId": ("ka_unit_id", "can_be_ka_unit", "Kepala Unit"),
    "managerId": ("manager_id", "can_be_manager", "Manajer"),
}


def assign_relations(employee_id: int, changes: dict, actor_id: int | None = None) -> User:
    """Apply ``changes`` ({"mentorId": 5, "managerId": None, ...}) and notify.

    Open submissions keep the reviewers copied at submission time.
    """
    employee = db.session.get(User, employee_id)
    if employee is None:
        raise NotFoundError("Employee not found", employee_id=employee_id)
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("Nothing to update")

    unknown = sorted(set(changes) - set(RELATION_FIELDS))
    if unknown:
        raise ValidationError(f"Unknown relation field(s): {', '.join(unknown)}")

    resolved = []
    for key, raw in changes.items():
        column, flag, label = RELATION_FIELDS[key]
        new_id = None
        if raw not in (None, ""):
            try:
                new_id = int(raw)
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a user id")
            if new_id == employee.id:
                raise ValidationError(f"An employee cannot be their own {label.lower()}")
            reviewer = db.session.get(User, new_id)
            if reviewer is None:
                raise NotFoundError(f"{label} not found", user_id=new_id)
            if not getattr(reviewer, flag):
                raise ValidationError(f"{reviewer.full_name} cannot act as {label}", user_id=new_id)

        resolved.append((column, label, new_id))

    # nothing is staged until every key validated
    applied = []
    for column, label, new_id in resolved:
        old_id = getattr(employee, column)
        if old_id != new_id:
            setattr(employee, column, new_id)
            applied.append((label, old_id, new_id))

    if not applied:
        return employee

    for label, old_id, new_id in applied:
        audit(
            actor_id,
            "ROLE_ASSIGNMENT",
            note=f"{label}: {old_id or '-'} -> {new_id or '-'}",
            target_type="USER",
            target_id=employee.id,
        )
    db.session.commit()
    logger.info("Relations updated | employee=%s | %s", employee.id, applied)

    summary = ", ".join(label for label, _, _ in applied)
    emit_event(
        actor_id,
        f"Penugasan reviewer diperbarui: {summary}",
        notify_user_ids=[employee.id],
        title="Perubahan penugasan",
        ntype="role_assignment",
        related_entity_id=employee.id,
    )
    new_reviewers = [new_id for _, _, new_id in applied if new_id]
    if new_reviewers:
        emit_event(
            actor_id,
            f"Anda ditugaskan sebagai reviewer untuk {employee.full_name}",
            notify_user_ids=new_reviewers,
            title="Penugasan reviewer",
            ntype="role_assignment",
            related_entity_id=employee.id,
        )
    return employee
