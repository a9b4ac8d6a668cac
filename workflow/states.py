"""workflow/states.py

Monthly report submission lifecycle.

    none ──submit──> pending_mentor ──approve──> pending_<next> ... ──approve──> approved
                          │                           │
                        reject                      reject
                          v                           v
                   rejected_mentor             rejected_<role> ──submit──> pending_mentor

All transitions are decided here; callers never compute a next status
themselves.
"""

from __future__ import annotations

from datetime import date
from enum import Enum

from services.errors import IllegalTransitionError
from utils.clock import compare_month


class SubmissionStatus(str, Enum):
    NONE = "none"
    PENDING_MENTOR = "pending_mentor"
    PENDING_SUPERVISOR = "pending_supervisor"
    PENDING_KAUNIT = "pending_kaunit"
    PENDING_MANAGER = "pending_manager"
    APPROVED = "approved"
    REJECTED_MENTOR = "rejected_mentor"
    REJECTED_SUPERVISOR = "rejected_supervisor"
    REJECTED_KAUNIT = "rejected_kaunit"
    REJECTED_MANAGER = "rejected_manager"

    @property
    def is_pending(self) -> bool:
        return self.value.startswith("pending_")

    @property
    def is_rejected(self) -> bool:
        return self.value.startswith("rejected_")

    @property
    def stage(self):
        """Reviewer role owning a pending/rejected status, else None."""
        if self.is_pending or self.is_rejected:
            return ReviewerRole(self.value.split("_", 1)[1])
        return None


class ReviewerRole(str, Enum):
    MENTOR = "mentor"
    SUPERVISOR = "supervisor"
    KAUNIT = "kaunit"
    MANAGER = "manager"

    @property
    def pending_status(self) -> SubmissionStatus:
        return SubmissionStatus(f"pending_{self.value}")

    @property
    def rejected_status(self) -> SubmissionStatus:
        return SubmissionStatus(f"rejected_{self.value}")

    @property
    def field_prefix(self) -> str:
        """Column prefix on MonthlyReportSubmission / User (mentor, supervisor, ka_unit, manager)."""
        return "ka_unit" if self is ReviewerRole.KAUNIT else self.value


class Decision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class Action(str, Enum):
    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"


DEFAULT_CHAIN = (
    ReviewerRole.MENTOR,
    ReviewerRole.SUPERVISOR,
    ReviewerRole.KAUNIT,
    ReviewerRole.MANAGER,
)


def parse_status(value) -> SubmissionStatus:
    if value is None or value == "":
        return SubmissionStatus.NONE
    if isinstance(value, SubmissionStatus):
        return value
    try:
        return SubmissionStatus(str(value).strip().lower())
    except ValueError:
        raise IllegalTransitionError(f"Unknown submission status: {value!r}")


def parse_role(value) -> ReviewerRole:
    if isinstance(value, ReviewerRole):
        return value
    raw = (str(value or "")).strip().lower().replace("-", "").replace("_", "").replace(" ", "")
    try:
        return ReviewerRole(raw)
    except ValueError:
        raise IllegalTransitionError(f"Unknown reviewer role: {value!r}")


def parse_decision(value) -> Decision:
    if isinstance(value, Decision):
        return value
    try:
        return Decision((str(value or "")).strip().lower())
    except ValueError:
        raise IllegalTransitionError(f"Invalid decision: {value!r} (must be approved or rejected)")


def reviewer_chain(has_supervisor=True, has_kaunit=True, has_manager=True) -> tuple:
    """Mentor always reviews first; later stages exist only when assigned."""
    chain = [ReviewerRole.MENTOR]
    if has_supervisor:
        chain.append(ReviewerRole.SUPERVISOR)
    if has_kaunit:
        chain.append(ReviewerRole.KAUNIT)
    if has_manager:
        chain.append(ReviewerRole.MANAGER)
    return tuple(chain)


def submit_transition(current) -> SubmissionStatus:
    current = parse_status(current)
    if current is SubmissionStatus.NONE or current.is_rejected:
        return SubmissionStatus.PENDING_MENTOR
    raise IllegalTransitionError(
        f"Cannot submit a report that is {current.value}",
        status=current.value,
    )


def review_transition(current, decision, role, chain=DEFAULT_CHAIN) -> SubmissionStatus:
    current = parse_status(current)
    decision = parse_decision(decision)
    role = parse_role(role)

    if role not in chain:
        raise IllegalTransitionError(
            f"Role {role.value} is not part of this report's reviewer chain",
            status=current.value,
        )
    if current is not role.pending_status:
        raise IllegalTransitionError(
            f"Report is {current.value}; {role.value} cannot review it now",
            status=current.value,
        )

    if decision is Decision.REJECTED:
        return role.rejected_status

    idx = list(chain).index(role)
    if idx + 1 < len(chain):
        return chain[idx + 1].pending_status
    return SubmissionStatus.APPROVED


def transition(current, action, role=None, chain=DEFAULT_CHAIN) -> SubmissionStatus:
    """Single entry point: next status for (current, action, role) or IllegalTransitionError."""
    try:
        action = Action(action)
    except ValueError:
        raise IllegalTransitionError(f"Unknown action: {action!r}")

    if action is Action.SUBMIT:
        return submit_transition(current)
    if role is None:
        raise IllegalTransitionError("A reviewer role is required to review a report")
    decision = Decision.APPROVED if action is Action.APPROVE else Decision.REJECTED
    return review_transition(current, decision, role, chain)


def is_editable_by_employee(status) -> bool:
    """The employee owns the month before submission and after a rejection."""
    status = parse_status(status)
    return status is SubmissionStatus.NONE or status.is_rejected


def submission_window_open(month_key: str, today: date, open_day: int = 28) -> bool:
    """Past months are always open; the current month opens on ``open_day``."""
    cmp = compare_month(month_key, today)
    if cmp > 0:
        return False
    if cmp < 0:
        return True
    return today.day >= open_day
