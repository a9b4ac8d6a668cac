from datetime import datetime
import json

from extensions import db
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin


ROLE_EMPLOYEE = "EMPLOYEE"
ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"


# ======================
# Users (employees)
# ======================
class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    # Employee number (NIP) printed on transcripts
    nip = db.Column(db.String(50), unique=True, index=True, nullable=True)
    email = db.Column(db.String(255), unique=True, index=True)
    name = db.Column(db.String(200), nullable=True)
    job_title = db.Column(db.String(200), nullable=True)
    unit = db.Column(db.String(200), nullable=True)
    hospital_id = db.Column(db.String(50), nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(50), index=True, default=ROLE_EMPLOYEE, nullable=False)
    is_active_user = db.Column(db.Boolean, default=True, nullable=False)

    # Reviewer chain
    mentor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    supervisor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    ka_unit_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Capability flags
    can_be_mentor = db.Column(db.Boolean, default=False, nullable=False)
    can_be_supervisor = db.Column(db.Boolean, default=False, nullable=False)
    can_be_ka_unit = db.Column(db.Boolean, default=False, nullable=False)
    can_be_manager = db.Column(db.Boolean, default=False, nullable=False)
    # Signs transcripts as "Direktur Utama"
    can_be_dirut = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    mentor = db.relationship("User", foreign_keys=[mentor_id], remote_side=[id])
    supervisor = db.relationship("User", foreign_keys=[supervisor_id], remote_side=[id])
    ka_unit = db.relationship("User", foreign_keys=[ka_unit_id], remote_side=[id])
    manager = db.relationship("User", foreign_keys=[manager_id], remote_side=[id])

    def has_role(self, role_name):
        """SUPER_ADMIN inherits ADMIN; comparison ignores case and separators."""
        def _norm(x):
            return (x or "").strip().upper().replace("-", "_").replace(" ", "_")

        want = _norm(role_name)
        mine = _norm(self.role)
        if not want or not mine:
            return False
        if mine in ("SUPERADMIN", ROLE_SUPER_ADMIN):
            return want in ("SUPERADMIN", ROLE_SUPER_ADMIN, ROLE_ADMIN)
        return mine == want

    @property
    def is_admin(self):
        return self.has_role(ROLE_ADMIN)

    @property
    def full_name(self):
        return (self.name or "").strip() or self.email or f"User #{self.id}"

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            "id": self.id,
            "nip": self.nip,
            "name": self.full_name,
            "email": self.email,
            "role": self.role,
            "unit": self.unit,
            "jobTitle": self.job_title,
            "mentorId": self.mentor_id,
            "supervisorId": self.supervisor_id,
            "kaUnitId": self.ka_unit_id,
            "managerId": self.manager_id,
            "canBeMentor": self.can_be_mentor,
            "canBeSupervisor": self.can_be_supervisor,
            "canBeKaUnit": self.can_be_ka_unit,
            "canBeManager": self.can_be_manager,
        }


# ======================
# Mutaba'ah: activation + daily progress
# ======================
class MonthActivation(db.Model):
    __tablename__ = "mutabaah_activations"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    month_key = db.Column(db.String(7), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "month_key", name="uq_activation_employee_month"),
    )


class DailyProgress(db.Model):
    """One row per completed (employee, month, day, activity); absence = not done."""

    __tablename__ = "daily_progress"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    month_key = db.Column(db.String(7), nullable=False)
    day_key = db.Column(db.String(2), nullable=False)
    activity_id = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint(
            "employee_id", "month_key", "day_key", "activity_id",
            name="uq_daily_progress_cell",
        ),
        db.Index("ix_daily_progress_employee_month", "employee_id", "month_key"),
    )


# ======================
# Counter-based monthly reports (one JSON document per employee)
# ======================
class EmployeeMonthlyReport(db.Model):
    __tablename__ = "employee_monthly_reports"

    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), primary_key=True)
    reports_json = db.Column(db.Text, nullable=False, default="{}")
    # Bumped on every write; writers compare-and-swap on it
    version = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def reports(self):
        try:
            return json.loads(self.reports_json) if self.reports_json else {}
        except (TypeError, ValueError):
            return {}


# ======================
# Monthly report submissions (approval workflow)
# ======================
class MonthlyReportSubmission(db.Model):
    __tablename__ = "monthly_report_submissions"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    employee_name = db.Column(db.String(200), nullable=True)
    month_key = db.Column(db.String(7), nullable=False, index=True)
    status = db.Column(db.String(30), nullable=False, index=True)
    submitted_at = db.Column(db.DateTime, nullable=True)

    mentor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    supervisor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    ka_unit_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    mentor_reviewed_at = db.Column(db.DateTime, nullable=True)
    mentor_notes = db.Column(db.Text, nullable=True)
    supervisor_reviewed_at = db.Column(db.DateTime, nullable=True)
    supervisor_notes = db.Column(db.Text, nullable=True)
    ka_unit_reviewed_at = db.Column(db.DateTime, nullable=True)
    ka_unit_notes = db.Column(db.Text, nullable=True)
    manager_reviewed_at = db.Column(db.DateTime, nullable=True)
    manager_notes = db.Column(db.Text, nullable=True)

    # Performance snapshot taken at submission time
    snapshot_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    employee = db.relationship("User", foreign_keys=[employee_id], lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("employee_id", "month_key", name="uq_submission_employee_month"),
    )

    def to_dict(self):
        def _ts(v):
            return v.isoformat() if v else None

        try:
            snapshot = json.loads(self.snapshot_json) if self.snapshot_json else None
        except (TypeError, ValueError):
            snapshot = None

        return {
            "id": self.id,
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "monthKey": self.month_key,
            "status": self.status,
            "submittedAt": _ts(self.submitted_at),
            "mentorId": self.mentor_id,
            "supervisorId": self.supervisor_id,
            "kaUnitId": self.ka_unit_id,
            "managerId": self.manager_id,
            "mentorReviewedAt": _ts(self.mentor_reviewed_at),
            "mentorNotes": self.mentor_notes,
            "supervisorReviewedAt": _ts(self.supervisor_reviewed_at),
            "supervisorNotes": self.supervisor_notes,
            "kaUnitReviewedAt": _ts(self.ka_unit_reviewed_at),
            "kaUnitNotes": self.ka_unit_notes,
            "managerReviewedAt": _ts(self.manager_reviewed_at),
            "managerNotes": self.manager_notes,
            "snapshot": snapshot,
        }


# ======================
# Auxiliary reading histories
# ======================
class ReadingHistory(db.Model):
    __tablename__ = "reading_history"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    book_title = db.Column(db.String(255), nullable=False)
    pages_read = db.Column(db.String(50), nullable=True)
    date_completed = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class QuranReadingHistory(db.Model):
    __tablename__ = "quran_reading_history"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    surah_name = db.Column(db.String(100), nullable=True)
    surah_number = db.Column(db.Integer, nullable=True)
    start_ayah = db.Column(db.Integer, nullable=True)
    end_ayah = db.Column(db.Integer, nullable=True)
    date = db.Column(db.String(10), nullable=False, index=True)  # YYYY-MM-DD
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


# ======================
# Audit + notifications
# ======================
class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    action = db.Column(db.String(100), nullable=False)
    note = db.Column(db.Text, nullable=True)

    old_status = db.Column(db.String(50))
    new_status = db.Column(db.String(50))

    target_type = db.Column(db.String(50))
    target_id = db.Column(db.Integer)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True
    )

    user = db.relationship("User", foreign_keys=[user_id])


class Notification(db.Model):
    __table_args__ = (
        db.Index("ix_notification_user_read", "user_id", "is_read"),
        db.Index("ix_notification_event_key", "event_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    title = db.Column(db.String(120), nullable=True)
    message = db.Column(db.String(255))
    is_read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # report_status / report_submitted / role_assignment ...
    type = db.Column(db.String(50), default="INFO")

    # event_key groups notifications emitted by the same event
    event_key = db.Column(db.String(64), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)
    related_entity_id = db.Column(db.Integer, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "isRead": bool(self.is_read),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "relatedEntityId": self.related_entity_id,
        }
