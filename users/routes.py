import logging

from flask import Blueprint, jsonify, request
from flask_login import login_required, current_user, login_user, logout_user

from extensions import db
from models import Notification, User
from services.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

users_bp = Blueprint(
    "users",
    __name__,
    url_prefix="/users"
)


@users_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    login_id = (data.get("email") or data.get("nip") or "").strip()
    password = data.get("password") or ""

    if not login_id or not password:
        raise ValidationError("email (or nip) and password are required")

    logger.info("Login attempt for %s", login_id)

    user = User.query.filter((User.email == login_id) | (User.nip == login_id)).first()

    if not user or not user.check_password(password):
        logger.warning("Login failed for %s", login_id)
        return jsonify({"error": "invalid_credentials", "message": "Invalid credentials"}), 401

    if not user.is_active_user:
        logger.warning("Login refused for inactive user id=%s", user.id)
        return jsonify({"error": "inactive", "message": "Account is disabled"}), 403

    login_user(user)
    logger.info("Login success | user=%s", user.id)
    return jsonify(user.to_dict())


@users_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"ok": True})


@users_bp.route("/me")
@login_required
def me():
    return jsonify(current_user.to_dict())


# =========================
# Notifications
# =========================
@users_bp.route("/me/notifications")
@login_required
def notifications():
    q = Notification.query.filter_by(user_id=current_user.id)
    if request.args.get("unread") == "1":
        q = q.filter(Notification.is_read.is_(False))
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(100).all()
    return jsonify([n.to_dict() for n in rows])


@users_bp.route("/me/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_read(notification_id):
    n = Notification.query.filter_by(id=notification_id, user_id=current_user.id).first()
    if n is None:
        raise NotFoundError("Notification not found")
    n.is_read = True
    db.session.commit()
    return jsonify(n.to_dict())
