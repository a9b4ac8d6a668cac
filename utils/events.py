from datetime import datetime
import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import AuditLog, Notification

logger = logging.getLogger(__name__)


def audit(actor_id, action, note=None, *, old_status=None, new_status=None,
          target_type=None, target_id=None):
    """Stage an AuditLog row on the current session (caller commits)."""
    db.session.add(AuditLog(
        user_id=actor_id,
        action=action,
        note=note,
        old_status=old_status,
        new_status=new_status,
        target_type=target_type,
        target_id=target_id,
    ))


def emit_event(
    actor_id,
    message,
    notify_user_ids=(),
    title=None,
    ntype="INFO",
    related_entity_id=None,
    auto_commit=True,
):
    """Fire-and-forget notification for one or more users.

    Delivery problems are logged and never propagate into the caller's
    transaction outcome.
    """
    user_ids = {int(uid) for uid in (notify_user_ids or ()) if uid}
    if not user_ids:
        return None

    now = datetime.utcnow()
    event_key = uuid.uuid4().hex

    try:
        db.session.add_all([
            Notification(
                user_id=uid,
                title=title,
                message=(message or "")[:255],
                type=ntype,
                is_read=False,
                created_at=now,
                actor_id=actor_id,
                event_key=event_key,
                related_entity_id=related_entity_id,
            )
            for uid in sorted(user_ids)
        ])
        if auto_commit:
            db.session.commit()
    except SQLAlchemyError:
        logger.exception("Notification dispatch failed | event=%s | users=%s", event_key, sorted(user_ids))
        db.session.rollback()
        return None

    logger.info("Event %s | type=%s | users=%s", event_key, ntype, sorted(user_ids))
    return event_key
