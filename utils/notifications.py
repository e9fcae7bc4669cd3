"""Notification creation and best-effort fan-out."""
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import NOTIFICATION_TYPES, Notification, User


def build_notification(
    recipient_id: str,
    sender_id: str,
    kind: str,
    message: str,
    *,
    concern_id: Optional[str] = None,
    policy_id: Optional[str] = None,
    idea_id: Optional[str] = None,
) -> Notification:
    if kind not in NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {kind}")
    return Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=kind,
        message=message[:500],
        concern_id=concern_id,
        policy_id=policy_id,
        idea_id=idea_id,
    )


def notify(recipient_id: str, sender_id: str, kind: str, message: str, **links) -> Notification:
    """Add a single notification to the current session; the caller commits."""
    notification = build_notification(recipient_id, sender_id, kind, message, **links)
    db.session.add(notification)
    return notification


def notify_safely(recipient_id: str, sender_id: str, kind: str, message: str, **links) -> bool:
    """Create and commit one notification; failures are logged, never raised."""
    try:
        notify(recipient_id, sender_id, kind, message, **links)
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception(
            "Notification delivery failed",
            extra={"recipient_id": recipient_id, "kind": kind},
        )
        return False


def broadcast(sender_id: str, role: str, kind: str, message: str, **links) -> int:
    """Queue one notification for every active user with ``role``; the caller commits."""
    recipients = User.query.filter_by(role=role, is_active=True).with_entities(User.id).all()
    rows = [build_notification(r.id, sender_id, kind, message, **links) for r in recipients]
    db.session.add_all(rows)
    return len(rows)


def broadcast_safely(sender_id: str, role: str, kind: str, message: str, **links) -> int:
    try:
        count = broadcast(sender_id, role, kind, message, **links)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Broadcast notification failed", extra={"role": role, "kind": kind})
        return 0
    current_app.logger.info("Broadcast notifications queued", extra={"role": role, "kind": kind, "count": count})
    return count
