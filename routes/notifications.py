from flask import Blueprint, current_app
from flask_login import current_user, login_required
from sqlalchemy import and_, update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Notification
from utils.responses import error_response, success_response

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.route("", methods=["GET"])
@login_required
def my_notifications():
    notifications = (
        Notification.query.filter_by(recipient_id=current_user.id)
        .order_by(Notification.created_at.desc())
        .limit(50)
        .all()
    )
    return success_response([n.to_dict() for n in notifications], count=len(notifications))


@notifications_bp.route("/read-all", methods=["PATCH"])
@login_required
def mark_all_read():
    try:
        changed = db.session.execute(
            update(Notification)
            .where(and_(Notification.recipient_id == current_user.id, Notification.is_read.is_(False)))
            .values(is_read=True)
        ).rowcount
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Mark-all-read failed", extra={"user_id": current_user.id})
        return error_response("Failed to update notifications", 500)

    current_app.logger.info("Notifications marked read", extra={"user_id": current_user.id, "count": changed})
    return success_response(message="All notifications marked as read")


@notifications_bp.route("/<string:notification_id>/read", methods=["PATCH"])
@login_required
def mark_read(notification_id):
    notification = Notification.query.filter_by(id=notification_id, recipient_id=current_user.id).first()
    if not notification:
        return error_response("Notification not found", 404)

    try:
        notification.is_read = True
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Mark-read failed", extra={"notification_id": notification_id})
        return error_response("Failed to update notification", 500)
    return success_response(notification.to_dict())
