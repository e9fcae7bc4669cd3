"""Citizen concern reporting, upvotes, embedded comments and status updates."""
from flask import Blueprint, abort, current_app, g, request
from flask_login import current_user, login_required
from flask_wtf.file import FileField
from sqlalchemy import and_, delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from wtforms import FloatField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional

from extensions import db
from models import (
    CONCERN_CATEGORIES,
    CONCERN_STATUSES,
    Comment,
    Concern,
    ConcernComment,
    ConcernUpvote,
    Notification,
    Policy,
)
from utils.decorators import admin_required
from utils.forms import ApiForm, validation_failed
from utils.notifications import notify_safely
from utils.responses import error_response, page_args, pagination_meta, success_response
from utils.uploads import IMAGE_EXTENSIONS, UploadError, path_for_url, remove_upload, save_upload

concerns_bp = Blueprint("concerns", __name__, url_prefix="/api/concerns")


class ConcernForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(message="Title is required"), Length(max=100)])
    description = TextAreaField("Description", validators=[DataRequired(message="Description is required"), Length(max=1000)])
    category = SelectField("Category", choices=[(c, c) for c in CONCERN_CATEGORIES], validators=[DataRequired(message="Please select a valid category")])
    location = StringField("Location", validators=[DataRequired(message="Location is required"), Length(max=255)])
    lat = FloatField("Latitude", validators=[Optional(), NumberRange(min=-90, max=90)])
    lng = FloatField("Longitude", validators=[Optional(), NumberRange(min=-180, max=180)])
    image = FileField("Image")


def _concern_or_404(concern_id: str) -> Concern:
    concern = db.session.get(Concern, concern_id)
    if not concern:
        abort(404, description="Concern not found")
    return concern


def _viewer_id():
    return current_user.id if current_user.is_authenticated else None


@concerns_bp.route("", methods=["GET"])
def list_concerns():
    args = g.sanitized_args
    page, limit = page_args(args)
    query = Concern.query
    status = args.get("status")
    if status and status != "All":
        query = query.filter(Concern.status == status)
    category = args.get("category")
    if category and category != "All":
        query = query.filter(Concern.category == category)

    total = query.count()
    concerns = query.order_by(Concern.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    viewer = _viewer_id()
    return success_response(
        [c.to_dict(viewer_id=viewer) for c in concerns],
        count=len(concerns),
        pagination=pagination_meta(page, limit, total),
    )


@concerns_bp.route("/my/all", methods=["GET"])
@login_required
def my_concerns():
    concerns = Concern.query.filter_by(created_by=current_user.id).order_by(Concern.created_at.desc()).all()
    return success_response([c.to_dict(viewer_id=current_user.id) for c in concerns], count=len(concerns))


@concerns_bp.route("/citizen/stats", methods=["GET"])
@login_required
def citizen_stats():
    mine = Concern.query.filter_by(created_by=current_user.id)
    recent_concerns = Concern.query.order_by(Concern.created_at.desc()).limit(5).all()
    recent_policies = (
        Policy.query.filter_by(status="Published", is_active=True).order_by(Policy.created_at.desc()).limit(3).all()
    )

    activities = [
        {
            "id": c.id,
            "type": "concern",
            "title": c.title,
            "status": c.status,
            "date": c.created_at,
            "author": c.creator.name if c.creator else "Anonymous",
        }
        for c in recent_concerns
    ] + [
        {
            "id": p.id,
            "type": "policy",
            "title": p.title,
            "status": p.status,
            "date": p.created_at,
            "author": "Administration",
        }
        for p in recent_policies
    ]
    activities.sort(key=lambda item: item["date"], reverse=True)
    for item in activities:
        item["date"] = item["date"].isoformat() + "Z"

    stats = {
        "myConcerns": mine.count(),
        "inProgress": mine.filter(Concern.status == "In Progress").count(),
        "resolved": mine.filter(Concern.status == "Resolved").count(),
        "unreadNotifications": Notification.query.filter_by(recipient_id=current_user.id, is_read=False).count(),
        "globalResolved": Concern.query.filter_by(status="Resolved").count(),
    }
    return success_response({"stats": stats, "recentActivities": activities[:5]})


@concerns_bp.route("", methods=["POST"])
@login_required
def create_concern():
    form = ConcernForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    stored = None
    upload = form.image.data
    if upload and getattr(upload, "filename", ""):
        try:
            stored = save_upload(upload, "concerns", "image", IMAGE_EXTENSIONS)
        except UploadError as exc:
            return error_response(str(exc), 400)

    try:
        concern = Concern(
            title=form.title.data.strip(),
            description=form.description.data.strip(),
            category=form.category.data,
            location=form.location.data.strip(),
            latitude=form.lat.data,
            longitude=form.lng.data,
            image_url=stored["url"] if stored else None,
            created_by=current_user.id,
        )
        db.session.add(concern)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        remove_upload(stored["path"] if stored else None)
        current_app.logger.exception("Concern creation failed")
        return error_response("Failed to submit concern", 500)

    current_app.logger.info("Concern created", extra={"concern_id": concern.id, "by": current_user.id})
    return success_response(concern.to_dict(viewer_id=current_user.id), status=201)


@concerns_bp.route("/<string:concern_id>/upvote", methods=["PUT"])
@login_required
def toggle_upvote(concern_id):
    concern = _concern_or_404(concern_id)
    try:
        removed = db.session.execute(
            delete(ConcernUpvote).where(
                and_(ConcernUpvote.concern_id == concern.id, ConcernUpvote.user_id == current_user.id)
            )
        ).rowcount
        if not removed:
            db.session.add(ConcernUpvote(concern_id=concern.id, user_id=current_user.id))
        db.session.commit()
    except IntegrityError:
        # Concurrent duplicate upvote from the same user.
        db.session.rollback()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Concern upvote failed", extra={"concern_id": concern_id})
        return error_response("Server error", 500)

    concern = db.session.get(Concern, concern_id, populate_existing=True)
    return success_response(concern.to_dict(viewer_id=current_user.id))


@concerns_bp.route("/<string:concern_id>/comments", methods=["POST"])
@login_required
def add_concern_comment(concern_id):
    body = request.get_json(silent=True) or {}
    text = str(body.get("text") or "").strip()
    if not text:
        return error_response("Comment text is required", 400)
    if len(text) > 500:
        return error_response("Comment cannot exceed 500 characters", 400)
    concern = _concern_or_404(concern_id)

    try:
        comment = ConcernComment(
            concern_id=concern.id,
            user_id=current_user.id,
            text=text,
            is_official=current_user.is_admin,
        )
        db.session.add(comment)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Concern comment failed", extra={"concern_id": concern_id})
        return error_response("Server error", 500)

    if concern.created_by != current_user.id:
        preview = text[:50] + ("..." if len(text) > 50 else "")
        notify_safely(
            concern.created_by,
            current_user.id,
            "NewComment",
            f'{current_user.name} commented on your concern: "{preview}"',
            concern_id=concern.id,
        )
    return success_response(comment.to_dict(), status=201)


@concerns_bp.route("/<string:concern_id>/status", methods=["PUT"])
@admin_required
def update_concern_status(concern_id):
    body = request.get_json(silent=True) or {}
    status = body.get("status")
    if status not in CONCERN_STATUSES:
        return error_response("Invalid status value", 400)
    concern = _concern_or_404(concern_id)

    try:
        concern.status = status
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Concern status update failed", extra={"concern_id": concern_id})
        return error_response("Failed to update status", 500)

    current_app.logger.info("Concern status changed", extra={"concern_id": concern_id, "to_status": status})
    notify_safely(
        concern.created_by,
        current_user.id,
        "StatusUpdate",
        f'The status of your concern "{concern.title}" has been updated to "{status}".',
        concern_id=concern.id,
    )
    return success_response(concern.to_dict(viewer_id=current_user.id))


@concerns_bp.route("/<string:concern_id>", methods=["DELETE"])
@login_required
def delete_concern(concern_id):
    concern = _concern_or_404(concern_id)
    is_owner = concern.created_by == current_user.id
    if not current_user.is_admin and (not is_owner or concern.status != "Pending"):
        return error_response("Not authorized to delete this concern", 403)

    image_path = path_for_url(concern.image_url)
    try:
        db.session.execute(delete(Comment).where(Comment.concern_id == concern.id))
        db.session.execute(delete(ConcernUpvote).where(ConcernUpvote.concern_id == concern.id))
        db.session.execute(
            update(Notification).where(Notification.concern_id == concern.id).values(concern_id=None)
        )
        db.session.delete(concern)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Concern deletion failed", extra={"concern_id": concern_id})
        return error_response("Failed to delete concern", 500)

    remove_upload(image_path)
    current_app.logger.info("Concern deleted", extra={"concern_id": concern_id, "by": current_user.id})
    return success_response(message="Concern deleted successfully")


@concerns_bp.route("/<string:concern_id>", methods=["GET"])
def get_concern(concern_id):
    return success_response(_concern_or_404(concern_id).to_dict(viewer_id=_viewer_id()))
