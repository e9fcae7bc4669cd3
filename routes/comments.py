"""Standalone discussion comments attached to concerns."""
from flask import Blueprint, current_app, request
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Comment, Concern
from utils.responses import error_response, success_response

comments_bp = Blueprint("comments", __name__, url_prefix="/api/comments")


@comments_bp.route("/<string:concern_id>", methods=["GET"])
@login_required
def list_comments(concern_id):
    comments = Comment.query.filter_by(concern_id=concern_id).order_by(Comment.created_at.desc()).all()
    return success_response([c.to_dict() for c in comments], count=len(comments))


@comments_bp.route("/<string:concern_id>", methods=["POST"])
@login_required
def add_comment(concern_id):
    body = request.get_json(silent=True) or {}
    text = str(body.get("text") or "").strip()
    if not text:
        return error_response("Comment text is required", 400)
    if len(text) > 500:
        return error_response("Comment cannot exceed 500 characters", 400)
    if not db.session.get(Concern, concern_id):
        return error_response("Concern not found", 404)

    try:
        comment = Comment(text=text, concern_id=concern_id, user_id=current_user.id)
        db.session.add(comment)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Comment creation failed", extra={"concern_id": concern_id})
        return error_response("Server error", 500)
    return success_response(comment.to_dict(), status=201)


@comments_bp.route("/item/<string:comment_id>", methods=["DELETE"])
@login_required
def delete_comment(comment_id):
    comment = db.session.get(Comment, comment_id)
    if not comment:
        return error_response("Comment not found", 404)
    if comment.user_id != current_user.id and not current_user.is_admin:
        return error_response("Not authorized to delete this comment", 403)

    try:
        db.session.delete(comment)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Comment deletion failed", extra={"comment_id": comment_id})
        return error_response("Server error", 500)
    return success_response(message="Comment removed")
