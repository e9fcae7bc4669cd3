"""Admin user management and the public reporter leaderboard."""
from datetime import datetime, timedelta

from flask import Blueprint, abort, current_app, g, request
from flask_login import current_user
from sqlalchemy import case, func, or_
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import USER_ROLES, Concern, User
from utils.decorators import admin_required
from utils.responses import error_response, page_args, pagination_meta, success_response

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _user_or_404(user_id: str) -> User:
    user = db.session.get(User, user_id)
    if not user:
        abort(404, description="User not found.")
    return user


@users_bp.route("/leaderboard", methods=["GET"])
def leaderboard():
    report_count = func.count(Concern.id).label("report_count")
    resolved_count = func.sum(case((Concern.status == "Resolved", 1), else_=0)).label("resolved_count")
    rows = (
        db.session.query(User.id, User.name, User.avatar, report_count, resolved_count)
        .join(Concern, Concern.created_by == User.id)
        .group_by(User.id, User.name, User.avatar)
        .order_by(report_count.desc())
        .limit(10)
        .all()
    )
    return success_response(
        [
            {
                "id": row.id,
                "name": row.name,
                "avatar": row.avatar,
                "reportCount": row.report_count,
                "resolvedCount": int(row.resolved_count or 0),
            }
            for row in rows
        ]
    )


@users_bp.route("/stats", methods=["GET"])
@admin_required
def user_stats():
    week_ago = datetime.utcnow() - timedelta(days=7)
    stats = {
        "totalUsers": User.query.count(),
        "totalCitizens": User.query.filter_by(role="citizen").count(),
        "totalAdmins": User.query.filter_by(role="admin").count(),
        "activeUsers": User.query.filter_by(is_active=True).count(),
        "inactiveUsers": User.query.filter_by(is_active=False).count(),
        "newUsersThisWeek": User.query.filter(User.created_at >= week_ago).count(),
    }
    return success_response({"stats": stats})


@users_bp.route("", methods=["GET"])
@admin_required
def list_users():
    args = g.sanitized_args
    page, limit = page_args(args)
    query = User.query
    if args.get("role") in USER_ROLES:
        query = query.filter(User.role == args["role"])
    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    total = query.count()
    users = query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    meta = pagination_meta(page, limit, total)
    meta["hasMore"] = page * limit < total
    return success_response({"users": [u.to_dict() for u in users], "pagination": meta})


@users_bp.route("/<string:user_id>", methods=["GET"])
@admin_required
def get_user(user_id):
    return success_response({"user": _user_or_404(user_id).to_dict()})


@users_bp.route("/<string:user_id>/status", methods=["PATCH"])
@admin_required
def update_user_status(user_id):
    body = request.get_json(silent=True) or {}
    if not isinstance(body.get("isActive"), bool):
        return error_response("isActive must be a boolean.", 400)
    user = _user_or_404(user_id)
    if user.id == current_user.id:
        return error_response("You cannot change your own status.", 400)

    try:
        user.is_active = body["isActive"]
        if not user.is_active:
            user.refresh_token_hash = None
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("User status update failed", extra={"user_id": user_id})
        return error_response("Failed to update user status.", 500)

    current_app.logger.info("User status changed", extra={"user_id": user_id, "is_active": user.is_active, "by": current_user.id})
    state = "activated" if user.is_active else "deactivated"
    return success_response({"user": user.to_dict()}, message=f"User has been {state}.")


@users_bp.route("/<string:user_id>/role", methods=["PATCH"])
@admin_required
def update_user_role(user_id):
    body = request.get_json(silent=True) or {}
    role = body.get("role")
    if role not in USER_ROLES:
        return error_response("Invalid role. Must be either citizen or admin.", 400)
    user = _user_or_404(user_id)
    if user.id == current_user.id:
        return error_response("You cannot change your own role.", 400)

    try:
        user.role = role
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("User role update failed", extra={"user_id": user_id})
        return error_response("Failed to update user role.", 500)

    current_app.logger.info("User role changed", extra={"user_id": user_id, "role": role, "by": current_user.id})
    return success_response({"user": user.to_dict()}, message=f"User role updated to {role}.")


@users_bp.route("/<string:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id):
    user = _user_or_404(user_id)
    if user.id == current_user.id:
        return error_response("You cannot delete your own account from here.", 400)

    try:
        db.session.delete(user)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("User deletion failed", extra={"user_id": user_id})
        return error_response("Failed to delete user. Reassign or remove their content first.", 500)

    current_app.logger.info("User deleted", extra={"user_id": user_id, "by": current_user.id})
    return success_response(message="User deleted successfully.")
