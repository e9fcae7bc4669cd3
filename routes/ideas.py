"""Innovation hub: citizen ideas, votes, government responses and implementation tracking."""
from datetime import datetime

from flask import Blueprint, abort, current_app, g
from flask_login import current_user, login_required
from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import SQLAlchemyError
from wtforms import BooleanField, DateTimeField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional

from extensions import db
from models import (
    IDEA_CATEGORIES,
    IDEA_IMPACT_SCOPES,
    IDEA_PRIORITIES,
    VISIBILITY_LEVELS,
    Idea,
    IdeaImplementationUpdate,
)
from utils.ai_client import coerce_int
from utils.decorators import admin_required
from utils.forms import ApiForm, json_list, json_object, validation_failed
from utils.idea_lifecycle import IdeaTransitionError, cast_vote, increment_counter, transition_idea_status
from utils.notifications import broadcast_safely, notify_safely
from utils.responses import error_response, page_args, pagination_meta, success_response

ideas_bp = Blueprint("ideas", __name__, url_prefix="/api/ideas")

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%dT%H:%M:%S.%fZ"]
SORTABLE = {
    "createdAt": Idea.created_at,
    "updatedAt": Idea.updated_at,
    "title": Idea.title,
    "upvoteCount": Idea.upvote_count,
    "viewCount": Idea.view_count,
}
LIST_FIELDS = ("benefits", "challenges", "resources", "tags")


class IdeaForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(message="Title is required"), Length(min=10, max=200, message="Title must be 10-200 characters")])
    description = TextAreaField("Description", validators=[DataRequired(message="Description is required"), Length(min=50, message="Description must be at least 50 characters")])
    category = SelectField("Category", choices=[(c, c) for c in IDEA_CATEGORIES], validators=[DataRequired(message="Category is required")])
    sub_category = StringField("Sub-category", name="subCategory", validators=[Optional(), Length(max=120)])
    target_area = StringField("Target area", name="targetArea", validators=[DataRequired(message="Target area is required"), Length(max=255)])
    expected_impact = SelectField("Expected impact", name="expectedImpact", choices=[(s, s) for s in IDEA_IMPACT_SCOPES], validators=[DataRequired(message="Expected impact is required")])
    visibility = SelectField("Visibility", choices=[(v, v) for v in VISIBILITY_LEVELS], validators=[Optional()], default="Public")


class IdeaUpdateForm(IdeaForm):
    title = StringField("Title", validators=[Optional(), Length(min=10, max=200, message="Title must be 10-200 characters")])
    description = TextAreaField("Description", validators=[Optional(), Length(min=50, message="Description must be at least 50 characters")])
    category = SelectField("Category", choices=[(c, c) for c in IDEA_CATEGORIES], validators=[Optional()])
    target_area = StringField("Target area", name="targetArea", validators=[Optional(), Length(max=255)])
    expected_impact = SelectField("Expected impact", name="expectedImpact", choices=[(s, s) for s in IDEA_IMPACT_SCOPES], validators=[Optional()])
    visibility = SelectField("Visibility", choices=[(v, v) for v in VISIBILITY_LEVELS], validators=[Optional()])
    status = StringField("Status", validators=[Optional()])
    priority = SelectField("Priority", choices=[(p, p) for p in IDEA_PRIORITIES], validators=[Optional()])
    is_featured = BooleanField("Featured", name="isFeatured", false_values=(False, "false", "False", "0", ""))


class ResponseForm(ApiForm):
    message = TextAreaField("Message", validators=[DataRequired(message="Response message is required"), Length(max=5000)])
    next_steps = TextAreaField("Next steps", name="nextSteps", validators=[Optional(), Length(max=2000)])
    new_status = StringField("New status", name="newStatus", validators=[Optional()])


class ImplementationForm(ApiForm):
    start_date = DateTimeField("Start date", name="startDate", format=DATE_FORMATS, validators=[Optional()])
    completion_date = DateTimeField("Completion date", name="completionDate", format=DATE_FORMATS, validators=[Optional()])
    progress = IntegerField("Progress", validators=[Optional(), NumberRange(min=0, max=100)])
    update_message = TextAreaField("Update message", name="updateMessage", validators=[Optional(), Length(max=2000)])


def _idea_or_404(idea_id: str) -> Idea:
    idea = db.session.get(Idea, idea_id)
    if not idea or not idea.is_active:
        abort(404, description="Idea not found")
    return idea


def _can_manage(idea: Idea) -> bool:
    return current_user.is_admin or idea.submitted_by == current_user.id


def _apply_budget_and_timeline(idea: Idea, submitted: set[str]) -> None:
    if "estimatedBudget" in submitted:
        budget = json_object("estimatedBudget")
        amount = budget.get("amount")
        try:
            idea.estimated_budget_amount = max(float(amount), 0.0) if amount not in (None, "") else None
        except (TypeError, ValueError):
            idea.estimated_budget_amount = None
        idea.estimated_budget_currency = str(budget.get("currency") or "INR")[:8]
        idea.estimated_budget_description = (str(budget.get("description") or "").strip() or None)
    if "timeline" in submitted:
        timeline = json_object("timeline")
        idea.timeline_proposed = (str(timeline.get("proposed") or "").strip()[:120] or None)
        idea.timeline_description = (str(timeline.get("description") or "").strip()[:500] or None)


@ideas_bp.route("", methods=["POST"])
@login_required
def submit_idea():
    form = IdeaForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    try:
        idea = Idea(
            title=form.title.data.strip(),
            description=form.description.data.strip(),
            category=form.category.data,
            sub_category=(form.sub_category.data or "").strip() or None,
            target_area=form.target_area.data.strip(),
            expected_impact=form.expected_impact.data,
            visibility=form.visibility.data or "Public",
            submitted_by=current_user.id,
            **{key: json_list(key) for key in LIST_FIELDS},
        )
        _apply_budget_and_timeline(idea, form.submitted_keys())
        db.session.add(idea)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Idea submission failed")
        return error_response("Failed to submit idea", 500)

    current_app.logger.info("Idea submitted", extra={"idea_id": idea.id, "by": current_user.id})
    broadcast_safely(
        current_user.id,
        "admin",
        "IdeaSubmitted",
        f'New idea submitted: "{idea.title}" in {idea.category} category.',
        idea_id=idea.id,
    )
    return success_response(idea.to_dict(viewer_id=current_user.id), message="Idea submitted successfully", status=201)


@ideas_bp.route("", methods=["GET"])
@login_required
def list_ideas():
    args = g.sanitized_args
    page, limit = page_args(args, default_limit=12)
    my_ideas = args.get("myIdeas") == "true"
    query = Idea.query.filter(Idea.is_active.is_(True))

    if my_ideas:
        query = query.filter(Idea.submitted_by == current_user.id)
    elif not current_user.is_admin:
        query = query.filter(Idea.visibility == "Public")

    category = args.get("category")
    if category and category != "All":
        query = query.filter(Idea.category == category)
    status = args.get("status")
    if status and status != "All":
        query = query.filter(Idea.status == status)
    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(Idea.title.ilike(pattern), Idea.description.ilike(pattern), cast(Idea.tags, String).ilike(pattern))
        )

    sort_by = args.get("sortBy", "createdAt")
    if sort_by == "popular":
        ordering = Idea.upvote_count.desc()
    elif sort_by == "trending":
        ordering = Idea.view_count.desc()
    else:
        column = SORTABLE.get(sort_by, Idea.created_at)
        ordering = column.asc() if args.get("order") == "asc" else column.desc()
    query = query.order_by(ordering, Idea.created_at.desc())

    total = query.count()
    ideas = query.offset((page - 1) * limit).limit(limit).all()
    meta = pagination_meta(page, limit, total)
    meta["totalIdeas"] = total
    meta["hasMore"] = page * limit < total
    return success_response({"ideas": [i.to_dict(viewer_id=current_user.id) for i in ideas], "pagination": meta})


@ideas_bp.route("/admin/stats", methods=["GET"])
@admin_required
def idea_stats():
    active = Idea.query.filter(Idea.is_active.is_(True))
    by_category = (
        db.session.query(Idea.category, func.count(Idea.id))
        .filter(Idea.is_active.is_(True))
        .group_by(Idea.category)
        .order_by(func.count(Idea.id).desc())
        .all()
    )
    top = active.order_by(Idea.upvote_count.desc()).limit(5).all()
    recent = active.order_by(Idea.created_at.desc()).limit(5).all()

    def brief(idea: Idea) -> dict:
        payload = idea.to_summary()
        payload["upvoteCount"] = idea.upvote_count
        payload["submitterName"] = idea.submitter.name if idea.submitter else None
        payload["createdAt"] = idea.created_at.isoformat() + "Z"
        return payload

    stats = {
        "totalIdeas": active.count(),
        "submittedIdeas": active.filter(Idea.status == "Submitted").count(),
        "underReviewIdeas": active.filter(Idea.status == "Under Review").count(),
        "approvedIdeas": active.filter(Idea.status == "Approved").count(),
        "fundedIdeas": active.filter(Idea.status == "Funded").count(),
        "implementedIdeas": active.filter(Idea.status == "Implemented").count(),
        "ideasByCategory": [{"category": c, "count": n} for c, n in by_category],
        "topIdeas": [brief(i) for i in top],
        "recentIdeas": [brief(i) for i in recent],
    }
    return success_response({"stats": stats})


@ideas_bp.route("/<string:idea_id>", methods=["GET"])
@login_required
def get_idea(idea_id):
    idea = _idea_or_404(idea_id)
    if idea.visibility == "Private" and not _can_manage(idea):
        return error_response("You do not have permission to view this idea", 403)

    increment_counter(Idea, idea.id, "view_count")
    idea = db.session.get(Idea, idea_id, populate_existing=True)
    return success_response(idea.to_dict(viewer_id=current_user.id))


@ideas_bp.route("/<string:idea_id>", methods=["PUT"])
@login_required
def update_idea(idea_id):
    idea = _idea_or_404(idea_id)
    if not _can_manage(idea):
        return error_response("You do not have permission to update this idea", 403)

    form = IdeaUpdateForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    submitted = form.submitted_keys()
    try:
        for field, attr in (
            (form.title, "title"),
            (form.description, "description"),
            (form.target_area, "target_area"),
        ):
            if field.data:
                setattr(idea, attr, field.data.strip())
        for field, attr in (
            (form.category, "category"),
            (form.expected_impact, "expected_impact"),
            (form.visibility, "visibility"),
        ):
            if field.data:
                setattr(idea, attr, field.data)
        if "subCategory" in submitted:
            idea.sub_category = (form.sub_category.data or "").strip() or None
        for key in LIST_FIELDS:
            if key in submitted:
                setattr(idea, key, json_list(key))
        _apply_budget_and_timeline(idea, submitted)

        if current_user.is_admin:
            if form.status.data:
                transition_idea_status(idea, form.status.data)
            if form.priority.data:
                idea.priority = form.priority.data
            if "isFeatured" in submitted:
                idea.is_featured = bool(form.is_featured.data)
        db.session.commit()
    except IdeaTransitionError as exc:
        db.session.rollback()
        return error_response(str(exc), 400)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Idea update failed", extra={"idea_id": idea_id})
        return error_response("Failed to update idea", 500)

    return success_response(idea.to_dict(viewer_id=current_user.id), message="Idea updated successfully")


@ideas_bp.route("/<string:idea_id>", methods=["DELETE"])
@login_required
def delete_idea(idea_id):
    idea = _idea_or_404(idea_id)
    if not _can_manage(idea):
        return error_response("You do not have permission to delete this idea", 403)
    try:
        idea.is_active = False
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Idea deletion failed", extra={"idea_id": idea_id})
        return error_response("Failed to delete idea", 500)
    return success_response(message="Idea deleted successfully")


def _vote(idea_id: str, direction: str, message: str, failure: str):
    idea = _idea_or_404(idea_id)
    try:
        cast_vote(idea.id, current_user.id, direction)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Idea vote failed", extra={"idea_id": idea_id, "direction": direction})
        return error_response(failure, 500)

    idea = db.session.get(Idea, idea_id, populate_existing=True)
    current = idea.vote_of(current_user.id)
    return success_response(
        {
            "upvoteCount": idea.upvote_count,
            "downvoteCount": idea.downvote_count,
            "hasUpvoted": current == "up",
            "hasDownvoted": current == "down",
        },
        message=message,
    )


@ideas_bp.route("/<string:idea_id>/upvote", methods=["POST"])
@login_required
def upvote_idea(idea_id):
    return _vote(idea_id, "up", "Upvote recorded", "Failed to upvote idea")


@ideas_bp.route("/<string:idea_id>/downvote", methods=["POST"])
@login_required
def downvote_idea(idea_id):
    return _vote(idea_id, "down", "Downvote recorded", "Failed to downvote idea")


@ideas_bp.route("/<string:idea_id>/share", methods=["POST"])
@login_required
def share_idea(idea_id):
    idea = _idea_or_404(idea_id)
    if idea.visibility == "Private" and not _can_manage(idea):
        return error_response("You do not have permission to view this idea", 403)
    try:
        increment_counter(Idea, idea.id, "share_count")
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Idea share failed", extra={"idea_id": idea_id})
        return error_response("Failed to share idea", 500)
    idea = db.session.get(Idea, idea_id, populate_existing=True)
    return success_response({"shareCount": idea.share_count}, message="Share recorded")


@ideas_bp.route("/<string:idea_id>/response", methods=["POST"])
@admin_required
def add_government_response(idea_id):
    idea = _idea_or_404(idea_id)
    form = ResponseForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    try:
        idea.response_message = form.message.data.strip()
        idea.response_by = current_user.id
        idea.response_at = datetime.utcnow()
        idea.response_action_items = json_list("actionItems")
        idea.response_next_steps = (form.next_steps.data or "").strip() or None
        if form.new_status.data:
            transition_idea_status(idea, form.new_status.data)
        db.session.commit()
    except IdeaTransitionError as exc:
        db.session.rollback()
        return error_response(str(exc), 400)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Idea response failed", extra={"idea_id": idea_id})
        return error_response("Failed to add response", 500)

    current_app.logger.info("Government response recorded", extra={"idea_id": idea.id, "by": current_user.id})
    notify_safely(
        idea.submitted_by,
        current_user.id,
        "IdeaResponse",
        f'Government has responded to your idea: "{idea.title}"',
        idea_id=idea.id,
    )
    return success_response(idea.to_dict(viewer_id=current_user.id), message="Response added successfully")


@ideas_bp.route("/<string:idea_id>/implementation", methods=["PUT"])
@admin_required
def update_implementation(idea_id):
    idea = _idea_or_404(idea_id)
    form = ImplementationForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    try:
        if form.start_date.data:
            idea.implementation_start_date = form.start_date.data
        if form.completion_date.data:
            idea.implementation_completion_date = form.completion_date.data
        if form.progress.data is not None:
            idea.implementation_progress = form.progress.data
        message = (form.update_message.data or "").strip()
        if message:
            idea.implementation_updates.append(
                IdeaImplementationUpdate(
                    message=message,
                    progress=coerce_int(form.progress.data),
                    updated_by=current_user.id,
                )
            )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Implementation update failed", extra={"idea_id": idea_id})
        return error_response("Failed to update implementation", 500)

    notify_safely(
        idea.submitted_by,
        current_user.id,
        "IdeaUpdate",
        f'Implementation update for your idea: "{idea.title}"',
        idea_id=idea.id,
    )
    return success_response(idea.to_dict(viewer_id=current_user.id), message="Implementation updated successfully")
