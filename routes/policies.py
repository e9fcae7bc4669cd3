"""Policy publishing, browsing and citizen support."""
from flask import Blueprint, abort, current_app, g
from flask_login import current_user, login_required
from flask_wtf.file import FileField
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from wtforms import DateTimeField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional, URL

from extensions import db
from models import POLICY_CATEGORIES, POLICY_STATUSES, Policy, PolicySupport
from utils.decorators import admin_required, has_role
from utils.forms import ApiForm, json_list, validation_failed
from utils.idea_lifecycle import increment_counter
from utils.notifications import broadcast_safely
from utils.pdf_text import PDFExtractionError, extract_pdf_text
from utils.responses import error_response, page_args, pagination_meta, success_response
from utils.uploads import DOCUMENT_EXTENSIONS, UploadError, path_for_url, remove_upload, save_upload

policies_bp = Blueprint("policies", __name__, url_prefix="/api/policies")

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ", "%Y-%m-%dT%H:%M:%S.%fZ"]
SORTABLE = {
    "createdAt": Policy.created_at,
    "title": Policy.title,
    "views": Policy.view_count,
    "supportCount": Policy.support_count,
    "effectiveDate": Policy.effective_date,
}


class PolicyForm(ApiForm):
    title = StringField("Title", validators=[DataRequired(message="Title is required"), Length(min=10, max=200)])
    description = TextAreaField("Description", validators=[DataRequired(message="Description is required"), Length(min=50)])
    category = SelectField("Category", choices=[(c, c) for c in POLICY_CATEGORIES], validators=[DataRequired(message="Please select a valid category")])
    status = SelectField("Status", choices=[(s, s) for s in POLICY_STATUSES], validators=[Optional()], default="Draft")
    effective_date = DateTimeField("Effective date", name="effectiveDate", format=DATE_FORMATS, validators=[Optional()])
    document_url = StringField("Document URL", name="documentUrl", validators=[Optional(), URL(), Length(max=500)])
    policy_pdf = FileField("Policy PDF", name="policyPdf")


class PolicyUpdateForm(PolicyForm):
    title = StringField("Title", validators=[Optional(), Length(min=10, max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(min=50)])
    category = SelectField("Category", choices=[(c, c) for c in POLICY_CATEGORIES], validators=[Optional()])
    status = SelectField("Status", choices=[(s, s) for s in POLICY_STATUSES], validators=[Optional()])


def _policy_or_404(policy_id: str) -> Policy:
    policy = db.session.get(Policy, policy_id)
    if not policy or not policy.is_active:
        abort(404, description="Policy not found")
    return policy


def _viewer_id():
    return current_user.id if current_user.is_authenticated else None


def _viewer_is_admin() -> bool:
    return has_role(current_user, "admin")


def visible_policy_or_abort(policy_id: str) -> Policy:
    """Active policy the current viewer may read; drafts and archives are admin-only."""
    policy = _policy_or_404(policy_id)
    if policy.status != "Published" and not _viewer_is_admin():
        abort(403, description="This policy is not yet published")
    return policy


def _store_pdf(form: PolicyForm) -> dict | None:
    upload = form.policy_pdf.data
    if not upload or not getattr(upload, "filename", ""):
        return None
    stored = save_upload(upload, "policies", "policyPdf", DOCUMENT_EXTENSIONS)
    try:
        stored["text"] = extract_pdf_text(stored["path"])
    except PDFExtractionError:
        stored["text"] = None
    return stored


@policies_bp.route("", methods=["GET"])
def list_policies():
    args = g.sanitized_args
    page, limit = page_args(args, default_limit=100)
    query = Policy.query.filter(Policy.is_active.is_(True))

    category = args.get("category")
    if category and category != "All":
        query = query.filter(Policy.category == category)
    status = args.get("status")
    if _viewer_is_admin():
        if status and status != "All":
            query = query.filter(Policy.status == status)
    else:
        # Citizens and guests only ever see published policies.
        query = query.filter(Policy.status == "Published")
    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Policy.title.ilike(pattern), Policy.description.ilike(pattern)))

    column = SORTABLE.get(args.get("sortBy", "createdAt"), Policy.created_at)
    query = query.order_by(column.asc() if args.get("order") == "asc" else column.desc())

    total = query.count()
    policies = query.offset((page - 1) * limit).limit(limit).all()
    viewer = _viewer_id()
    return success_response(
        {
            "policies": [p.to_dict(viewer_id=viewer) for p in policies],
            "pagination": pagination_meta(page, limit, total),
        }
    )


@policies_bp.route("/admin/stats", methods=["GET"])
@admin_required
def policy_stats():
    active = Policy.query.filter(Policy.is_active.is_(True))
    by_category = (
        db.session.query(Policy.category, func.count(Policy.id))
        .filter(Policy.is_active.is_(True))
        .group_by(Policy.category)
        .order_by(func.count(Policy.id).desc())
        .all()
    )
    most_viewed = (
        active.filter(Policy.status == "Published").order_by(Policy.view_count.desc()).limit(5).all()
    )
    return success_response(
        {
            "totalPolicies": active.count(),
            "draftPolicies": active.filter(Policy.status == "Draft").count(),
            "publishedPolicies": active.filter(Policy.status == "Published").count(),
            "underReviewPolicies": active.filter(Policy.status == "Under Review").count(),
            "policiesByCategory": [{"category": c, "count": n} for c, n in by_category],
            "mostViewed": [
                {"id": p.id, "title": p.title, "category": p.category, "views": p.view_count} for p in most_viewed
            ],
        }
    )


@policies_bp.route("/<string:policy_id>", methods=["GET"])
def get_policy(policy_id):
    policy = visible_policy_or_abort(policy_id)
    increment_counter(Policy, policy.id, "view_count")
    policy = db.session.get(Policy, policy_id, populate_existing=True)
    return success_response({"policy": policy.to_dict(viewer_id=_viewer_id(), include_content=True)})


@policies_bp.route("", methods=["POST"])
@admin_required
def create_policy():
    form = PolicyForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    try:
        stored = _store_pdf(form)
    except UploadError as exc:
        return error_response(str(exc), 400)

    try:
        policy = Policy(
            title=form.title.data.strip(),
            description=form.description.data.strip(),
            category=form.category.data,
            status=form.status.data or "Draft",
            effective_date=form.effective_date.data,
            document_url=form.document_url.data or None,
            tags=json_list("tags"),
            created_by=current_user.id,
            pdf_file_path=stored["url"] if stored else None,
            pdf_content=stored["text"] if stored else None,
        )
        db.session.add(policy)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        remove_upload(stored["path"] if stored else None)
        current_app.logger.exception("Policy creation failed")
        return error_response("Failed to create policy", 500)

    current_app.logger.info("Policy created", extra={"policy_id": policy.id, "by": current_user.id})
    broadcast_safely(
        current_user.id,
        "citizen",
        "AdminAlert",
        f'New Policy Alert: "{policy.title}" has been introduced in the {policy.category} category.',
        policy_id=policy.id,
    )
    return success_response({"policy": policy.to_dict()}, message="Policy created successfully", status=201)


@policies_bp.route("/<string:policy_id>", methods=["PUT"])
@admin_required
def update_policy(policy_id):
    policy = _policy_or_404(policy_id)
    form = PolicyUpdateForm()
    if not form.validate_on_submit():
        return validation_failed(form)

    try:
        stored = _store_pdf(form)
    except UploadError as exc:
        return error_response(str(exc), 400)

    submitted = form.submitted_keys()
    old_pdf = path_for_url(policy.pdf_file_path) if stored else None
    try:
        content_changed = False
        for field, attr in ((form.title, "title"), (form.description, "description"), (form.category, "category")):
            if field.data and field.data.strip() != getattr(policy, attr):
                setattr(policy, attr, field.data.strip())
                content_changed = True
        if form.status.data:
            policy.status = form.status.data
        if "effectiveDate" in submitted:
            policy.effective_date = form.effective_date.data
        if "documentUrl" in submitted:
            policy.document_url = form.document_url.data or None
        if "tags" in submitted:
            policy.tags = json_list("tags")
        if stored:
            policy.pdf_file_path = stored["url"]
            policy.pdf_content = stored["text"]
        if content_changed:
            # A cached summary describes the old text.
            policy.summary = None
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        remove_upload(stored["path"] if stored else None)
        current_app.logger.exception("Policy update failed", extra={"policy_id": policy_id})
        return error_response("Failed to update policy", 500)

    remove_upload(old_pdf)
    broadcast_safely(
        current_user.id,
        "citizen",
        "PolicyUpdate",
        f'Policy Updated: "{policy.title}" has been updated. Check out the latest changes!',
        policy_id=policy.id,
    )
    return success_response({"policy": policy.to_dict()}, message="Policy updated successfully")


@policies_bp.route("/<string:policy_id>", methods=["DELETE"])
@admin_required
def delete_policy(policy_id):
    policy = _policy_or_404(policy_id)
    try:
        policy.is_active = False
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Policy deletion failed", extra={"policy_id": policy_id})
        return error_response("Failed to delete policy", 500)
    return success_response(message="Policy deleted successfully")


@policies_bp.route("/<string:policy_id>/support", methods=["POST"])
@login_required
def support_policy(policy_id):
    policy = _policy_or_404(policy_id)
    if policy.is_supported_by(current_user.id):
        return error_response("You have already supported this policy", 400, alreadySupported=True)

    try:
        db.session.add(PolicySupport(policy_id=policy.id, user_id=current_user.id))
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        return error_response("You have already supported this policy", 400, alreadySupported=True)
    try:
        increment_counter(Policy, policy.id, "support_count")
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Policy support failed", extra={"policy_id": policy_id})
        return error_response("Failed to support policy", 500)

    policy = db.session.get(Policy, policy_id, populate_existing=True)
    return success_response(
        {"supportCount": policy.support_count, "hasSupported": True},
        message="Support added successfully",
    )
