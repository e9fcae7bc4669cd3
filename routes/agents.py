"""Admin-only budget planner endpoints."""
import time
from datetime import datetime
from decimal import Decimal

from flask import Blueprint, Response, current_app, request
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError
from wtforms import DecimalField, StringField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, ValidationError

from extensions import db
from models import BudgetAllocation
from utils.ai_client import LanguageModelError, ModelResponseError
from utils.budget_planner import (
    BudgetPlannerError,
    InsufficientBudgetError,
    approve_allocation,
    get_allocation,
    reject_allocation,
    restamp_allocation,
    run_budget_planner,
    update_allocation,
)
from utils.decorators import admin_required
from utils.forms import ApiForm, validation_failed, whole_number
from utils.pdf_generator import build_allocation_pdf
from utils.responses import error_response, success_response

agents_bp = Blueprint("agents", __name__, url_prefix="/api/agents/budget-planner")


class AnalyzeForm(ApiForm):
    total_budget = DecimalField(
        "Total budget",
        name="totalBudget",
        validators=[DataRequired(), NumberRange(min=Decimal(1)), whole_number],
    )
    fiscal_year = StringField("Fiscal year", name="fiscalYear", validators=[Optional(), Length(max=20)])

    def validate_total_budget(self, field):
        if field.raw_data and isinstance(field.raw_data[0], bool):
            raise ValidationError("Must be a number")


def _planner_error(exc: BudgetPlannerError):
    return error_response(exc.message, exc.status_code)


def _approval_payload(result: dict) -> dict:
    return {
        "allocation": result["allocation"].to_dict(),
        "fundedIdeas": result["fundedIdeas"],
        "skippedIdeas": result["skippedIdeas"],
        "failedIdeas": result["failedIdeas"],
    }


@agents_bp.route("/analyze", methods=["POST"])
@admin_required
def analyze_budget():
    form = AnalyzeForm()
    if not form.validate_on_submit():
        return validation_failed(form, "Valid total budget is required")

    total_budget = int(form.total_budget.data)
    fiscal_year = (form.fiscal_year.data or "").strip() or str(datetime.utcnow().year)
    try:
        allocation = run_budget_planner(total_budget, fiscal_year, current_user.id)
    except InsufficientBudgetError as exc:
        current_app.logger.info("Budget judged insufficient", extra={"total_budget": total_budget})
        return error_response(exc.message, 400, insufficientBudget=True, data=exc.data)
    except BudgetPlannerError as exc:
        return _planner_error(exc)
    except (ModelResponseError, LanguageModelError) as exc:
        db.session.rollback()
        current_app.logger.error("Budget analysis failed", extra={"error": str(exc)})
        return error_response("Failed to analyze budget", 500, error=str(exc) if current_app.debug else None)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Budget allocation could not be stored")
        return error_response("Failed to analyze budget", 500)

    return success_response(allocation.to_dict(), message="Budget analysis completed successfully")


@agents_bp.route("", methods=["GET"])
@admin_required
def list_allocations():
    allocations = BudgetAllocation.query.order_by(BudgetAllocation.created_at.desc()).all()
    return success_response([a.to_dict() for a in allocations])


@agents_bp.route("/<string:allocation_id>", methods=["GET"])
@admin_required
def allocation_detail(allocation_id):
    try:
        allocation = get_allocation(allocation_id)
    except BudgetPlannerError as exc:
        return _planner_error(exc)
    return success_response(allocation.to_dict())


@agents_bp.route("/<string:allocation_id>", methods=["PUT"])
@admin_required
def edit_allocation(allocation_id):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return error_response("Request body must be a JSON object", 400)
    try:
        allocation = update_allocation(allocation_id, payload)
    except BudgetPlannerError as exc:
        db.session.rollback()
        return _planner_error(exc)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Budget allocation update failed", extra={"allocation_id": allocation_id})
        return error_response("Failed to update budget allocation", 500)
    return success_response(allocation.to_dict(), message="Budget allocation updated successfully")


@agents_bp.route("/<string:allocation_id>/approve", methods=["POST"])
@admin_required
def approve(allocation_id):
    try:
        result = approve_allocation(allocation_id, current_user.id)
    except BudgetPlannerError as exc:
        return _planner_error(exc)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Budget approval failed", extra={"allocation_id": allocation_id})
        return error_response("Failed to approve budget allocation", 500)

    return success_response(
        _approval_payload(result),
        message="Budget allocation approved successfully. All citizens have been notified.",
    )


@agents_bp.route("/<string:allocation_id>/restamp", methods=["POST"])
@admin_required
def restamp(allocation_id):
    try:
        result = restamp_allocation(allocation_id, current_user.id)
    except BudgetPlannerError as exc:
        return _planner_error(exc)
    return success_response(_approval_payload(result), message="Funded ideas re-stamped")


@agents_bp.route("/<string:allocation_id>/reject", methods=["POST"])
@admin_required
def reject(allocation_id):
    try:
        allocation = reject_allocation(allocation_id)
    except BudgetPlannerError as exc:
        return _planner_error(exc)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Budget rejection failed", extra={"allocation_id": allocation_id})
        return error_response("Failed to reject budget allocation", 500)
    return success_response(allocation.to_dict(), message="Budget allocation rejected")


@agents_bp.route("/<string:allocation_id>/pdf", methods=["GET"])
@admin_required
def allocation_pdf(allocation_id):
    try:
        allocation = get_allocation(allocation_id)
    except BudgetPlannerError as exc:
        return _planner_error(exc)

    try:
        content = build_allocation_pdf(allocation.to_dict())
    except Exception as exc:
        current_app.logger.exception("PDF generation failed", extra={"allocation_id": allocation_id})
        return error_response(
            "Failed to generate PDF report",
            500,
            error=str(exc) if current_app.debug else None,
        )

    safe_year = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in allocation.fiscal_year)
    filename = f"Budget_Allocation_{safe_year}_{int(time.time() * 1000)}.pdf"
    return Response(
        content,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
