"""Policy AI assist: cached summaries, grounded Q&A and suggested questions."""
from flask import Blueprint, current_app, request
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from routes.policies import visible_policy_or_abort
from utils.ai_client import LanguageModelError
from utils.ai_markdown_formatter import markdown_to_html
from utils.policy_assistant import answer_question, suggest_questions, summarize_policy
from utils.responses import error_response, success_response

ai_bp = Blueprint("ai", __name__, url_prefix="/api/ai")
QUESTION_MIN_LENGTH = 5
QUESTION_MAX_LENGTH = 500


@ai_bp.route("/summarize/<string:policy_id>", methods=["POST"])
def summarize(policy_id):
    policy = visible_policy_or_abort(policy_id)
    try:
        result = summarize_policy(policy)
    except LanguageModelError:
        current_app.logger.exception("Policy summary failed", extra={"policy_id": policy_id})
        return error_response("Failed to generate summary", 500)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Policy summary could not be stored", extra={"policy_id": policy_id})
        return error_response("Failed to generate summary", 500)

    return success_response(
        {
            "summary": result["summary"],
            "summaryHtml": markdown_to_html(result["summary"]),
            "cached": result["cached"],
        }
    )


@ai_bp.route("/chat/<string:policy_id>", methods=["POST"])
def chat(policy_id):
    body = request.get_json(silent=True) or {}
    question = str(body.get("question") or "").strip()
    if not question:
        return error_response("Question is required", 400)
    if not QUESTION_MIN_LENGTH <= len(question) <= QUESTION_MAX_LENGTH:
        return error_response(f"Question must be between {QUESTION_MIN_LENGTH} and {QUESTION_MAX_LENGTH} characters", 400)
    policy = visible_policy_or_abort(policy_id)

    try:
        answer = answer_question(policy, question)
    except LanguageModelError:
        current_app.logger.exception("Policy chat failed", extra={"policy_id": policy_id})
        return error_response("Failed to get response from AI", 500)

    return success_response(
        {
            "question": question,
            "answer": answer,
            "answerHtml": markdown_to_html(answer),
            "policyTitle": policy.title,
        }
    )


@ai_bp.route("/suggestions/<string:policy_id>", methods=["GET"])
def suggestions(policy_id):
    policy = visible_policy_or_abort(policy_id)
    try:
        questions = suggest_questions(policy)
    except LanguageModelError:
        current_app.logger.exception("Suggested questions failed", extra={"policy_id": policy_id})
        return error_response("Failed to generate suggestions", 500)
    return success_response({"questions": questions})
