"""Policy summaries, grounded Q&A and suggested questions."""
import re
from typing import Dict, List

from flask import current_app

from extensions import db
from models import Policy
from utils.ai_client import LanguageModel, get_language_model

_LIST_MARKER = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def build_summary_prompt(policy: Policy) -> str:
    return (
        "You are a helpful AI assistant that explains government policies in simple, easy-to-understand language.\n\n"
        f"Policy Title: {policy.title}\n"
        f"Category: {policy.category}\n"
        f"Full Description: {policy.description}\n\n"
        "Please provide a concise, easy-to-understand summary of this policy in 2-3 paragraphs. "
        "Use simple language that an average citizen can understand. Explain:\n"
        "1. What this policy is about\n"
        "2. Who it affects\n"
        "3. What changes or actions it introduces\n"
        "4. Why it matters to citizens\n\n"
        "Keep it friendly and accessible."
    )


def build_chat_prompt(policy: Policy, question: str) -> str:
    context = [
        f"Title: {policy.title}",
        f"Category: {policy.category}",
        f"Description: {policy.description}",
    ]
    if policy.summary:
        context.append(f"Summary: {policy.summary}")
    if policy.effective_date:
        context.append(f"Effective Date: {policy.effective_date.strftime('%d %B %Y')}")
    return (
        "You are a knowledgeable assistant helping citizens understand government policies. "
        "Answer questions clearly and accurately based on the policy information provided.\n\n"
        "POLICY CONTEXT:\n" + "\n".join(context) + "\n\n"
        f"CITIZEN QUESTION: {question}\n\n"
        "Please provide a helpful, accurate answer based ONLY on the policy information above. "
        "If the question cannot be answered from this policy, politely say so and suggest contacting "
        "the relevant government office. Keep your answer concise and easy to understand."
    )


def build_suggestions_prompt(policy: Policy) -> str:
    return (
        "Based on this government policy, generate 5 common questions that citizens might ask:\n\n"
        f"Policy Title: {policy.title}\n"
        f"Category: {policy.category}\n"
        f"Description: {policy.description}\n\n"
        "Provide ONLY the questions, one per line, without numbering. "
        "Make them practical and relevant to citizens' concerns."
    )


def summarize_policy(policy: Policy, model: LanguageModel | None = None) -> Dict[str, object]:
    """Return the cached summary, or generate and store it on first use."""
    if policy.summary:
        return {"summary": policy.summary, "cached": True}

    model = model or get_language_model()
    summary = model.prompt(build_summary_prompt(policy)).strip()
    policy.summary = summary
    db.session.commit()
    current_app.logger.info("Policy summary generated", extra={"policy_id": policy.id, "chars": len(summary)})
    return {"summary": summary, "cached": False}


def answer_question(policy: Policy, question: str, model: LanguageModel | None = None) -> str:
    model = model or get_language_model()
    return model.prompt(build_chat_prompt(policy, question)).strip()


def parse_questions(raw_text: str, limit: int = 5) -> List[str]:
    questions = []
    for line in (raw_text or "").splitlines():
        cleaned = _LIST_MARKER.sub("", line).strip()
        if cleaned:
            questions.append(cleaned)
    return questions[:limit]


def suggest_questions(policy: Policy, model: LanguageModel | None = None) -> List[str]:
    model = model or get_language_model()
    return parse_questions(model.prompt(build_suggestions_prompt(policy)))
