"""Budget planner: scores approved ideas with the language model and fits a fiscal-year plan.

Pipeline: fetch and shrink approved ideas, ask for a sufficiency verdict,
score ideas in fixed-size batches, rank, fit allocations under the
contingency cap, summarize, then persist a Draft plan. Nothing is written
until every step has succeeded.

Approval stamps each funded idea in its own unit of work so one failing idea
never blocks the rest and can be retried with ``restamp_allocation``.
"""
import json
from datetime import datetime
from fractions import Fraction
from typing import Any, Dict, List

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import ALLOCATION_LEVELS, BudgetAllocation, BudgetAllocationLine, Idea
from utils.ai_client import (
    LanguageModel,
    LanguageModelError,
    ModelResponseError,
    coerce_bool,
    coerce_int,
    coerce_str,
    extract_json_object,
    get_language_model,
)
from utils.idea_lifecycle import mark_funded
from utils.notifications import broadcast_safely, build_notification

FALLBACK_RECOMMENDATIONS = [
    "Prioritize high-impact projects first",
    "Monitor implementation progress closely",
    "Reserve contingency funds for unexpected costs",
]


class BudgetPlannerError(Exception):
    """Base error for planner failures that map to a client-facing response."""

    status_code = 400

    def __init__(self, message: str, data: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.data = data


class InsufficientBudgetError(BudgetPlannerError):
    pass


class AllocationStateError(BudgetPlannerError):
    pass


class AllocationNotFoundError(BudgetPlannerError):
    status_code = 404


def format_crore(amount: int | float) -> str:
    return f"₹{amount / 10_000_000:.2f} Crore"


def format_lakh(amount: int | float) -> str:
    return f"₹{amount / 100_000:.2f} Lakh"


def _round_half_up(value: Fraction) -> int:
    return int((value + Fraction(1, 2)) // 1)


def _fail_open(step: str) -> bool:
    policy = current_app.config.get("BUDGET_FAIL_OPEN") or {}
    defaults = {"sufficiency": True, "scoring": False, "summary": True}
    return bool(policy.get(step, defaults[step]))


def shrink_idea(idea: Idea) -> Dict[str, Any]:
    """Compact projection of an idea, bounded for prompt size."""
    description = idea.description or ""
    impact = idea.expected_impact or ""
    return {
        "id": idea.id,
        "title": idea.title,
        "description": description[:300] + ("..." if len(description) > 300 else ""),
        "category": idea.category,
        "subCategory": idea.sub_category,
        "impact": impact[:200],
        "timeline": {"proposed": idea.timeline_proposed, "description": idea.timeline_description},
        "benefits": "; ".join((idea.benefits or [])[:3]),
        "targetArea": idea.target_area,
    }


def approved_ideas() -> List[Idea]:
    return (
        Idea.query.filter(Idea.status == "Approved", Idea.is_active.is_(True))
        .order_by(Idea.created_at.asc())
        .all()
    )


def build_sufficiency_prompt(total_budget: int, ideas: List[Dict[str, Any]], batch_size: int, sample_size: int) -> str:
    if len(ideas) <= batch_size:
        listing = f"IDEAS:\n{json.dumps(ideas, indent=2)}"
    else:
        listing = f"SAMPLE IDEAS (first {sample_size}):\n{json.dumps(ideas[:sample_size], indent=2)}"
    return (
        "You are a government budget analyst. Quickly assess if the provided budget is sufficient "
        "for these approved civic innovation ideas.\n\n"
        f"TOTAL AVAILABLE BUDGET: {format_crore(total_budget)}\n\n"
        f"NUMBER OF IDEAS: {len(ideas)}\n\n"
        f"{listing}\n\n"
        "TASK:\nAnalyze if the budget is sufficient. Consider:\n"
        f"- Number of ideas ({len(ideas)})\n"
        "- Typical costs for such projects\n"
        "- Minimum viable implementation\n\n"
        "OUTPUT ONLY VALID JSON:\n"
        '{\n  "isSufficient": true_or_false,\n  "estimatedMinimumBudget": number_in_rupees,\n'
        '  "message": "brief_explanation"\n}'
    )


def parse_sufficiency_reply(raw_text: str) -> Dict[str, Any]:
    payload = extract_json_object(raw_text)
    verdict = coerce_bool(payload.get("isSufficient"))
    if verdict is None:
        raise ModelResponseError("Sufficiency reply is missing isSufficient")
    estimate = coerce_int(payload.get("estimatedMinimumBudget"))
    if not verdict and (estimate is None or estimate < 0):
        raise ModelResponseError("Sufficiency reply is missing estimatedMinimumBudget")
    return {
        "isSufficient": verdict,
        "estimatedMinimumBudget": estimate,
        "message": coerce_str(payload.get("message"), "Budget assessment unavailable"),
    }


def check_sufficiency(model: LanguageModel, total_budget: int, ideas: List[Dict[str, Any]]) -> Dict[str, Any]:
    cfg = current_app.config
    prompt = build_sufficiency_prompt(
        total_budget,
        ideas,
        batch_size=cfg.get("BUDGET_BATCH_SIZE", 8),
        sample_size=cfg.get("BUDGET_SUFFICIENCY_SAMPLE", 5),
    )
    try:
        return parse_sufficiency_reply(model.prompt(prompt))
    except (LanguageModelError, ModelResponseError) as exc:
        if not _fail_open("sufficiency"):
            raise
        current_app.logger.warning("Sufficiency check unavailable; continuing", extra={"error": str(exc)})
        return {
            "isSufficient": True,
            "estimatedMinimumBudget": total_budget,
            "message": "Unable to assess budget sufficiency",
        }


def build_scoring_prompt(batch: List[Dict[str, Any]], total_budget: int, batch_number: int) -> str:
    return (
        "You are an expert government budget analyst. Analyze these civic innovation ideas and "
        "allocate budget intelligently.\n\n"
        f"TOTAL AVAILABLE BUDGET: {format_crore(total_budget)}\n"
        f"BATCH: {batch_number}\n\n"
        f"IDEAS:\n{json.dumps(batch, indent=2)}\n\n"
        "ANALYSIS CRITERIA:\n"
        "1. Citizen Impact (40%): How many citizens benefit? Problem severity?\n"
        "2. Feasibility (30%): Technical complexity, resource availability\n"
        "3. Timeline (20%): Urgency and implementation speed\n"
        "4. Innovation (10%): Uniqueness and scalability\n\n"
        "TASK:\n"
        "- Calculate REALISTIC budget for each idea (analyze actual requirements, NOT user estimates)\n"
        "- Assign priority score (0-100)\n"
        "- Provide brief justification (max 100 words)\n\n"
        "OUTPUT ONLY VALID JSON:\n"
        '{\n  "allocations": [\n    {\n      "ideaId": "id",\n      "allocatedBudget": number_in_rupees,\n'
        '      "priorityScore": number_0_to_100,\n      "priority": "High|Medium|Low",\n'
        '      "justification": "brief_reason",\n      "estimatedTimeline": "X months",\n'
        '      "expectedROI": "High|Medium|Low"\n    }\n  ]\n}'
    )


def _normalize_level(value: Any) -> str | None:
    text = coerce_str(value).capitalize()
    return text if text in ALLOCATION_LEVELS else None


def _level_for_score(score: int) -> str:
    if score >= 70:
        return "High"
    if score >= 40:
        return "Medium"
    return "Low"


def parse_scoring_reply(raw_text: str, batch_ids: set[str]) -> List[Dict[str, Any]]:
    """Validate one batch reply; entries that cannot be trusted are dropped."""
    payload = extract_json_object(raw_text)
    entries = payload.get("allocations")
    if not isinstance(entries, list):
        raise ModelResponseError("Scoring reply is missing the allocations list")

    lines: List[Dict[str, Any]] = []
    seen: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        idea_id = coerce_str(entry.get("ideaId"))
        amount = coerce_int(entry.get("allocatedBudget"))
        if idea_id not in batch_ids or idea_id in seen or amount is None:
            current_app.logger.warning("Dropping unusable allocation entry", extra={"idea_ref": idea_id or None})
            continue
        seen.add(idea_id)
        score = coerce_int(entry.get("priorityScore"))
        score = min(max(score if score is not None else 0, 0), 100)
        lines.append(
            {
                "ideaId": idea_id,
                "allocatedBudget": max(amount, 0),
                "priorityScore": score,
                "priority": _normalize_level(entry.get("priority")) or _level_for_score(score),
                "justification": coerce_str(entry.get("justification")),
                "estimatedTimeline": coerce_str(entry.get("estimatedTimeline")) or None,
                "expectedROI": _normalize_level(entry.get("expectedROI")),
            }
        )
    missing = batch_ids - seen
    if missing:
        current_app.logger.warning("Model skipped ideas in batch", extra={"missing_count": len(missing)})
    return lines


def score_batches(model: LanguageModel, ideas: List[Dict[str, Any]], total_budget: int) -> List[Dict[str, Any]]:
    batch_size = max(int(current_app.config.get("BUDGET_BATCH_SIZE", 8)), 1)
    allocations: List[Dict[str, Any]] = []
    claimed: set[str] = set()
    for start in range(0, len(ideas), batch_size):
        batch = ideas[start : start + batch_size]
        batch_number = start // batch_size + 1
        try:
            lines = parse_scoring_reply(
                model.prompt(build_scoring_prompt(batch, total_budget, batch_number)),
                {item["id"] for item in batch},
            )
        except (LanguageModelError, ModelResponseError) as exc:
            if not _fail_open("scoring"):
                current_app.logger.error("Batch scoring failed", extra={"batch_number": batch_number, "error": str(exc)})
                raise
            current_app.logger.warning("Skipping unscored batch", extra={"batch_number": batch_number, "error": str(exc)})
            continue
        for line in lines:
            if line["ideaId"] not in claimed:
                claimed.add(line["ideaId"])
                allocations.append(line)
    if not allocations:
        raise ModelResponseError("Model returned no usable allocations")
    return allocations


def rank_allocations(allocations: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Stable sort, highest priority score first."""
    return sorted(allocations, key=lambda line: line["priorityScore"], reverse=True)


def allocation_cap(total_budget: int, contingency_ratio: str | float = "0.10") -> int:
    ratio = Fraction(str(contingency_ratio))
    return _round_half_up(Fraction(total_budget) * (1 - ratio))


def fit_to_cap(
    allocations: List[Dict[str, Any]],
    total_budget: int,
    contingency_ratio: str | float = "0.10",
    method: str = "nearest",
) -> tuple[List[Dict[str, Any]], int]:
    """Scale allocations down when they exceed the cap; return (lines, allocated total).

    ``nearest`` rounds each share half-up on its own; the allocated total is the
    cap and any drift between it and the lines stays in the reserve.
    ``largest_remainder`` floors every share and hands leftover units to the
    largest fractional parts (earlier lines win ties), so the lines sum to the
    cap exactly.
    """
    cap = allocation_cap(total_budget, contingency_ratio)
    raw_sum = sum(line["allocatedBudget"] for line in allocations)
    if raw_sum <= cap:
        return allocations, raw_sum

    shares = [Fraction(line["allocatedBudget"] * cap, raw_sum) for line in allocations]
    if method == "nearest":
        amounts = [_round_half_up(share) for share in shares]
    else:
        amounts = [int(share) for share in shares]
        leftover = cap - sum(amounts)
        by_remainder = sorted(range(len(shares)), key=lambda i: shares[i] - amounts[i], reverse=True)
        for index in by_remainder[:leftover]:
            amounts[index] += 1

    fitted = [dict(line, allocatedBudget=amount) for line, amount in zip(allocations, amounts)]
    current_app.logger.info(
        "Allocations rescaled to cap",
        extra={"raw_sum": raw_sum, "cap": cap, "rounding": method},
    )
    return fitted, cap


def build_summary_prompt(allocations: List[Dict[str, Any]], titles: Dict[str, str], total_budget: int, allocated: int) -> str:
    counts = {level: sum(1 for a in allocations if a["priority"] == level) for level in ALLOCATION_LEVELS}
    top = "\n".join(
        f"{titles.get(a['ideaId'], a['ideaId'])}: {format_lakh(a['allocatedBudget'])} - {a['priority']}"
        for a in allocations[:3]
    )
    return (
        "Generate a brief executive summary for this budget allocation plan.\n\n"
        f"TOTAL BUDGET: {format_crore(total_budget)}\n"
        f"ALLOCATED: {format_crore(allocated)}\n"
        f"IDEAS ANALYZED: {len(allocations)}\n"
        f"HIGH PRIORITY: {counts['High']}\n"
        f"MEDIUM PRIORITY: {counts['Medium']}\n"
        f"LOW PRIORITY: {counts['Low']}\n\n"
        f"TOP 3 ALLOCATIONS:\n{top}\n\n"
        "Provide:\n1. A 2-3 sentence summary\n2. 3 key recommendations (one line each)\n\n"
        "OUTPUT ONLY VALID JSON:\n"
        '{\n  "summary": "brief_summary",\n  "recommendations": ["rec1", "rec2", "rec3"]\n}'
    )


def fallback_summary(count: int, allocated: int) -> Dict[str, Any]:
    return {
        "summary": f"Analyzed {count} approved ideas with total allocation of {format_crore(allocated)}.",
        "recommendations": list(FALLBACK_RECOMMENDATIONS),
    }


def summarize(model: LanguageModel, allocations: List[Dict[str, Any]], titles: Dict[str, str], total_budget: int, allocated: int) -> Dict[str, Any]:
    try:
        payload = extract_json_object(model.prompt(build_summary_prompt(allocations, titles, total_budget, allocated)))
        summary = coerce_str(payload.get("summary"))
        recommendations = payload.get("recommendations")
        if not summary or not isinstance(recommendations, list):
            raise ModelResponseError("Summary reply is missing summary or recommendations")
        recommendations = [coerce_str(r) for r in recommendations if coerce_str(r)][:3]
        return {"summary": summary, "recommendations": recommendations}
    except (LanguageModelError, ModelResponseError) as exc:
        if not _fail_open("summary"):
            raise
        current_app.logger.warning("Summary generation unavailable; using fallback", extra={"error": str(exc)})
        return fallback_summary(len(allocations), allocated)


def run_budget_planner(total_budget: int, fiscal_year: str, created_by: str, model: LanguageModel | None = None) -> BudgetAllocation:
    """Run the full pipeline and persist a Draft allocation."""
    cfg = current_app.config
    ideas = approved_ideas()
    if not ideas:
        raise BudgetPlannerError("No approved ideas found for budget allocation")

    model = model or get_language_model()
    compact = [shrink_idea(idea) for idea in ideas]
    titles = {idea.id: idea.title for idea in ideas}
    current_app.logger.info(
        "Budget planner started",
        extra={"ideas_count": len(compact), "total_budget": total_budget, "fiscal_year": fiscal_year},
    )

    verdict = check_sufficiency(model, total_budget, compact)
    if not verdict["isSufficient"]:
        minimum = verdict["estimatedMinimumBudget"]
        raise InsufficientBudgetError(
            f"Insufficient Budget: {verdict['message']}",
            data={
                "providedBudget": total_budget,
                "estimatedMinimumBudget": minimum,
                "shortfall": max(minimum - total_budget, 0),
                "ideasCount": len(ideas),
                "recommendation": (
                    f"Please increase the budget to at least {format_crore(minimum)} to implement these "
                    f"{len(ideas)} approved ideas effectively."
                ),
            },
        )

    ranked = rank_allocations(score_batches(model, compact, total_budget))
    fitted, allocated = fit_to_cap(
        ranked,
        total_budget,
        contingency_ratio=cfg.get("BUDGET_CONTINGENCY_RATIO", "0.10"),
        method=cfg.get("BUDGET_RESCALE_ROUNDING", "nearest"),
    )
    narrative = summarize(model, fitted, titles, total_budget, allocated)

    allocation = BudgetAllocation(
        total_budget=total_budget,
        allocated_budget=allocated,
        contingency_reserve=total_budget - allocated,
        summary=narrative["summary"],
        recommendations=narrative["recommendations"],
        status="Draft",
        fiscal_year=fiscal_year,
        analyzed_count=len(ideas),
        created_by=created_by,
    )
    for position, line in enumerate(fitted):
        allocation.lines.append(_line_from_dict(position, line))
    db.session.add(allocation)
    db.session.commit()
    current_app.logger.info(
        "Budget allocation drafted",
        extra={"allocation_id": allocation.id, "allocated": allocated, "lines": len(fitted)},
    )
    return allocation


def _line_from_dict(position: int, line: Dict[str, Any]) -> BudgetAllocationLine:
    return BudgetAllocationLine(
        position=position,
        idea_id=line["ideaId"],
        allocated_budget=line["allocatedBudget"],
        priority_score=line["priorityScore"],
        priority=line["priority"],
        justification=line.get("justification") or "",
        estimated_timeline=line.get("estimatedTimeline"),
        expected_roi=line.get("expectedROI"),
    )


def get_allocation(allocation_id: str, refresh: bool = False) -> BudgetAllocation:
    allocation = db.session.get(BudgetAllocation, allocation_id, populate_existing=refresh)
    if allocation is None:
        raise AllocationNotFoundError("Budget allocation not found")
    return allocation


def _validated_edit_line(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise BudgetPlannerError("Each allocation must be an object")
    idea_id = coerce_str(raw.get("ideaId") or raw.get("idea"))
    if not idea_id or db.session.get(Idea, idea_id) is None:
        raise BudgetPlannerError(f"Unknown idea in allocation: {idea_id or 'missing'}")
    amount = coerce_int(raw.get("allocatedBudget"))
    if amount is None or amount < 0:
        raise BudgetPlannerError("allocatedBudget must be a non-negative number")
    score = coerce_int(raw.get("priorityScore"))
    if score is None or not 0 <= score <= 100:
        raise BudgetPlannerError("priorityScore must be between 0 and 100")
    priority = _normalize_level(raw.get("priority"))
    if priority is None:
        raise BudgetPlannerError("priority must be High, Medium or Low")
    return {
        "ideaId": idea_id,
        "allocatedBudget": amount,
        "priorityScore": score,
        "priority": priority,
        "justification": coerce_str(raw.get("justification")),
        "estimatedTimeline": coerce_str(raw.get("estimatedTimeline")) or None,
        "expectedROI": _normalize_level(raw.get("expectedROI")),
    }


def update_allocation(allocation_id: str, payload: Dict[str, Any]) -> BudgetAllocation:
    allocation = get_allocation(allocation_id)
    if allocation.status != "Draft":
        raise AllocationStateError(f"Cannot edit {allocation.status.lower()} budget allocation")

    if "allocations" in payload:
        raw_lines = payload.get("allocations")
        if not isinstance(raw_lines, list):
            raise BudgetPlannerError("allocations must be a list")
        lines = [_validated_edit_line(raw) for raw in raw_lines]
        if len({line["ideaId"] for line in lines}) != len(lines):
            raise BudgetPlannerError("An idea can appear only once in an allocation")
        allocated = sum(line["allocatedBudget"] for line in lines)
        if allocated > allocation.total_budget:
            raise BudgetPlannerError("Allocated budget exceeds total budget")
        allocation.lines.clear()
        db.session.flush()
        for position, line in enumerate(lines):
            allocation.lines.append(_line_from_dict(position, line))
        allocation.allocated_budget = allocated
        allocation.contingency_reserve = allocation.total_budget - allocated

    if "summary" in payload:
        allocation.summary = coerce_str(payload.get("summary"))
    if "recommendations" in payload:
        recommendations = payload.get("recommendations")
        if not isinstance(recommendations, list):
            raise BudgetPlannerError("recommendations must be a list")
        allocation.recommendations = [coerce_str(r) for r in recommendations if coerce_str(r)]

    db.session.commit()
    return allocation


def _guarded_transition(allocation_id: str, values: Dict[str, Any]) -> bool:
    result = db.session.execute(
        update(BudgetAllocation)
        .where(BudgetAllocation.id == allocation_id, BudgetAllocation.status == "Draft")
        .values(**values, updated_at=datetime.utcnow())
    )
    db.session.commit()
    return result.rowcount == 1


def _stamp_line(allocation: BudgetAllocation, line: BudgetAllocationLine, approver_id: str) -> str:
    """Stamp one idea and queue its notification in a single commit.

    Returns ``"funded"`` or ``"skipped"`` (already stamped by this plan).
    """
    idea = db.session.get(Idea, line.idea_id, populate_existing=True)
    if idea is None:
        raise LookupError("Idea not found")
    if idea.allocation_plan_id == allocation.id:
        return "skipped"

    idea.allocated_amount = line.allocated_budget
    idea.allocation_plan_id = allocation.id
    idea.allocated_at = datetime.utcnow()
    idea.allocated_by = approver_id
    idea.allocation_priority_score = line.priority_score
    idea.allocation_justification = line.justification
    mark_funded(idea)
    db.session.add(
        build_notification(
            idea.submitted_by,
            approver_id,
            "Achievement",
            f'Your idea "{idea.title}" has been allocated {format_lakh(line.allocated_budget)} in budget!',
            idea_id=idea.id,
        )
    )
    db.session.commit()
    return "funded"


def stamp_allocation_ideas(allocation: BudgetAllocation, approver_id: str) -> Dict[str, List[Any]]:
    outcome: Dict[str, List[Any]] = {"fundedIdeas": [], "skippedIdeas": [], "failedIdeas": []}
    for line in list(allocation.lines):
        idea_id = line.idea_id
        try:
            result = _stamp_line(allocation, line, approver_id)
        except (SQLAlchemyError, LookupError) as exc:
            db.session.rollback()
            current_app.logger.error(
                "Failed to stamp funded idea",
                extra={"allocation_id": allocation.id, "idea_id": idea_id, "error": str(exc)},
            )
            outcome["failedIdeas"].append({"ideaId": idea_id, "reason": str(exc) or exc.__class__.__name__})
            continue
        outcome["fundedIdeas" if result == "funded" else "skippedIdeas"].append(idea_id)
    return outcome


def approve_allocation(allocation_id: str, approver_id: str) -> Dict[str, Any]:
    get_allocation(allocation_id)
    if not _guarded_transition(allocation_id, {"status": "Approved", "approved_by": approver_id, "approved_at": datetime.utcnow()}):
        current = get_allocation(allocation_id, refresh=True)
        raise AllocationStateError(f"Budget allocation already {current.status.lower()}")

    allocation = get_allocation(allocation_id, refresh=True)
    outcome = stamp_allocation_ideas(allocation, approver_id)
    broadcast_safely(
        approver_id,
        "citizen",
        "AdminAlert",
        f"Government has approved budget allocation for {len(allocation.lines)} innovative ideas! Check the Innovation Hub.",
    )
    current_app.logger.info(
        "Budget allocation approved",
        extra={
            "allocation_id": allocation_id,
            "funded": len(outcome["fundedIdeas"]),
            "failed": len(outcome["failedIdeas"]),
        },
    )
    return {"allocation": allocation, **outcome}


def restamp_allocation(allocation_id: str, approver_id: str) -> Dict[str, Any]:
    allocation = get_allocation(allocation_id, refresh=True)
    if allocation.status != "Approved":
        raise AllocationStateError("Only approved budget allocations can be re-stamped")
    outcome = stamp_allocation_ideas(allocation, allocation.approved_by or approver_id)
    return {"allocation": allocation, **outcome}


def reject_allocation(allocation_id: str) -> BudgetAllocation:
    get_allocation(allocation_id)
    if not _guarded_transition(allocation_id, {"status": "Rejected", "rejected_at": datetime.utcnow()}):
        current = get_allocation(allocation_id, refresh=True)
        raise AllocationStateError(f"Budget allocation already {current.status.lower()}")
    return get_allocation(allocation_id, refresh=True)
