"""
Tests for utils/budget_planner.py and routes/agents.py.

The language model is scripted through ``fake_model``; every analyze run
consumes one sufficiency reply, one scoring reply per batch of eight ideas
and one summary reply, in that order.
"""
import pytest

from conftest import score_every_idea
from extensions import db
from models import BudgetAllocation, Idea, Notification
from utils.ai_client import LanguageModelError, ModelResponseError
from utils.budget_planner import (
    allocation_cap,
    check_sufficiency,
    fit_to_cap,
    parse_scoring_reply,
    parse_sufficiency_reply,
)

ANALYZE_URL = "/api/agents/budget-planner/analyze"
SUFFICIENT = {"isSufficient": True, "estimatedMinimumBudget": 50_000_000, "message": "Budget is adequate"}
SUMMARY = {
    "summary": "Ten civic projects funded with a healthy reserve.",
    "recommendations": ["Start with lighting", "Track spending monthly", "Review in Q3"],
}


def _line(idea_id, amount, score=50):
    return {
        "ideaId": idea_id,
        "allocatedBudget": amount,
        "priorityScore": score,
        "priority": "Medium",
        "justification": "",
        "estimatedTimeline": None,
        "expectedROI": None,
    }


@pytest.fixture()
def approved_ideas(citizen, make_idea):
    return [make_idea(citizen, status="Approved") for _ in range(10)]


@pytest.fixture()
def draft_plan(client, admin, citizen, make_idea, fake_model):
    ideas = [make_idea(citizen, status="Approved") for _ in range(2)]
    fake_model.queue(SUFFICIENT, score_every_idea(4_000_000), SUMMARY)
    resp = client.post(ANALYZE_URL, json={"totalBudget": 10_000_000, "fiscalYear": "2025-26"}, headers=admin.headers)
    assert resp.status_code == 200
    return {"id": resp.get_json()["data"]["id"], "ideas": ideas}


class TestAnalyze:
    def test_ten_ideas_are_rescaled_under_the_reserve(self, app, client, admin, approved_ideas, fake_model):
        fake_model.queue(SUFFICIENT, score_every_idea(15_000_000), score_every_idea(15_000_000), SUMMARY)
        resp = client.post(
            ANALYZE_URL, json={"totalBudget": 100_000_000, "fiscalYear": "2025-26"}, headers=admin.headers
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["message"] == "Budget analysis completed successfully"

        plan = body["data"]
        assert plan["status"] == "Draft"
        assert plan["allocatedBudget"] == 90_000_000
        assert plan["contingencyReserve"] == 10_000_000
        assert plan["analyzedCount"] == 10
        assert [line["allocatedBudget"] for line in plan["allocations"]] == [9_000_000] * 10
        assert sum(line["allocatedBudget"] for line in plan["allocations"]) == plan["allocatedBudget"]
        assert {line["idea"]["id"] for line in plan["allocations"]} == set(approved_ideas)
        assert plan["summary"] == SUMMARY["summary"]
        assert len(fake_model.prompts) == 4
        assert "SAMPLE IDEAS (first 5)" in fake_model.prompts[0]

        with app.app_context():
            assert BudgetAllocation.query.count() == 1
            assert Idea.query.filter_by(status="Approved").count() == 10

    def test_insufficient_budget_persists_nothing(self, app, client, admin, approved_ideas, fake_model):
        fake_model.queue({"isSufficient": False, "estimatedMinimumBudget": 130_000_000, "message": "Too many ideas"})
        resp = client.post(ANALYZE_URL, json={"totalBudget": 100_000_000}, headers=admin.headers)
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["insufficientBudget"] is True
        assert body["message"] == "Insufficient Budget: Too many ideas"
        assert body["data"]["shortfall"] == 30_000_000
        assert body["data"]["ideasCount"] == 10
        assert "₹13.00 Crore" in body["data"]["recommendation"]
        with app.app_context():
            assert BudgetAllocation.query.count() == 0

    def test_malformed_scoring_reply_persists_nothing(self, app, client, admin, approved_ideas, fake_model):
        fake_model.queue(SUFFICIENT, "I cannot produce JSON today")
        resp = client.post(ANALYZE_URL, json={"totalBudget": 100_000_000}, headers=admin.headers)
        assert resp.status_code == 500
        assert resp.get_json()["message"] == "Failed to analyze budget"
        with app.app_context():
            assert BudgetAllocation.query.count() == 0

    def test_failed_later_batch_discards_earlier_batches(self, app, client, admin, approved_ideas, fake_model):
        fake_model.queue(SUFFICIENT, score_every_idea(15_000_000), "not json")
        resp = client.post(ANALYZE_URL, json={"totalBudget": 100_000_000}, headers=admin.headers)
        assert resp.status_code == 500
        assert len(fake_model.prompts) == 3
        with app.app_context():
            assert BudgetAllocation.query.count() == 0
            assert Idea.query.filter_by(status="Approved").count() == 10

    def test_estimate_below_budget_reports_no_negative_shortfall(self, client, admin, approved_ideas, fake_model):
        fake_model.queue({"isSufficient": False, "estimatedMinimumBudget": 80_000_000, "message": "Costs look high"})
        resp = client.post(ANALYZE_URL, json={"totalBudget": 100_000_000}, headers=admin.headers)
        assert resp.status_code == 400
        assert resp.get_json()["data"]["shortfall"] == 0

    def test_summary_failure_falls_back(self, client, admin, citizen, make_idea, fake_model):
        make_idea(citizen, status="Approved")
        fake_model.queue(SUFFICIENT, score_every_idea(1_000_000), LanguageModelError("overloaded"))
        resp = client.post(ANALYZE_URL, json={"totalBudget": 10_000_000}, headers=admin.headers)
        plan = resp.get_json()["data"]
        assert plan["summary"] == "Analyzed 1 approved ideas with total allocation of ₹0.10 Crore."
        assert plan["recommendations"][0] == "Prioritize high-impact projects first"
        assert plan["allocatedBudget"] == 1_000_000
        assert plan["contingencyReserve"] == 9_000_000

    def test_no_approved_ideas(self, client, admin, citizen, make_idea):
        make_idea(citizen, status="Submitted")
        resp = client.post(ANALYZE_URL, json={"totalBudget": 10_000_000}, headers=admin.headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "No approved ideas found for budget allocation"

    @pytest.mark.parametrize("value", [0, -5, 10.5, "abc", True, None])
    def test_invalid_total_budget(self, client, admin, value):
        resp = client.post(ANALYZE_URL, json={"totalBudget": value}, headers=admin.headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Valid total budget is required"

    def test_citizen_forbidden(self, client, citizen):
        resp = client.post(ANALYZE_URL, json={"totalBudget": 10_000_000}, headers=citizen.headers)
        assert resp.status_code == 403


class TestApproval:
    def test_approve_funds_ideas_and_notifies_once(self, app, client, admin, citizen, draft_plan):
        url = f"/api/agents/budget-planner/{draft_plan['id']}/approve"
        resp = client.post(url, headers=admin.headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["allocation"]["status"] == "Approved"
        assert sorted(data["fundedIdeas"]) == sorted(draft_plan["ideas"])
        assert data["failedIdeas"] == []

        with app.app_context():
            for idea_id in draft_plan["ideas"]:
                idea = db.session.get(Idea, idea_id)
                assert idea.status == "Funded"
                assert idea.allocation_plan_id == draft_plan["id"]
                assert idea.allocated_amount == 4_000_000
            achievements = Notification.query.filter_by(recipient_id=citizen.id, type="Achievement").all()
            assert len(achievements) == 2
            assert "₹40.00 Lakh" in achievements[0].message
            assert Notification.query.filter_by(type="AdminAlert").count() == 1

        again = client.post(url, headers=admin.headers)
        assert again.status_code == 400
        assert again.get_json()["message"] == "Budget allocation already approved"
        with app.app_context():
            assert Notification.query.filter_by(type="Achievement").count() == 2
            assert Notification.query.filter_by(type="AdminAlert").count() == 1

    def test_restamp_repairs_missing_idea(self, app, client, admin, draft_plan):
        client.post(f"/api/agents/budget-planner/{draft_plan['id']}/approve", headers=admin.headers)
        broken_id = draft_plan["ideas"][0]
        with app.app_context():
            idea = db.session.get(Idea, broken_id)
            idea.status = "Approved"
            idea.allocation_plan_id = None
            db.session.commit()

        resp = client.post(f"/api/agents/budget-planner/{draft_plan['id']}/restamp", headers=admin.headers)
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["fundedIdeas"] == [broken_id]
        assert data["skippedIdeas"] == [draft_plan["ideas"][1]]
        with app.app_context():
            assert db.session.get(Idea, broken_id).status == "Funded"

    def test_restamp_requires_approved_plan(self, client, admin, draft_plan):
        resp = client.post(f"/api/agents/budget-planner/{draft_plan['id']}/restamp", headers=admin.headers)
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Only approved budget allocations can be re-stamped"

    def test_reject(self, client, admin, draft_plan):
        url = f"/api/agents/budget-planner/{draft_plan['id']}/reject"
        resp = client.post(url, headers=admin.headers)
        assert resp.get_json()["data"]["status"] == "Rejected"
        again = client.post(url, headers=admin.headers)
        assert again.status_code == 400
        assert again.get_json()["message"] == "Budget allocation already rejected"

        approve = client.post(f"/api/agents/budget-planner/{draft_plan['id']}/approve", headers=admin.headers)
        assert approve.status_code == 400

    def test_unknown_plan(self, client, admin):
        resp = client.get("/api/agents/budget-planner/missing", headers=admin.headers)
        assert resp.status_code == 404
        assert resp.get_json()["message"] == "Budget allocation not found"


class TestEditing:
    def test_edit_recomputes_totals(self, client, admin, draft_plan):
        first, second = draft_plan["ideas"]
        resp = client.put(
            f"/api/agents/budget-planner/{draft_plan['id']}",
            json={
                "allocations": [
                    {"ideaId": first, "allocatedBudget": 6_000_000, "priorityScore": 90, "priority": "High"},
                    {"ideaId": second, "allocatedBudget": 2_500_000, "priorityScore": 30, "priority": "low"},
                ],
                "summary": "Edited by finance",
            },
            headers=admin.headers,
        )
        assert resp.status_code == 200
        plan = resp.get_json()["data"]
        assert plan["allocatedBudget"] == 8_500_000
        assert plan["contingencyReserve"] == 1_500_000
        assert [line["priority"] for line in plan["allocations"]] == ["High", "Low"]
        assert plan["summary"] == "Edited by finance"

    def test_edit_cannot_exceed_total(self, client, admin, draft_plan):
        first, _ = draft_plan["ideas"]
        resp = client.put(
            f"/api/agents/budget-planner/{draft_plan['id']}",
            json={"allocations": [{"ideaId": first, "allocatedBudget": 20_000_000, "priorityScore": 90, "priority": "High"}]},
            headers=admin.headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Allocated budget exceeds total budget"

    def test_edit_unknown_idea(self, client, admin, draft_plan):
        resp = client.put(
            f"/api/agents/budget-planner/{draft_plan['id']}",
            json={"allocations": [{"ideaId": "ghost", "allocatedBudget": 1, "priorityScore": 1, "priority": "Low"}]},
            headers=admin.headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Unknown idea in allocation: ghost"

    def test_approved_plan_is_read_only(self, client, admin, draft_plan):
        client.post(f"/api/agents/budget-planner/{draft_plan['id']}/approve", headers=admin.headers)
        resp = client.put(
            f"/api/agents/budget-planner/{draft_plan['id']}", json={"summary": "Too late"}, headers=admin.headers
        )
        assert resp.status_code == 400
        assert resp.get_json()["message"] == "Cannot edit approved budget allocation"


class TestReport:
    def test_pdf_download(self, client, admin, draft_plan):
        resp = client.get(f"/api/agents/budget-planner/{draft_plan['id']}/pdf", headers=admin.headers)
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")
        assert 'filename="Budget_Allocation_2025-26_' in resp.headers["Content-Disposition"]

    def test_listing(self, client, admin, draft_plan):
        plans = client.get("/api/agents/budget-planner", headers=admin.headers).get_json()["data"]
        assert [p["id"] for p in plans] == [draft_plan["id"]]


class TestCapArithmetic:
    def test_cap_rounds_half_up(self):
        assert allocation_cap(100_000_000, "0.10") == 90_000_000
        assert allocation_cap(5, "0.10") == 5

    def test_under_cap_is_untouched(self, app):
        lines = [_line("a", 30), _line("b", 40)]
        with app.app_context():
            fitted, allocated = fit_to_cap(lines, 100, "0.10")
        assert fitted == lines
        assert allocated == 70

    def test_largest_remainder_hits_cap_exactly(self, app):
        lines = [_line("a", 1), _line("b", 1), _line("c", 1)]
        with app.app_context():
            fitted, allocated = fit_to_cap(lines, 2, "0", method="largest_remainder")
        assert [line["allocatedBudget"] for line in fitted] == [1, 1, 0]
        assert allocated == 2

    def test_nearest_rounding_keeps_cap_as_total(self, app):
        lines = [_line("a", 10), _line("b", 10), _line("c", 10)]
        with app.app_context():
            fitted, allocated = fit_to_cap(lines, 20, "0")
        assert [line["allocatedBudget"] for line in fitted] == [7, 7, 7]
        assert allocated == 20

    def test_default_rounding_is_per_line_nearest(self, app):
        lines = [_line("a", 4), _line("b", 4), _line("c", 2)]
        assert app.config["BUDGET_RESCALE_ROUNDING"] == "nearest"
        with app.app_context():
            nearest, nearest_total = fit_to_cap(lines, 10, "0.10")
            remainder, remainder_total = fit_to_cap(lines, 10, "0.10", method="largest_remainder")
        assert [line["allocatedBudget"] for line in nearest] == [4, 4, 2]
        assert [line["allocatedBudget"] for line in remainder] == [4, 3, 2]
        assert nearest_total == remainder_total == 9

    def test_rescale_preserves_order_and_fields(self, app):
        lines = [_line("a", 600, score=90), _line("b", 400, score=10)]
        with app.app_context():
            fitted, allocated = fit_to_cap(lines, 500, "0.10")
        assert [(line["ideaId"], line["allocatedBudget"]) for line in fitted] == [("a", 270), ("b", 180)]
        assert fitted[0]["priorityScore"] == 90
        assert allocated == 450


class TestReplyParsing:
    def test_scoring_reply_is_sanitized(self, app):
        raw = """```json
        {"allocations": [
            {"ideaId": "a", "allocatedBudget": "1500000.4", "priorityScore": 150, "priority": "high", "expectedROI": "huge"},
            {"ideaId": "a", "allocatedBudget": 10, "priorityScore": 10},
            {"ideaId": "zzz", "allocatedBudget": 10, "priorityScore": 10},
            {"ideaId": "b", "priorityScore": 10},
            {"ideaId": "c", "allocatedBudget": 200, "priorityScore": 55, "priority": "urgent"}
        ]}
        ```"""
        with app.app_context():
            lines = parse_scoring_reply(raw, {"a", "b", "c"})
        assert [line["ideaId"] for line in lines] == ["a", "c"]
        assert lines[0]["allocatedBudget"] == 1_500_000
        assert lines[0]["priorityScore"] == 100
        assert lines[0]["priority"] == "High"
        assert lines[0]["expectedROI"] is None
        assert lines[1]["priority"] == "Medium"

    def test_scoring_reply_without_list(self, app):
        with app.app_context():
            with pytest.raises(ModelResponseError):
                parse_scoring_reply('{"allocations": "none"}', {"a"})

    def test_insufficient_verdict_needs_estimate(self):
        with pytest.raises(ModelResponseError):
            parse_sufficiency_reply('{"isSufficient": false, "message": "no"}')

    def test_sufficiency_accepts_prose_around_json(self):
        verdict = parse_sufficiency_reply('Here you go: {"isSufficient": "true", "message": "fine"} Thanks!')
        assert verdict["isSufficient"] is True

    def test_sufficiency_fails_open_by_default(self, app, fake_model):
        fake_model.queue(LanguageModelError("down"))
        with app.app_context():
            verdict = check_sufficiency(fake_model, 1_000, [])
        assert verdict["isSufficient"] is True
        assert verdict["estimatedMinimumBudget"] == 1_000

    def test_sufficiency_can_fail_closed(self, app, fake_model):
        app.config["BUDGET_FAIL_OPEN"] = {"sufficiency": False, "scoring": False, "summary": True}
        fake_model.queue("not json")
        with app.app_context():
            with pytest.raises(ModelResponseError):
                check_sufficiency(fake_model, 1_000, [])
