"""
Approval workflow HTTP API tests.

Tests cover:
  - Workflow initialization (201 with chain, 200 without, 404, 409)
  - Decisions through the API, including validation and conflict retry
  - Chain, pending queue and statistics endpoints
  - Approval rule CRUD and stored rules replacing the built-in set
  - Health probes and request-id propagation
"""

from decimal import Decimal

import pytest
from sqlalchemy import update

from airops.models import db
from airops.models.work_request import WorkRequest
from airops.services import decision_processor


def _init(client, wr_id, **body):
    return client.post(f"/api/v1/work-requests/{wr_id}/approval-workflow", json=body)


def _decide(client, wr_id, approver_id, decision="approve", **body):
    return client.post(
        f"/api/v1/work-requests/{wr_id}/approvals/decision",
        json={"approver_id": approver_id, "decision": decision, **body},
    )


@pytest.fixture()
def in_review(approvers, make_work_request, client):
    wr = make_work_request(priority="high", estimated_total_cost=Decimal("15000"))
    res = _init(client, wr.id, organization_id="org-1", user_id="planner-1")
    assert res.status_code == 201
    return wr.id


# ═════════════════════════════════════════════════════════════════════════
# WORKFLOW
# ═════════════════════════════════════════════════════════════════════════

class TestInitializeAPI:
    def test_creates_chain(self, client, approvers, make_work_request):
        wr = make_work_request(priority="critical")
        res = _init(client, wr.id, user_id="planner-1")
        assert res.status_code == 201
        data = res.get_json()
        assert data["approval_required"] is True
        assert data["matched_rules"] == ["high-priority-rule"]
        assert data["work_request"]["status"] == "under_review"
        assert len(data["entries"]) == 2

    def test_no_rule_matched(self, client, approvers, make_work_request):
        wr = make_work_request()
        res = _init(client, wr.id)
        assert res.status_code == 200
        assert res.get_json()["approval_required"] is False

    def test_actor_from_header(self, client, approvers, make_work_request):
        wr = make_work_request(priority="high")
        client.post(
            f"/api/v1/work-requests/{wr.id}/approval-workflow",
            headers={"X-User": "planner-7"},
        )
        assert db.session.get(WorkRequest, wr.id).updated_by == "planner-7"

    def test_unknown_request(self, client):
        res = _init(client, 999)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_duplicate(self, client, in_review):
        res = _init(client, in_review)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_unresolvable_approver(self, client, make_work_request):
        # Empty directory: the built-in approvers cannot be resolved
        wr = make_work_request(priority="high")
        res = _init(client, wr.id)
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_DIRECTORY_LOOKUP"

    @pytest.mark.parametrize("body", [[1, 2], "org-1", {"user_id": 5}, {"organization_id": 5}])
    def test_wrongly_typed_body(self, client, approvers, make_work_request, body):
        wr = make_work_request(priority="high")
        res = client.post(f"/api/v1/work-requests/{wr.id}/approval-workflow", json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert db.session.get(WorkRequest, wr.id).status == "submitted"


class TestDecisionAPI:
    def test_full_approval(self, client, in_review):
        assert _decide(client, in_review, "manager-1").status_code == 200
        res = _decide(client, in_review, "manager-2")
        assert res.get_json()["next_approver"]["approver_id"] == "finance-manager"

        res = _decide(client, in_review, "finance-manager", comments="Within budget")
        assert res.status_code == 200
        data = res.get_json()
        assert data["work_request_status"] == "approved"
        assert data["entry"]["comments"] == "Within budget"

    def test_reject(self, client, in_review):
        res = _decide(client, in_review, "manager-1", "reject", comments="Not this quarter")
        assert res.status_code == 200
        assert res.get_json()["work_request_status"] == "rejected"

        res = _decide(client, in_review, "manager-2")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_NO_PENDING_APPROVAL"

    def test_delegate(self, client, in_review):
        res = _decide(client, in_review, "manager-1", "delegate", delegated_to="deputy-1")
        assert res.status_code == 200
        assert res.get_json()["next_approver"]["approver_id"] == "deputy-1"

    def test_missing_approver(self, client, in_review):
        res = client.post(
            f"/api/v1/work-requests/{in_review}/approvals/decision",
            json={"decision": "approve"},
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_invalid_decision(self, client, in_review):
        res = _decide(client, in_review, "manager-1", "escalate")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_delegate_without_target(self, client, in_review):
        res = _decide(client, in_review, "manager-1", "delegate")
        assert res.status_code == 400

    @pytest.mark.parametrize("body", [
        {"approver_id": 7, "decision": "approve"},
        {"approver_id": ["manager-1"], "decision": "approve"},
        {"approver_id": "manager-1", "decision": 1},
        {"approver_id": "manager-1", "decision": "approve", "comments": 42},
        {"approver_id": "manager-1", "decision": "delegate", "delegated_to": {"id": "deputy-1"}},
        ["manager-1", "approve"],
        "approve",
    ])
    def test_wrongly_typed_body(self, client, in_review, body):
        res = client.post(f"/api/v1/work-requests/{in_review}/approvals/decision", json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        chain = client.get(f"/api/v1/work-requests/{in_review}/approval-chain").get_json()
        assert {e["status"] for e in chain["entries"]} == {"pending"}

    def test_out_of_turn(self, client, in_review):
        res = _decide(client, in_review, "finance-manager")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_NO_PENDING_APPROVAL"

    def test_unknown_request(self, client, approvers):
        res = _decide(client, 999, "manager-1")
        assert res.status_code == 404


class TestConflictRetry:
    def _race(self, monkeypatch, wr_id, times):
        original = decision_processor.find_by_stage
        calls = {"n": 0}

        def racing_find_by_stage(work_request_id, sequence_order):
            if calls["n"] < times:
                calls["n"] += 1
                db.session.execute(
                    update(WorkRequest)
                    .where(WorkRequest.id == wr_id)
                    .values(version=WorkRequest.version + 1)
                )
            return original(work_request_id, sequence_order)

        monkeypatch.setattr(decision_processor, "find_by_stage", racing_find_by_stage)
        return calls

    def test_conflict_retried_transparently(self, client, in_review, monkeypatch):
        calls = self._race(monkeypatch, in_review, times=1)
        res = _decide(client, in_review, "manager-1")
        assert res.status_code == 200
        assert calls["n"] == 1
        assert res.get_json()["entry"]["status"] == "approved"

    def test_persistent_conflict_returns_409(self, client, in_review, monkeypatch):
        calls = self._race(monkeypatch, in_review, times=100)
        res = _decide(client, in_review, "manager-1")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_VERSION"
        assert body["details"]["retryable"] is True
        # One attempt plus APPROVAL_CONFLICT_RETRIES retries
        assert calls["n"] == 4


# ═════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════

class TestQueryAPI:
    def test_chain(self, client, in_review):
        res = client.get(f"/api/v1/work-requests/{in_review}/approval-chain")
        assert res.status_code == 200
        data = res.get_json()
        assert data["active_stage"] == 1
        assert [e["approver_id"] for e in data["entries"]] == [
            "manager-1", "manager-2", "finance-manager",
        ]

    def test_chain_unknown_request(self, client):
        assert client.get("/api/v1/work-requests/999/approval-chain").status_code == 404

    def test_pending(self, client, in_review):
        res = client.get("/api/v1/organizations/org-1/approvals/pending")
        data = res.get_json()
        assert data["total"] == 3
        assert [r["actionable"] for r in data["items"]] == [True, True, False]

    def test_pending_for_approver(self, client, in_review):
        res = client.get("/api/v1/organizations/org-1/approvals/pending?approver_id=manager-2")
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"][0]["work_request"]["id"] == in_review

    def test_statistics(self, client, in_review):
        _decide(client, in_review, "manager-1")
        res = client.get("/api/v1/organizations/org-1/approvals/statistics")
        assert res.status_code == 200
        data = res.get_json()
        assert data["total"] == 3
        assert data["by_status"] == {"approved": 1, "pending": 2}
        assert data["average_approval_hours"] is not None

    def test_statistics_date_bounds(self, client, in_review):
        res = client.get(
            "/api/v1/organizations/org-1/approvals/statistics?start=2000-01-01&end=2000-12-31"
        )
        assert res.get_json()["total"] == 0

    def test_statistics_bad_date(self, client):
        res = client.get("/api/v1/organizations/org-1/approvals/statistics?start=yesterday")
        assert res.status_code == 400

    def test_statistics_inverted_range(self, client):
        res = client.get(
            "/api/v1/organizations/org-1/approvals/statistics?start=2026-02-01&end=2026-01-01"
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


# ═════════════════════════════════════════════════════════════════════════
# RULE CONFIGURATION
# ═════════════════════════════════════════════════════════════════════════

RUNWAY_RULE = {
    "id": "runway-rule",
    "name": "Runway works",
    "priority": 5,
    "conditions": [{"field": "asset_type", "operator": "equals", "value": "runway"}],
    "steps": [
        {"level": "elevated", "approvers": ["manager-1"], "order": 1, "timeout_hours": 12},
        {"level": "executive", "approvers": ["finance-manager"], "order": 2},
    ],
}


class TestRuleAPI:
    def _create(self, client, org="org-2", body=None):
        return client.post(
            f"/api/v1/organizations/{org}/approval-rules",
            json=body or RUNWAY_RULE,
            headers={"X-User": "admin-1"},
        )

    def test_create_and_list(self, client):
        res = self._create(client)
        assert res.status_code == 201
        rule = res.get_json()
        assert rule["rule_key"] == "runway-rule"
        assert rule["created_by"] == "admin-1"
        assert rule["steps"][0]["timeout_hours"] == 12

        res = client.get("/api/v1/organizations/org-2/approval-rules")
        assert [r["rule_key"] for r in res.get_json()] == ["runway-rule"]
        assert client.get("/api/v1/organizations/org-1/approval-rules").get_json() == []

    def test_duplicate_key(self, client):
        self._create(client)
        res = self._create(client)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_invalid_rule(self, client):
        res = self._create(client, body={**RUNWAY_RULE, "steps": []})
        assert res.status_code == 400
        res = self._create(client, body={
            **RUNWAY_RULE,
            "conditions": [{"field": "asset_type", "operator": "like", "value": "run"}],
        })
        assert res.status_code == 400

    def test_update(self, client):
        rule_id = self._create(client).get_json()["id"]
        res = client.put(f"/api/v1/approval-rules/{rule_id}", json={"priority": 1, "is_active": False})
        assert res.status_code == 200
        data = res.get_json()
        assert data["priority"] == 1
        assert data["is_active"] is False
        assert data["rule_key"] == "runway-rule"

    def test_update_invalid(self, client):
        rule_id = self._create(client).get_json()["id"]
        res = client.put(f"/api/v1/approval-rules/{rule_id}", json={"steps": [{"level": "board"}]})
        assert res.status_code == 400

    @pytest.mark.parametrize("body", [
        {"priority": "urgent"},
        {"name": 9},
        {"steps": [{"level": "standard", "approvers": ["manager-1"], "order": "first"}]},
        ["runway-rule"],
    ])
    def test_update_wrongly_typed(self, client, body):
        rule_id = self._create(client).get_json()["id"]
        res = client.put(f"/api/v1/approval-rules/{rule_id}", json=body)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        rules = client.get("/api/v1/organizations/org-2/approval-rules").get_json()
        assert rules[0]["priority"] == 5

    @pytest.mark.parametrize("overrides", [
        {"id": 5},
        {"priority": "urgent"},
        {"steps": [{"level": "standard", "approvers": ["manager-1"], "required_approvals": "two"}]},
        {"conditions": [{"field": ["asset_type"], "operator": "equals", "value": "runway"}]},
    ])
    def test_create_wrongly_typed(self, client, overrides):
        res = self._create(client, body={**RUNWAY_RULE, **overrides})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"
        assert client.get("/api/v1/organizations/org-2/approval-rules").get_json() == []

    def test_create_requires_object(self, client):
        res = client.post("/api/v1/organizations/org-2/approval-rules", json=[RUNWAY_RULE])
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_delete(self, client):
        rule_id = self._create(client).get_json()["id"]
        res = client.delete(f"/api/v1/approval-rules/{rule_id}")
        assert res.status_code == 200
        assert res.get_json() == {"deleted": rule_id}
        assert client.delete(f"/api/v1/approval-rules/{rule_id}").status_code == 404
        assert client.put(f"/api/v1/approval-rules/{rule_id}", json={}).status_code == 404

    def test_stored_rules_drive_initialization(self, client, approvers, make_work_request):
        self._create(client)
        # Matches the built-in high-priority rule, which org-2 no longer uses
        high = make_work_request(organization_id="org-2", priority="high")
        runway = make_work_request(organization_id="org-2", asset_type="runway", asset_code="RWY-09")

        assert _init(client, high.id).status_code == 200
        res = _init(client, runway.id)
        assert res.status_code == 201
        data = res.get_json()
        assert data["matched_rules"] == ["runway-rule"]
        assert [(e["approver_id"], e["sequence_order"]) for e in data["entries"]] == [
            ("manager-1", 1), ("finance-manager", 2),
        ]


# ═════════════════════════════════════════════════════════════════════════
# HEALTH / PLUMBING
# ═════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["status"] == "ok"
        jobs = [j["job_name"] for j in data["checks"]["scheduler"]["jobs"]]
        assert "approval_timeout_scan" in jobs

    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "req-42"})
        assert res.headers["X-Request-ID"] == "req-42"
        assert "X-Request-Duration-Ms" in res.headers

    def test_unknown_route(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
