"""
API tests - FastAPI routes over a per-test database.
"""

from contextlib import ExitStack

import pytest
from fastapi.testclient import TestClient

from governance.agents.advisor import BaseAdvisor
from governance.agents.mock_advisor import MockAdvisor
from governance.api import main
from governance.api.services import build_services, set_services
from governance.core.errors import CollaboratorError, CollaboratorTimeout


class FailingAdvisor(BaseAdvisor):

    def __init__(self, error):
        super().__init__("failing", "none")
        self.error = error

    async def get_recommendation(self, context):
        raise self.error


@pytest.fixture
def make_client(db_path):
    """Factory for test clients whose services use a given advisor."""
    with ExitStack() as stack:
        def _make(advisor=None):
            services = build_services(db_path, advisor=advisor or MockAdvisor())
            set_services(services)
            return stack.enter_context(TestClient(main.app)), services

        yield _make
    set_services(None)


@pytest.fixture
def client(make_client):
    client, services = make_client()
    services.rule_store.add_non_negotiable(3, "No falsified data", auto_reject=True,
                                           validation_keywords=["falsify"])
    with services.planning_store.transaction() as txn:
        txn.create_kpi(name="Revenue", target_value=12000, current_value=9000, kpi_id="k1")
    return client


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True
        assert data["advisor"]["advisor_type"] == "MockAdvisor"


class TestChatEndpoints:
    """Chat turns through the governance pipeline."""

    def test_approved_message_updates_kpi(self, client):
        response = client.post("/chat/message", json={"message": "set kpi k1 to 10981", "session_id": "s1"})
        assert response.status_code == 200
        data = response.json()
        assert data["disposition"] == "approved"
        assert data["executed"] is True

        kpi = client.get("/kpis/k1").json()
        assert kpi["kpi"]["current_value"] == 10981
        assert kpi["history"][0]["value"] == 10981

    def test_rejected_message(self, client):
        data = client.post("/chat/message", json={"message": "falsify the report", "session_id": "s1"}).json()
        assert data["disposition"] == "rejected"
        assert data["violated_rule_ids"] == [3]
        assert "No falsified data" in data["response"]

    def test_empty_message_rejected(self, client):
        assert client.post("/chat/message", json={"message": "   "}).status_code == 422

    def test_history_and_sessions(self, client):
        client.post("/chat/message", json={"message": "hello", "session_id": "s1"})
        history = client.get("/chat/s1").json()
        assert [m["role"] for m in history["messages"]] == ["user", "assistant"]

        sessions = client.get("/chat/sessions").json()["sessions"]
        assert sessions[0]["session_id"] == "s1"
        assert sessions[0]["message_count"] == 2

    def test_unknown_session(self, client):
        assert client.get("/chat/nope").status_code == 404
        assert client.delete("/chat/nope").status_code == 404

    def test_delete_session_removes_its_validations(self, client):
        client.post("/chat/message", json={"message": "hello", "session_id": "s1"})
        assert client.get("/philosophy/alignment").json()["total_validations"] == 1

        assert client.delete("/chat/s1").status_code == 200
        assert client.get("/chat/s1").status_code == 404
        alignment = client.get("/philosophy/alignment").json()
        assert alignment["total_validations"] == 0
        assert alignment["overall_score"] == 85

    def test_collaborator_timeout_maps_to_504(self, make_client):
        client, _ = make_client(FailingAdvisor(CollaboratorTimeout("slow")))
        response = client.post("/chat/message", json={"message": "hi"})
        assert response.status_code == 504
        assert response.json()["error_kind"] == "CollaboratorTimeout"

    def test_collaborator_error_maps_to_502(self, make_client):
        client, _ = make_client(FailingAdvisor(CollaboratorError("down")))
        response = client.post("/chat/message", json={"message": "hi"})
        assert response.status_code == 502
        assert response.json()["error_kind"] == "CollaboratorError"


class TestPhilosophyEndpoints:

    def test_documents(self, client):
        response = client.post("/philosophy/documents", json={
            "type": "value", "title": "Integrity", "content": "We tell the truth"
        })
        assert response.status_code == 201

        documents = client.get("/philosophy/documents", params={"type": "value"}).json()["documents"]
        assert [d["title"] for d in documents] == ["Integrity"]

    def test_invalid_document_type(self, client):
        response = client.post("/philosophy/documents", json={"type": "slogan", "title": "x", "content": "y"})
        assert response.status_code == 422

    def test_non_negotiables(self, client):
        response = client.post("/philosophy/non-negotiables", json={
            "rule_number": 5, "title": "Protect jobs", "validation_keywords": ["layoff"]
        })
        assert response.status_code == 201

        rules = client.get("/philosophy/non-negotiables").json()["non_negotiables"]
        assert [r["rule_number"] for r in rules] == [3, 5]

    def test_duplicate_rule_number_maps_to_400(self, client):
        response = client.post("/philosophy/non-negotiables", json={"rule_number": 3, "title": "Again"})
        assert response.status_code == 400
        assert response.json()["error_kind"] == "RuleConfigurationError"

    def test_decision_hierarchy_empty(self, client):
        assert client.get("/philosophy/decision-hierarchy").json() == {"levels": []}

    def test_validate_records_without_executing(self, client):
        response = client.post("/philosophy/validate", json={
            "text": "Looks fine",
            "proposed_actions": [{"type": "updateKpiValue", "target_entity_id": "k1",
                                  "payload": {"kpiId": "k1", "value": 1}}]
        })
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "approved"
        assert data["session_id"] is None
        assert client.get("/kpis/k1").json()["kpi"]["current_value"] == 9000

    def test_evaluate_only_records_have_no_outcome(self, make_client):
        client, services = make_client()
        turn = client.post("/chat/message", json={"message": "hello", "session_id": "s1"}).json()
        standalone = client.post("/philosophy/validate", json={"text": "Looks fine"}).json()

        assert services.executor.get_outcome(turn["validation_id"]).executed is True
        assert standalone["status"] == "approved"
        assert standalone["session_id"] is None and standalone["turn_id"] is None
        assert services.executor.get_outcome(standalone["id"]) is None

    def test_revalidating_a_turn_appends_a_correction(self, client):
        turn = client.post("/chat/message", json={"message": "falsify the report", "session_id": "s1"}).json()

        response = client.post("/philosophy/validate", json={"text": "Report as measured", "turn_id": turn["turn_id"]})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "approved"
        assert data["turn_id"] == turn["turn_id"]
        assert data["session_id"] == "s1"

        # Deleting the session removes both records of the turn
        client.delete("/chat/s1")
        assert client.get("/philosophy/alignment").json()["total_validations"] == 0

    def test_revalidating_unknown_turn(self, client):
        response = client.post("/philosophy/validate", json={"text": "x", "turn_id": "nope"})
        assert response.status_code == 404

    def test_recent_validations_resolve_rules(self, client):
        client.post("/philosophy/validate", json={"text": "falsify everything"})
        client.post("/philosophy/validate", json={"text": "all good"})

        validations = client.get("/philosophy/validations/recent", params={"limit": 5}).json()["validations"]
        assert [v["status"] for v in validations] == ["approved", "rejected"]
        assert validations[1]["violated_rules"] == [
            {"rule_number": 3, "title": "No falsified data", "auto_reject": True}
        ]

    def test_alignment_no_data(self, client):
        data = client.get("/philosophy/alignment").json()
        assert data["overall_score"] == 85
        assert data["total_validations"] == 0
        assert data["has_data"] is False
        assert [c["category"] for c in data["breakdown"]] == ["Values", "Principles", "Non-Negotiables"]


class TestKpiEndpoints:

    def test_list_and_missing(self, client):
        kpis = client.get("/kpis").json()["kpis"]
        assert [k["id"] for k in kpis] == ["k1"]
        assert client.get("/kpis/unknown").status_code == 404
