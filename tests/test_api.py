#!/usr/bin/env python3
"""
Tests for the caseflow REST API
"""

import time

import pytest
from fastapi.testclient import TestClient

from caseflow.api.cases import reset_case_service
from caseflow.api.main import app
from caseflow.api.storage import reset_storage

REVIEW_BODY = """
    <bpmn:startEvent id="s"/>
    <bpmn:userTask id="review" name="Review" camunda:formKey="review-form">
        <bpmn:extensionElements>
            <camunda:formData>
                <camunda:formField id="amount" label="Amount" type="long"/>
            </camunda:formData>
        </bpmn:extensionElements>
    </bpmn:userTask>
    <bpmn:scriptTask id="calc" scriptFormat="python">
        <bpmn:script>total = amount * 2</bpmn:script>
    </bpmn:scriptTask>
    <bpmn:endEvent id="e"/>
    <bpmn:sequenceFlow id="f1" sourceRef="s" targetRef="review"/>
    <bpmn:sequenceFlow id="f2" sourceRef="review" targetRef="calc"/>
    <bpmn:sequenceFlow id="f3" sourceRef="calc" targetRef="e"/>
"""


@pytest.fixture
def client(monkeypatch, tmp_path):
    """Create a test client backed by a fresh definition store"""
    monkeypatch.setenv("CASEFLOW_STORAGE_PATH", str(tmp_path / "store"))
    monkeypatch.setenv("CASEFLOW_AUTH_ENABLED", "false")
    monkeypatch.delenv("CASEFLOW_HANDLER_MODULES", raising=False)
    reset_storage()
    reset_case_service()
    # The context manager keeps one event loop alive for background cases
    with TestClient(app) as test_client:
        yield test_client
    reset_case_service()
    reset_storage()


@pytest.fixture
def deployed(client, bpmn):
    response = client.post(
        "/api/v1/definitions",
        json={"processKey": "review", "xml": bpmn(REVIEW_BODY, process_id="review")},
    )
    assert response.status_code == 201
    return response.json()


def poll(client, url, predicate, timeout=5.0):
    deadline = time.time() + timeout
    while True:
        body = client.get(url).json()
        if predicate(body):
            return body
        if time.time() > deadline:
            raise AssertionError(f"{url} never satisfied the condition: {body}")
        time.sleep(0.02)


def start_case(client, **initial_vars):
    response = client.post(
        "/api/v1/cases", json={"processKey": "review", "initialVars": initial_vars}
    )
    assert response.status_code == 201
    return response.json()["instanceId"]


class TestSystem:
    """Tests for health and middleware"""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["definitionCount"] == 0
        assert data["runningCases"] == 0

    def test_request_id_is_echoed(self, client):
        response = client.get("/api/v1/health", headers={"X-Request-ID": "req-1"})
        assert response.headers["X-Request-ID"] == "req-1"
        assert "X-Process-Time-Ms" in response.headers


class TestDefinitions:
    """Tests for definition endpoints"""

    def test_deploy(self, deployed):
        assert deployed["processKey"] == "review"
        assert deployed["version"] == 1
        assert deployed["summary"]["nodeCount"] == 4
        assert deployed["summary"]["nodesByType"]["userTask"] == 1
        assert deployed["warnings"] == []

    def test_redeploy_creates_next_version(self, client, deployed, bpmn):
        response = client.post(
            "/api/v1/definitions",
            json={"processKey": "review", "xml": bpmn(REVIEW_BODY, process_id="review")},
        )
        assert response.json()["version"] == 2

        listing = client.get("/api/v1/definitions", params={"processKey": "review"}).json()
        assert listing["total"] == 2
        assert [d["active"] for d in listing["definitions"]] == [False, True]

        assert client.get("/api/v1/definitions/review").json()["version"] == 2
        old = client.get("/api/v1/definitions/review", params={"version": 1})
        assert old.json()["version"] == 1

    def test_fallback_deploy_reports_deployed_key(self, client, bpmn):
        response = client.post(
            "/api/v1/definitions",
            json={"processKey": "intake", "xml": bpmn(REVIEW_BODY, process_id="review")},
        )
        assert response.status_code == 201
        assert response.json()["compiledProcessKey"] == "review"
        assert response.json()["summary"]["processKey"] == "intake"

        summary = client.get("/api/v1/definitions/intake").json()
        assert summary["processKey"] == "intake"
        assert summary["compiledProcessKey"] == "review"

    def test_invalid_bpmn_is_400(self, client, bpmn):
        response = client.post(
            "/api/v1/definitions",
            json={"processKey": "broken", "xml": bpmn('<bpmn:endEvent id="e"/>')},
        )
        assert response.status_code == 400
        data = response.json()
        assert data["code"] == "COMPILATION_ERROR"
        assert "timestamp" in data

    def test_unknown_definition_is_404(self, client):
        response = client.get("/api/v1/definitions/missing")
        assert response.status_code == 404
        assert response.json()["code"] == "DEFINITION_NOT_FOUND"

    def test_missing_fields_rejected(self, client):
        response = client.post("/api/v1/definitions", json={"processKey": "x"})
        assert response.status_code == 422


class TestCases:
    """Tests for case endpoints"""

    def test_full_case_lifecycle(self, client, deployed):
        instance_id = start_case(client, amount=21)
        assert instance_id.startswith("review-1-")

        state = poll(
            client,
            f"/api/v1/cases/{instance_id}/state",
            lambda s: s["pendingUserTaskId"] == "review",
        )
        assert state["status"] == "WAITING_USER_TASK"

        task = client.get(f"/api/v1/cases/{instance_id}/user-tasks/review").json()
        assert task["formKey"] == "review-form"
        assert task["formFields"][0]["id"] == "amount"

        response = client.post(
            f"/api/v1/cases/{instance_id}/user-tasks/review/complete",
            json={"payload": {"approved": True}},
        )
        assert response.json() == {"accepted": True}

        case = poll(client, f"/api/v1/cases/{instance_id}", lambda c: c["status"] != "RUNNING")
        assert case["status"] == "COMPLETED"
        assert case["variables"] == {"amount": 21, "approved": True, "total": 42}
        assert case["endedAt"] is not None

    def test_wrong_task_completion_is_not_accepted(self, client, deployed):
        instance_id = start_case(client, amount=1)
        poll(client, f"/api/v1/cases/{instance_id}/state", lambda s: s["pendingUserTaskId"])

        response = client.post(
            f"/api/v1/cases/{instance_id}/user-tasks/other/complete", json={"payload": {}}
        )
        assert response.json() == {"accepted": False}
        assert client.get(f"/api/v1/cases/{instance_id}").json()["status"] == "RUNNING"

    def test_unknown_user_task_is_404(self, client, deployed):
        instance_id = start_case(client, amount=1)
        response = client.get(f"/api/v1/cases/{instance_id}/user-tasks/nope")
        assert response.status_code == 404

    def test_signals_and_messages_are_queued(self, client, deployed):
        instance_id = start_case(client, amount=1)
        signal = client.post(f"/api/v1/cases/{instance_id}/signals", json={"name": "nudge"})
        message = client.post(
            f"/api/v1/cases/{instance_id}/messages", json={"name": "note", "payload": {"a": 1}}
        )
        assert signal.status_code == 202
        assert message.status_code == 202

        state = client.get(f"/api/v1/cases/{instance_id}/state").json()
        assert state["pendingSignalCount"] == 1
        assert state["pendingMessageCount"] == 1

    def test_terminate(self, client, deployed):
        instance_id = start_case(client, amount=1)
        response = client.post(
            f"/api/v1/cases/{instance_id}/terminate", json={"reason": "duplicate order"}
        )
        assert response.status_code == 200
        assert response.json()["status"] == "TERMINATED"
        assert response.json()["terminationReason"] == "duplicate order"

    def test_find_latest_case(self, client, deployed):
        start_case(client, amount=1)
        latest = start_case(client, amount=2)

        response = client.get("/api/v1/cases/find", params={"processKey": "review", "version": 1})
        assert response.status_code == 200
        assert response.json()["instanceId"] == latest

        missing = client.get("/api/v1/cases/find", params={"processKey": "review", "version": 7})
        assert missing.status_code == 404
        assert client.get("/api/v1/cases/find", params={"processKey": "review"}).status_code == 422

    def test_bulk_terminate(self, client, deployed):
        instance_ids = [start_case(client, amount=1), start_case(client, amount=2)]

        response = client.post(
            "/api/v1/cases/terminate",
            json={"processKey": "review", "version": 1, "reason": "cleanup"},
        )
        assert response.status_code == 200
        assert [r["instanceId"] for r in response.json()] == instance_ids
        assert {r["status"] for r in response.json()} == {"TERMINATED"}

        again = client.post("/api/v1/cases/terminate", json={"processKey": "review", "version": 1})
        assert again.status_code == 404
        assert client.post("/api/v1/cases/terminate", json={"allRunning": True}).json() == []

    def test_bulk_terminate_rejects_mixed_selectors(self, client, deployed):
        response = client.post(
            "/api/v1/cases/terminate", json={"allRunning": True, "processKey": "review"}
        )
        assert response.status_code == 400
        no_version = client.post("/api/v1/cases/terminate", json={"processKey": "review"})
        assert no_version.status_code == 400

    def test_unknown_process_is_404(self, client):
        response = client.post("/api/v1/cases", json={"processKey": "missing"})
        assert response.status_code == 404
        assert response.json()["code"] == "DEFINITION_NOT_FOUND"

    def test_unknown_case_is_404(self, client):
        response = client.get("/api/v1/cases/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "CASE_NOT_FOUND"

    def test_health_counts_running_cases(self, client, deployed):
        start_case(client, amount=1)
        data = client.get("/health").json()
        assert data["definitionCount"] == 1
        assert data["runningCases"] == 1


class TestAuthentication:
    """Tests for the API key guard"""

    def test_guarded_routes_require_key(self, client, monkeypatch):
        monkeypatch.setenv("CASEFLOW_AUTH_ENABLED", "true")
        monkeypatch.setenv("CASEFLOW_API_KEYS", "topsecret")

        assert client.get("/api/v1/definitions").status_code == 401
        assert client.get("/health").status_code == 200

        response = client.get("/api/v1/definitions", headers={"X-API-Key": "topsecret"})
        assert response.status_code == 200
        response = client.get(
            "/api/v1/definitions", headers={"Authorization": "Bearer topsecret"}
        )
        assert response.status_code == 200
