"""Tests for the REST API and health endpoints."""

import pytest
from fastapi.testclient import TestClient

from nodeflow.api.endpoints import get_execution_engine
from nodeflow.config import AppConfig, LogLevel
from nodeflow.factory import build_execution_engine, create_app, get_app_state

from conftest import FakeCompletionClient


GREETING_GRAPH = {
    "nodes": [
        {"id": "in1", "type": "input", "config": {"textValue": "hello"}},
        {"id": "p1", "type": "prompt", "config": {"prompt": "Analyze: {{in1.output}}"}},
        {"id": "out", "type": "output", "config": {"format": "text"}},
    ],
    "edges": [
        {"source": "in1", "target": "p1"},
        {"source": "p1", "target": "out"},
    ],
}


@pytest.fixture
def api_config(tmp_path):
    return AppConfig(
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        log_level=LogLevel.WARNING,
        upload_dir=str(tmp_path),
        cors_origins=[]
    )


@pytest.fixture
def completion_client():
    return FakeCompletionClient()


@pytest.fixture
def client(api_config, completion_client):
    app = create_app(api_config)
    with TestClient(app) as test_client:
        engine = build_execution_engine(
            api_config,
            recorder=get_app_state().execution_recorder,
            completion_client=completion_client
        )
        app.dependency_overrides[get_execution_engine] = lambda: engine
        yield test_client
    app.dependency_overrides.clear()


def create_workflow(client, **overrides):
    payload = {"name": "Greeting", "description": "Say hello", **GREETING_GRAPH, **overrides}
    response = client.post("/api/v1/workflows", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["workflow"]


class TestExecuteGraph:
    """Test cases for POST /api/v1/workflows/execute."""

    def test_successful_run(self, client, completion_client):
        response = client.post("/api/v1/workflows/execute", json={**GREETING_GRAPH, "executionId": "run-42"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["executedNodes"] == 3
        assert body["executionOrder"] == ["in1", "p1", "out"]
        assert body["totalEdges"] == 2
        assert body["strategy"] == "dependency-aware"
        assert body["executionId"] == "run-42"
        assert body["result"]["nodeOutputs"]["out"]["data"] == "Echo: Analyze: hello"
        assert "error" not in body
        assert completion_client.calls[0][0] == "Analyze: hello"

    def test_failed_run_is_still_200(self, client):
        graph = {
            "nodes": [{"id": "a", "type": "logic"}, {"id": "b", "type": "logic"}],
            "edges": [
                {"source": "a", "target": "b", "branchLabel": "true"},
                {"source": "b", "target": "a", "branchLabel": "true"},
            ],
        }
        response = client.post("/api/v1/workflows/execute", json=graph)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Workflow execution failed"
        assert body["details"] == "No starting node found (input, dataEntry, or orphaned node)"
        assert body["executedNodes"] == 0

    def test_editor_shaped_nodes(self, client):
        graph = {
            "nodes": [{"id": 1, "type": "input", "data": {"config": {"textValue": "x"}, "label": "Start"}}],
            "edges": [],
        }
        body = client.post("/api/v1/workflows/execute", json=graph).json()
        assert body["result"]["nodeOutputs"]["1"]["output"] == "x"

    def test_file_nodes_cannot_read_outside_upload_dir(self, client, tmp_path):
        secret = tmp_path.parent / f"{tmp_path.name}-secret.txt"
        secret.write_text("TOP-SECRET", encoding="utf-8")
        graph = {
            "nodes": [{"id": "f", "type": "fileToText",
                       "config": {"files": [f"../{secret.name}", str(secret)]}}],
            "edges": [],
        }

        body = client.post("/api/v1/workflows/execute", json=graph).json()

        output = body["result"]["nodeOutputs"]["f"]
        assert body["success"] is True
        assert output["successfulExtractions"] == 0
        assert "TOP-SECRET" not in output["extractedText"]
        assert all(not item["success"] for item in output["fileResults"])

    def test_malformed_body(self, client):
        response = client.post("/api/v1/workflows/execute", json={"nodes": [{"type": "input"}]})
        assert response.status_code == 422

    def test_run_is_recorded(self, client):
        client.post("/api/v1/workflows/execute", json={**GREETING_GRAPH, "executionId": "run-rec"})

        execution = client.get("/api/v1/executions/run-rec")
        assert execution.status_code == 200
        assert execution.json()["status"] == "completed"
        assert execution.json()["executedNodes"] == 3

        nodes = client.get("/api/v1/executions/run-rec/nodes")
        assert nodes.status_code == 200
        assert [record["nodeId"] for record in nodes.json()] == ["in1", "p1", "out"]

    def test_unknown_execution(self, client):
        assert client.get("/api/v1/executions/missing").status_code == 404
        assert client.get("/api/v1/executions/missing/nodes").status_code == 404


class TestWorkflowEndpoints:
    """Test cases for stored workflow endpoints."""

    def test_create_and_get(self, client):
        created = create_workflow(client)

        response = client.get(f"/api/v1/workflows/{created['id']}")
        assert response.status_code == 200
        workflow = response.json()
        assert workflow["name"] == "Greeting"
        assert [node["id"] for node in workflow["nodes"]] == ["in1", "p1", "out"]
        assert "createdAt" in workflow

    def test_create_reports_warnings(self, client):
        payload = {
            "name": "Lonely",
            "nodes": [{"id": "a", "type": "input"}, {"id": "b", "type": "output"}],
            "edges": [],
        }
        response = client.post("/api/v1/workflows", json=payload)

        assert response.status_code == 201
        assert response.json()["validationWarnings"] == ["Isolated nodes detected: a, b"]

    def test_create_invalid_graph(self, client):
        payload = {"name": "Broken", "nodes": [{"id": "a", "type": "input"}],
                   "edges": [{"source": "a", "target": "ghost"}]}
        response = client.post("/api/v1/workflows", json=payload)

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "GraphValidationError"
        assert detail["details"]["validation_errors"]

    def test_list_workflows(self, client):
        create_workflow(client, name="Mine", userId="u1")
        create_workflow(client, name="Other", userId="u2")

        everything = client.get("/api/v1/workflows").json()
        assert {summary["name"] for summary in everything} == {"Mine", "Other"}
        assert everything[0]["nodeCount"] == 3

        mine = client.get("/api/v1/workflows", params={"user_id": "u1"}).json()
        assert [summary["name"] for summary in mine] == ["Mine"]

    def test_get_missing_workflow(self, client):
        response = client.get("/api/v1/workflows/missing")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "NotFoundError"

    def test_delete_workflow(self, client):
        created = create_workflow(client)

        response = client.delete(f"/api/v1/workflows/{created['id']}")
        assert response.status_code == 200
        assert response.json()["success"] is True

        again = client.delete(f"/api/v1/workflows/{created['id']}")
        assert again.status_code == 404
        assert again.json()["detail"]["error"] == "WorkflowNotFound"

    def test_execute_stored_workflow(self, client):
        created = create_workflow(client)

        response = client.post(f"/api/v1/workflows/{created['id']}/execute",
                               json={"inputData": "ignored", "executionId": "stored-run"})
        assert response.status_code == 200
        assert response.json()["success"] is True

        execution = client.get("/api/v1/executions/stored-run").json()
        assert execution["workflowId"] == created["id"]
        assert execution["inputData"] == "ignored"

    def test_execute_stored_workflow_without_body(self, client):
        created = create_workflow(client)
        response = client.post(f"/api/v1/workflows/{created['id']}/execute")
        assert response.json()["success"] is True

    def test_execute_missing_workflow(self, client):
        assert client.post("/api/v1/workflows/missing/execute").status_code == 404

    def test_validate(self, client):
        response = client.post("/api/v1/workflows/validate", json={
            "nodes": [{"id": "a", "type": "input"}, {"id": "a", "type": "output"}],
            "edges": [],
        })

        assert response.status_code == 200
        body = response.json()
        assert body["is_valid"] is False
        assert body["errors"] == ["Duplicate node IDs: a"]


class TestHealthAndMiddleware:
    """Test cases for health endpoints and request middleware."""

    def test_root_and_health(self, client):
        assert client.get("/").json()["version"] == "1.0.0"
        health = client.get("/health").json()
        assert health["status"] == "healthy"
        assert health["service"] == "nodeflow-workflow-engine"

    def test_detailed_health(self, client):
        response = client.get("/health/detailed")

        assert response.status_code == 200
        body = response.json()
        assert body["overall_status"] == "healthy"
        assert set(body["checks"]) == {"database", "execution_engine", "completion_client"}

    def test_ready_and_live(self, client):
        ready = client.get("/health/ready")
        assert ready.status_code == 200
        assert ready.json()["ready"] is True
        assert client.get("/health/live").json()["alive"] is True

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

        generated = client.get("/health")
        assert generated.headers["X-Request-ID"]
        assert "X-Response-Time" in generated.headers
