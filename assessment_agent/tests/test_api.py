from __future__ import annotations

from fastapi.testclient import TestClient

from assessment_agent.api import assignments
from assessment_agent.main import create_app
from assessment_agent.models.schemas import DocumentType, RunParameters
from assessment_agent.services.progress import ProgressTracker
from assessment_agent.utils.cache import InMemoryCache
from assessment_agent.utils.errors import TriggerQuotaExceededError


class _FakeRunStore:
    def __init__(self):
        self.params = None

    def load(self):
        return self.params


class _FakeOrchestrator:
    def __init__(self, fail=None):
        self.fail = fail
        self.run_store = _FakeRunStore()
        self.calls = []

    def schedule(self, title, document_ids, assignment_id):
        if self.fail is not None:
            raise self.fail
        self.calls.append((title, dict(document_ids), assignment_id))
        self.run_store.params = RunParameters(
            assignment_id=assignment_id,
            reference_document_id=document_ids["reference_document_id"],
            template_document_id=document_ids["template_document_id"],
            trigger_id="trg_abc",
            document_type=DocumentType.SHEETS,
        )
        return "trg_abc"


def _client(orchestrator, tracker=None) -> TestClient:
    app = create_app()
    app.dependency_overrides[assignments.get_orchestrator] = lambda: orchestrator
    if tracker is not None:
        app.dependency_overrides[assignments.get_progress_tracker] = lambda: tracker
    return TestClient(app)


BODY = {
    "title": "Capitals",
    "assignment_id": "asg-1",
    "reference_document_id": "ref",
    "template_document_id": "tpl",
}


def test_schedule_returns_202_with_trigger_id() -> None:
    orch = _FakeOrchestrator()
    resp = _client(orch).post("/api/v1/assignments/schedule", json=BODY)
    assert resp.status_code == 202
    assert resp.json() == {"status": "scheduled", "trigger_id": "trg_abc", "document_type": "SHEETS"}
    assert orch.calls[0][2] == "asg-1"
    assert resp.headers["X-Request-Id"]


def test_schedule_rejects_identical_documents_with_409() -> None:
    orch = _FakeOrchestrator()
    resp = _client(orch).post(
        "/api/v1/assignments/schedule", json=dict(BODY, template_document_id="ref")
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "E4090"
    assert orch.calls == []


def test_schedule_failure_uses_canonical_error_payload() -> None:
    orch = _FakeOrchestrator(fail=TriggerQuotaExceededError("quota"))
    resp = _client(orch).post(
        "/api/v1/assignments/schedule", json=BODY, headers={"X-Request-Id": "req-1"}
    )
    assert resp.status_code == 500
    data = resp.json()
    assert data["code"] == "E5002"
    assert data["request_id"] == "req-1"


def test_schedule_validation_error_is_422() -> None:
    resp = _client(_FakeOrchestrator()).post("/api/v1/assignments/schedule", json={"title": "x"})
    assert resp.status_code == 422
    assert resp.json()["code"] == "E4220"


def test_progress_endpoint_reports_tracker_state() -> None:
    tracker = ProgressTracker("api-test", InMemoryCache(), ttl_seconds=60)
    client = _client(_FakeOrchestrator(), tracker)

    assert client.get("/api/v1/progress").json()["message"] == "No progress yet."
    tracker.start_tracking()
    tracker.update_progress("Fetching participants.")
    data = client.get("/api/v1/progress").json()
    assert data["step"] == 1
    assert data["message"] == "Fetching participants."


def test_healthz() -> None:
    resp = _client(_FakeOrchestrator()).get("/healthz")
    assert resp.json() == {"ok": True}
