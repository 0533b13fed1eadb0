from __future__ import annotations

import json

import httpx
import pytest

from assessment_agent.core.assignment import Assignment
from assessment_agent.models.artifacts import TaskDefinition
from assessment_agent.models.schemas import Participant
from assessment_agent.services.assessor import AssessmentRequestManager, validate_verdict
from assessment_agent.services.request_client import BatchedRequestClient
from assessment_agent.services.result_cache import ResultCache
from assessment_agent.utils.errors import FatalAuthError

GOOD = {
    "Completeness": {"score": 5, "reasoning": "all parts"},
    "accuracy": {"score": 4.5, "reasoning": "minor slip"},
    "SPaG": {"score": 3, "reasoning": "typos"},
}


def _assignment(responses: dict) -> Assignment:
    assignment = Assignment(
        course_id="c1",
        assignment_id="a1",
        reference_document_id="ref",
        template_document_id="tpl",
        document_type="SLIDES",
    )
    ref = TaskDefinition(title="Capital", location_id="p1")
    ref.add_reference_artifact("TEXT", content="Paris is the capital of France.")
    tpl = TaskDefinition(title="Capital", location_id="p1")
    tpl.add_template_artifact("TEXT", content="Write your answer here")
    assignment.add_tasks([ref, tpl])
    assignment.add_participants([Participant(name=k, external_id=k) for k in responses])
    task = assignment.tasks[ref.uid]
    for submission in assignment.submissions:
        submission.document_id = f"doc-{submission.participant_id}"
        submission.upsert_item_from_extraction(task, {"content": responses[submission.participant_id]})
    return assignment


def _manager(handler, memory_store) -> AssessmentRequestManager:
    client = BatchedRequestClient(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_retries=1,
        sleep=lambda s: None,
    )
    return AssessmentRequestManager(
        client,
        ResultCache(memory_store, ttl_seconds=60),
        backend_url="https://grader.example.com/",
        api_key="secret",
        warm_up_url="https://grader.example.com/warm",
    )


def _item(assignment, sid):
    sub = next(s for s in assignment.submissions if s.participant_id == sid)
    return next(iter(sub.items.values()))


def test_validate_verdict_lowercases_and_requires_numeric_scores() -> None:
    assert set(validate_verdict(GOOD)) == {"completeness", "accuracy", "spag"}
    bad = dict(GOOD, accuracy={"score": "high", "reasoning": "x"})
    assert validate_verdict(bad) is None
    assert validate_verdict({"completeness": GOOD["Completeness"]}) is None
    assert validate_verdict(["nope"]) is None


def test_not_attempted_items_skip_the_backend(memory_store) -> None:
    def handler(request):
        raise AssertionError("backend must not be called")

    assignment = _assignment({"s1": "Write your answer here", "s2": "   "})
    manager = _manager(handler, memory_store)

    assert manager.generate_requests(assignment) == []
    for sid in ("s1", "s2"):
        assessments = _item(assignment, sid).assessments
        assert assessments["completeness"] == {"score": "N", "reasoning": "Task not attempted"}
        assert set(assessments) == {"completeness", "accuracy", "spag"}


def test_assess_posts_payload_and_caches_verdict(memory_store) -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/assessor"
        assert request.headers["authorization"] == "Bearer secret"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=GOOD)

    assignment = _assignment({"s1": "Paris"})
    manager = _manager(handler, memory_store)

    assert manager.assess(assignment) == 1
    assert bodies == [
        {
            "taskType": "TEXT",
            "reference": "Paris is the capital of France.",
            "template": "Write your answer here",
            "studentResponse": "Paris",
        }
    ]
    assert _item(assignment, "s1").assessments["accuracy"] == {"score": 4.5, "reasoning": "minor slip"}

    # Same content from another participant hits the cache.
    again = _assignment({"s2": "Paris"})
    assert manager.generate_requests(again) == []
    assert _item(again, "s2").assessments["spag"]["score"] == 3
    assert len(bodies) == 1


def test_invalid_verdict_gets_one_validation_retry(memory_store) -> None:
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(200, json={"completeness": {"score": "?"}})
        return httpx.Response(200, json=GOOD)

    assignment = _assignment({"s1": "Lyon"})
    assert _manager(handler, memory_store).assess(assignment) == 1
    assert calls["n"] == 2
    assert _item(assignment, "s1").assessments["completeness"]["score"] == 5


def test_failed_item_is_logged_and_run_continues(memory_store) -> None:
    def handler(request):
        return httpx.Response(500)

    assignment = _assignment({"s1": "Lyon"})
    assert _manager(handler, memory_store).assess(assignment) == 0
    assert _item(assignment, "s1").assessments == {}


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failures_abort(memory_store, status) -> None:
    def handler(request):
        return httpx.Response(status, text="denied")

    with pytest.raises(FatalAuthError):
        _manager(handler, memory_store).assess(_assignment({"s1": "Lyon"}))


def test_warm_up_never_raises(memory_store) -> None:
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    assert _manager(handler, memory_store).warm_up() is False

    def ok(request):
        return httpx.Response(200)

    assert _manager(ok, memory_store).warm_up() is True
