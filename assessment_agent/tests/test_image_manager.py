from __future__ import annotations

import threading

import httpx

from assessment_agent.core.assignment import Assignment
from assessment_agent.models.artifacts import TaskDefinition
from assessment_agent.models.schemas import ArtifactRole, Participant
from assessment_agent.services.image_manager import (
    FetchedImage,
    ImageEntry,
    ImageManager,
    round_robin,
)
from assessment_agent.services.request_client import BatchedRequestClient


def _entry(n: int, owner: str) -> ImageEntry:
    return ImageEntry(
        artifact_id=str(n),
        url=f"https://img.example.com/{n}.png",
        owner_document_id=owner,
        role=ArtifactRole.SUBMISSION,
        task_id="t",
    )


def test_round_robin_interleaves_owners_in_first_seen_order() -> None:
    entries = [_entry(1, "A"), _entry(2, "A"), _entry(4, "B"), _entry(3, "A"), _entry(5, "B")]
    assert [e.artifact_id for e in round_robin(entries)] == ["1", "4", "2", "5", "3"]


def test_round_robin_single_owner_and_empty() -> None:
    entries = [_entry(1, "A"), _entry(2, "A")]
    assert round_robin(entries) == entries
    assert round_robin([]) == []


def _assignment() -> Assignment:
    assignment = Assignment(
        course_id="c1",
        assignment_id="a1",
        reference_document_id="ref-doc",
        template_document_id="tpl-doc",
        document_type="SLIDES",
    )
    task = TaskDefinition(title="Diagram", location_id="p1")
    task.add_reference_artifact("IMAGE", metadata={"source_url": "https://img.example.com/ref.png"})
    task.add_template_artifact("IMAGE", metadata={"source_url": "http://img.example.com/insecure.png"})
    text_task = TaskDefinition(title="Words", location_id="p2")
    text_task.add_reference_artifact("TEXT", content="hello")
    assignment.add_tasks([task, text_task])

    assignment.add_participants(
        [Participant(name="Ada", external_id="s1"), Participant(name="Bob", external_id="s2")]
    )
    ada, bob = assignment.submissions
    ada.document_id = "doc-ada"
    ada.upsert_item_from_extraction(task, {"metadata": {"source_url": "https://img.example.com/ada.png"}})
    # No document id: skipped even with a good URL.
    bob.upsert_item_from_extraction(task, {"metadata": {"source_url": "https://img.example.com/bob.png"}})
    return assignment


def test_collect_keeps_only_fetchable_images_with_owner() -> None:
    assignment = _assignment()
    manager = ImageManager(BatchedRequestClient(client=httpx.Client()), batch_size=10, auth_token="tok")
    entries = manager.collect(assignment)

    assert [(e.owner_document_id, e.role) for e in entries] == [
        ("ref-doc", ArtifactRole.REFERENCE),
        ("doc-ada", ArtifactRole.SUBMISSION),
    ]
    assert entries[1].item_id is not None


def test_process_images_fetches_and_writes_back() -> None:
    seen_auth = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_auth.append(request.headers.get("authorization"))
        if request.url.path == "/ref.png":
            return httpx.Response(200, content=b"REF")
        return httpx.Response(404)

    client = BatchedRequestClient(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_retries=0,
        sleep=lambda s: None,
    )
    assignment = _assignment()
    manager = ImageManager(client, batch_size=1, auth_token="tok")

    result = manager.process_images(assignment)

    task = next(t for t in assignment.tasks.values() if t.title == "Diagram")
    assert result.updated == [task.primary_reference.uid]
    assert task.primary_reference.content.startswith("data:image/png;base64,")
    assert task.primary_reference.content_hash is not None
    ada_item = next(iter(assignment.submissions[0].items.values()))
    assert ada_item.artifact.content is None
    assert set(seen_auth) == {"Bearer tok"}


def test_write_back_reports_unmatched_ids() -> None:
    assignment = _assignment()
    manager = ImageManager(BatchedRequestClient(client=httpx.Client()), batch_size=10)
    task = next(t for t in assignment.tasks.values() if t.title == "Diagram")

    result = manager.write_back(
        assignment,
        [FetchedImage(task.primary_reference.uid, b"x"), FetchedImage("ghost", b"y")],
    )

    assert result.updated == [task.primary_reference.uid]
    assert result.unmatched == ["ghost"]


def test_fetch_all_interleaves_documents_across_batches() -> None:
    seen = []
    guard = threading.Lock()

    def handler(request: httpx.Request) -> httpx.Response:
        with guard:
            seen.append(request.url.path.strip("/").removesuffix(".png"))
        return httpx.Response(200, content=b"IMG")

    client = BatchedRequestClient(
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_retries=0,
        sleep=lambda s: None,
    )
    manager = ImageManager(client, batch_size=2)
    entries = [_entry(1, "A"), _entry(2, "A"), _entry(3, "A"), _entry(4, "B"), _entry(5, "B")]

    fetched = manager.fetch_all(entries)

    assert [f.artifact_id for f in fetched] == ["1", "4", "2", "5", "3"]
    # Batches run one after another; requests inside a batch are concurrent.
    assert [set(seen[0:2]), set(seen[2:4]), seen[4:]] == [{"1", "4"}, {"2", "5"}, ["3"]]


def test_write_back_of_only_unknown_blob_changes_nothing() -> None:
    assignment = _assignment()
    manager = ImageManager(BatchedRequestClient(client=httpx.Client()), batch_size=10)
    before = [(a.uid, a.content, a.content_hash) for a in assignment.iter_artifacts()]

    result = manager.write_back(assignment, [FetchedImage("ghost", b"y")])

    assert result.updated == []
    assert result.unmatched == ["ghost"]
    assert [(a.uid, a.content, a.content_hash) for a in assignment.iter_artifacts()] == before
