from __future__ import annotations

import base64
import hashlib

import pytest

from assessment_agent.core.assignment import Assignment
from assessment_agent.models.artifacts import (
    ImageArtifact,
    Submission,
    TaskDefinition,
    create_artifact,
    derive_task_id,
)
from assessment_agent.models.schemas import (
    ArtifactRole,
    ArtifactType,
    CellReferenceFeedback,
    Participant,
)
from assessment_agent.utils.hashing import content_hash


def test_task_id_is_stable_for_title_and_location() -> None:
    expected = "t_" + hashlib.sha256(b"Q1::slide-7").hexdigest()[:12]
    assert derive_task_id("Q1", "slide-7") == expected
    assert TaskDefinition(title="Q1", location_id="slide-7").uid == expected


def test_reference_and_template_halves_merge_by_uid() -> None:
    ref = TaskDefinition(title="Q1", location_id="p1")
    ref.add_reference_artifact("TEXT", content="Paris")
    tpl = TaskDefinition(title="Q1", location_id="p1")
    tpl.add_template_artifact("TEXT", content="")

    assignment = Assignment(
        course_id="c",
        assignment_id="a",
        reference_document_id="ref",
        template_document_id="tpl",
        document_type="slides",
    )
    assignment.add_tasks([ref])
    assignment.add_tasks([tpl])

    task = assignment.tasks[ref.uid]
    assert task.primary_reference.content == "Paris"
    assert task.primary_template.content == ""
    assert task.task_type == ArtifactType.TEXT


def test_default_artifact_uid_format() -> None:
    task = TaskDefinition(title="Q1", location_id="p1", index=3)
    first = task.add_reference_artifact(ArtifactType.TEXT, content="a")
    second = task.add_reference_artifact(ArtifactType.TEXT, content="b", location_id=None)
    assert first.uid == f"{task.uid}-3-reference-p1-0"
    assert second.uid == f"{task.uid}-3-reference-na-1"


def test_hash_recomputed_whenever_content_changes() -> None:
    art = create_artifact("text", task_id="t_1", role="reference", content="  hello ")
    assert art.content == "hello"
    assert art.content_hash == content_hash("hello")
    art.set_content("bye")
    assert art.content_hash == content_hash("bye")
    art.set_content(None)
    assert art.content_hash is None


def test_table_content_is_normalised_to_string_rows() -> None:
    art = create_artifact(ArtifactType.TABLE, task_id="t_1", role="reference", content=[[1, None], ["a "]])
    assert art.content == [["1", ""], ["a"]]
    assert art.to_markdown().splitlines()[0] == "| 1 |  |"


def test_image_bytes_become_png_data_url() -> None:
    art = ImageArtifact(task_id="t_1", role=ArtifactRole.REFERENCE, metadata={"source_url": "https://x.example/i.png"})
    assert art.content is None and art.content_hash is None
    art.set_content_from_bytes(b"\x89PNG")
    assert art.content == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
    assert art.content_hash == content_hash(art.content)
    assert art.source_url == "https://x.example/i.png"


def test_unknown_artifact_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        create_artifact("VIDEO", task_id="t_1", role="reference")


def test_task_definitions_reject_submission_artifacts() -> None:
    with pytest.raises(ValueError):
        TaskDefinition(title="Q1").add_artifact(ArtifactRole.SUBMISSION, "TEXT")


def test_submission_upsert_creates_then_updates_item() -> None:
    task = TaskDefinition(title="Q1", location_id="p1")
    task.add_reference_artifact("TABLE", content=[["a"]])
    sub = Submission(Participant(name="Ada", external_id="s1"), "asg", document_id="doc-1")

    item = sub.upsert_item_from_extraction(task, {"content": [["x"]]})
    assert item.artifact.uid == f"{task.uid}-s1-p1-0"
    assert item.artifact_type == ArtifactType.TABLE
    assert item.artifact.role == ArtifactRole.SUBMISSION
    assert item.artifact.document_id == "doc-1"

    again = sub.upsert_item_from_extraction(task, {"content": [["y"]]})
    assert again is item
    assert item.artifact.content == [["y"]]
    assert item.artifact.content_hash == content_hash([["y"]])


def test_cell_feedback_round_trips_through_item() -> None:
    task = TaskDefinition(title="Sheet", location_id="42")
    task.add_reference_artifact("SPREADSHEET", content=[["=A1"]])
    sub = Submission(Participant(name="Ada", external_id="s1"), "asg")
    item = sub.upsert_item_from_extraction(task, {"content": [["=A1"]]})

    fb = CellReferenceFeedback()
    fb.add_item((0, 1), "correct")
    item.add_feedback("cellReference", fb.model_dump())

    restored = item.get_cell_feedback("cellReference")
    assert restored.items[0].location == (0, 1)
    assert restored.items_by_status("correct")[0].status == "correct"


def test_submission_requires_participant_id() -> None:
    with pytest.raises(ValueError):
        Submission(Participant(name="Ada", external_id=""), "asg")
