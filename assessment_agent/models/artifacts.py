"""
Task/submission model.

A TaskDefinition holds the artifacts extracted from the reference and
template documents; a Submission holds one participant's artifact per task.
Every content assignment goes through `set_content` so the content hash can
never go stale.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from assessment_agent.models.schemas import (
    ArtifactRole,
    ArtifactType,
    Assessment,
    CellReferenceFeedback,
    Participant,
    parse_upper_enum,
)
from assessment_agent.utils.hashing import content_hash, generate_hash
from assessment_agent.utils.url_helpers import to_png_data_url

logger = logging.getLogger(__name__)


class TaskArtifact:
    artifact_type: ArtifactType

    def __init__(
        self,
        *,
        task_id: str,
        role: ArtifactRole | str,
        location_id: Optional[str] = None,
        document_id: Optional[str] = None,
        content: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
        uid: Optional[str] = None,
        task_index: Optional[int] = None,
        artifact_index: int = 0,
    ):
        if not task_id:
            raise ValueError("Artifact requires task_id")
        if not role:
            raise ValueError("Artifact requires role")
        self.task_id = task_id
        self.role = ArtifactRole(role)
        self.location_id = location_id
        self.document_id = document_id
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.content: Any = None
        self.content_hash: Optional[str] = None
        self.set_content(content)
        self.uid = uid or (
            f"{task_id}-{task_index if task_index is not None else 0}-"
            f"{self.role.value}-{location_id or 'na'}-{artifact_index}"
        )

    @property
    def source_url(self) -> Optional[str]:
        return self.metadata.get("source_url")

    def normalize_content(self, content: Any) -> Any:
        return content

    def set_content(self, content: Any) -> None:
        self.content = self.normalize_content(content)
        self.content_hash = content_hash(self.content)

    def is_empty(self) -> bool:
        return self.content is None or self.content == "" or self.content == []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(uid={self.uid!r}, hash={(self.content_hash or '')[:8]!r})"


class TextArtifact(TaskArtifact):
    artifact_type = ArtifactType.TEXT

    def normalize_content(self, content: Any) -> Optional[str]:
        if content is None:
            return None
        return str(content).strip()


def _normalize_rows(content: Any) -> Optional[List[List[str]]]:
    if content is None:
        return None
    if not isinstance(content, (list, tuple)):
        return None
    rows = []
    for row in content:
        cells = row if isinstance(row, (list, tuple)) else [row]
        rows.append(["" if c is None else str(c).strip() for c in cells])
    return rows


class TableArtifact(TaskArtifact):
    artifact_type = ArtifactType.TABLE

    def normalize_content(self, content: Any) -> Optional[List[List[str]]]:
        return _normalize_rows(content)

    def to_markdown(self) -> str:
        if not self.content:
            return ""
        header, *body = self.content
        lines = ["| " + " | ".join(header) + " |", "|" + "---|" * len(header)]
        lines.extend("| " + " | ".join(r) + " |" for r in body)
        return "\n".join(lines)


class SpreadsheetArtifact(TaskArtifact):
    artifact_type = ArtifactType.SPREADSHEET

    def normalize_content(self, content: Any) -> Optional[List[List[str]]]:
        return _normalize_rows(content)


class ImageArtifact(TaskArtifact):
    artifact_type = ArtifactType.IMAGE

    def normalize_content(self, content: Any) -> Optional[str]:
        if not isinstance(content, str):
            return None
        s = content.strip()
        return s or None

    def set_content_from_bytes(self, data: bytes) -> None:
        if not data:
            return
        self.set_content(to_png_data_url(data))


_ARTIFACT_CLASSES: Dict[ArtifactType, type[TaskArtifact]] = {
    ArtifactType.TEXT: TextArtifact,
    ArtifactType.TABLE: TableArtifact,
    ArtifactType.SPREADSHEET: SpreadsheetArtifact,
    ArtifactType.IMAGE: ImageArtifact,
}


def create_artifact(artifact_type: ArtifactType | str, **params: Any) -> TaskArtifact:
    kind = parse_upper_enum(ArtifactType, artifact_type)
    return _ARTIFACT_CLASSES[kind](**params)


def derive_task_id(title: str, location_id: Optional[str]) -> str:
    return "t_" + generate_hash(f"{title or ''}::{location_id or ''}")[:12]


class TaskDefinition:
    def __init__(
        self,
        *,
        title: str,
        location_id: Optional[str] = None,
        notes: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        uid: Optional[str] = None,
        index: Optional[int] = None,
    ):
        if not title:
            raise ValueError("TaskDefinition requires title")
        self.title = title
        self.location_id = location_id
        self.notes = notes
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.index = index
        # Same title + location on the reference and template passes -> same uid.
        self.uid = uid or derive_task_id(title, location_id)
        self.artifacts: Dict[ArtifactRole, List[TaskArtifact]] = {
            ArtifactRole.REFERENCE: [],
            ArtifactRole.TEMPLATE: [],
        }

    def add_artifact(self, role: ArtifactRole | str, artifact_type: ArtifactType | str, **params: Any) -> TaskArtifact:
        role = ArtifactRole(role)
        if role == ArtifactRole.SUBMISSION:
            raise ValueError("Task definitions only hold reference/template artifacts")
        params.setdefault("location_id", self.location_id)
        artifact = create_artifact(
            artifact_type,
            task_id=self.uid,
            role=role,
            task_index=self.index,
            artifact_index=len(self.artifacts[role]),
            **params,
        )
        self.artifacts[role].append(artifact)
        return artifact

    def add_reference_artifact(self, artifact_type: ArtifactType | str, **params: Any) -> TaskArtifact:
        return self.add_artifact(ArtifactRole.REFERENCE, artifact_type, **params)

    def add_template_artifact(self, artifact_type: ArtifactType | str, **params: Any) -> TaskArtifact:
        return self.add_artifact(ArtifactRole.TEMPLATE, artifact_type, **params)

    def merge(self, other: "TaskDefinition") -> None:
        """Absorb the artifacts of the same task extracted from the other document."""
        if other.uid != self.uid:
            raise ValueError(f"Cannot merge task {other.uid} into {self.uid}")
        for role, items in other.artifacts.items():
            self.artifacts[role].extend(items)

    @property
    def primary_reference(self) -> Optional[TaskArtifact]:
        refs = self.artifacts[ArtifactRole.REFERENCE]
        return refs[0] if refs else None

    @property
    def primary_template(self) -> Optional[TaskArtifact]:
        tpls = self.artifacts[ArtifactRole.TEMPLATE]
        return tpls[0] if tpls else None

    @property
    def task_type(self) -> ArtifactType:
        ref = self.primary_reference
        if ref is not None:
            return ref.artifact_type
        hinted = self.metadata.get("task_type")
        return parse_upper_enum(ArtifactType, hinted) if hinted else ArtifactType.TEXT

    def iter_artifacts(self):
        for role in (ArtifactRole.REFERENCE, ArtifactRole.TEMPLATE):
            yield from self.artifacts[role]


class SubmissionItem:
    def __init__(self, *, task_id: str, artifact: TaskArtifact):
        if not task_id:
            raise ValueError("SubmissionItem missing task_id")
        if artifact is None:
            raise ValueError("SubmissionItem requires artifact")
        self.task_id = task_id
        self.artifact = artifact
        self.assessments: Dict[str, Dict[str, Any]] = {}
        self.feedback: Dict[str, Any] = {}
        self.uid = "ssi_" + generate_hash(f"{task_id}::{artifact.uid or artifact.content_hash or ''}")[:16]

    @property
    def artifact_type(self) -> ArtifactType:
        return self.artifact.artifact_type

    def add_assessment(self, criterion: str, assessment: Assessment | Dict[str, Any]) -> None:
        if not criterion:
            raise ValueError("add_assessment requires criterion")
        if isinstance(assessment, Assessment):
            assessment = assessment.model_dump()
        self.assessments[criterion] = dict(assessment)

    def add_feedback(self, kind: str, feedback: Any) -> None:
        if not kind:
            raise ValueError("add_feedback requires a feedback type")
        if feedback is None:
            return
        self.feedback[kind] = feedback

    def get_cell_feedback(self, kind: str) -> Optional[CellReferenceFeedback]:
        raw = self.feedback.get(kind)
        if raw is None or isinstance(raw, CellReferenceFeedback):
            return raw
        return CellReferenceFeedback.model_validate(raw)


class Submission:
    def __init__(
        self,
        participant: Participant,
        assignment_id: str,
        document_id: Optional[str] = None,
    ):
        if not participant.external_id or not assignment_id:
            raise ValueError("Submission requires participant id & assignment_id")
        self.participant = participant
        self.assignment_id = assignment_id
        self.document_id = document_id
        self.items: Dict[str, SubmissionItem] = {}
        self.updated_at = datetime.now(timezone.utc)

    @property
    def participant_id(self) -> str:
        return self.participant.external_id

    def touch_updated(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def upsert_item_from_extraction(self, task: TaskDefinition, extraction: Dict[str, Any]) -> SubmissionItem:
        item = self.items.get(task.uid)
        if item is not None:
            if "content" in extraction:
                item.artifact.set_content(extraction.get("content"))
            if "metadata" in extraction:
                item.artifact.metadata.update(extraction.get("metadata") or {})
            self.touch_updated()
            return item

        location_id = extraction.get("location_id") or task.location_id
        artifact = create_artifact(
            task.task_type,
            task_id=task.uid,
            role=ArtifactRole.SUBMISSION,
            location_id=location_id,
            document_id=self.document_id,
            content=extraction.get("content"),
            metadata=extraction.get("metadata") or {},
            uid=f"{task.uid}-{self.participant_id}-{location_id or 'na'}-0",
        )
        # Images arrive empty and are filled by the image fetch step.
        if artifact.content is None and artifact.artifact_type != ArtifactType.IMAGE:
            logger.warning("No content found for %s on task %r", self.participant.name, task.title)
        item = SubmissionItem(task_id=task.uid, artifact=artifact)
        self.items[task.uid] = item
        self.touch_updated()
        return item
