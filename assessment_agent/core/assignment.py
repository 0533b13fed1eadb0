"""
Assignment aggregate: the tasks extracted from the reference/template
documents plus one Submission per participant.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Mapping, Optional

from assessment_agent.models.artifacts import Submission, TaskArtifact, TaskDefinition
from assessment_agent.models.schemas import ArtifactRole, DocumentType, Participant, parse_upper_enum
from assessment_agent.utils.observability import log_event

logger = logging.getLogger(__name__)


class Assignment:
    def __init__(
        self,
        *,
        course_id: str,
        assignment_id: str,
        reference_document_id: str,
        template_document_id: str,
        document_type: DocumentType | str,
        title: Optional[str] = None,
    ):
        self.course_id = course_id
        self.assignment_id = assignment_id
        self.reference_document_id = reference_document_id
        self.template_document_id = template_document_id
        self.document_type = parse_upper_enum(DocumentType, document_type)
        self.title = title
        self.tasks: Dict[str, TaskDefinition] = {}
        self.submissions: List[Submission] = []
        self.last_updated: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"Assignment(id={self.assignment_id!r}, type={self.document_type.value}, "
            f"tasks={len(self.tasks)}, submissions={len(self.submissions)})"
        )

    def owner_document_id(self, role: ArtifactRole) -> Optional[str]:
        if role == ArtifactRole.REFERENCE:
            return self.reference_document_id
        if role == ArtifactRole.TEMPLATE:
            return self.template_document_id
        return None

    def add_tasks(self, tasks: List[TaskDefinition]) -> None:
        """Merge extracted tasks by uid so reference and template halves meet."""
        for task in tasks:
            existing = self.tasks.get(task.uid)
            if existing is None:
                self.tasks[task.uid] = task
            else:
                existing.merge(task)

    def populate_tasks(self, parser) -> None:
        self.add_tasks(parser.extract_tasks(self.reference_document_id, ArtifactRole.REFERENCE))
        self.add_tasks(parser.extract_tasks(self.template_document_id, ArtifactRole.TEMPLATE))
        log_event(logger, "tasks_populated", assignment_id=self.assignment_id, tasks=len(self.tasks))

    def add_participants(self, participants: List[Participant]) -> None:
        known = {s.participant_id for s in self.submissions}
        for p in participants:
            if p.external_id in known:
                continue
            self.submissions.append(Submission(p, self.assignment_id))
            known.add(p.external_id)

    def assign_documents(self, document_ids: Mapping[str, str]) -> None:
        for submission in self.submissions:
            doc_id = document_ids.get(submission.participant_id)
            if doc_id:
                submission.document_id = doc_id

    def extract_responses(self, parser) -> None:
        tasks = list(self.tasks.values())
        for submission in self.submissions:
            # No submitted document is a normal state, not an error.
            if not submission.document_id:
                continue
            extractions = parser.extract_responses(submission.document_id, tasks) or {}
            for task in tasks:
                extraction = extractions.get(task.uid)
                if extraction is None:
                    continue
                submission.upsert_item_from_extraction(task, extraction)

    def iter_artifacts(self) -> Iterator[TaskArtifact]:
        for task in self.tasks.values():
            yield from task.iter_artifacts()
        for submission in self.submissions:
            for item in submission.items.values():
                yield item.artifact

    def touch_updated(self) -> None:
        self.last_updated = datetime.now(timezone.utc)
