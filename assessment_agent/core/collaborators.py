"""
Interfaces the orchestrator depends on.

Concrete implementations talk to the classroom service, document APIs and
the UI; they are injected into RunOrchestrator so the pipeline can run
against fakes in tests.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from assessment_agent.models.artifacts import TaskDefinition
from assessment_agent.models.schemas import ArtifactRole, DocumentType, Participant


class ClassroomProvider:
    def get_course_id(self) -> str:
        raise NotImplementedError

    def fetch_participants(self, course_id: str) -> List[Participant]:
        raise NotImplementedError

    def fetch_assignment_title(self, course_id: str, assignment_id: str) -> Optional[str]:
        raise NotImplementedError

    def fetch_submitted_document_ids(
        self, course_id: str, assignment_id: str, document_type: DocumentType
    ) -> Mapping[str, str]:
        """participant external id -> submitted document id."""
        raise NotImplementedError


class DocumentParser:
    def extract_tasks(self, document_id: str, role: ArtifactRole) -> List[TaskDefinition]:
        raise NotImplementedError

    def extract_responses(
        self, document_id: str, tasks: Sequence[TaskDefinition]
    ) -> Mapping[str, Dict[str, Any]]:
        """task uid -> extraction dict ({content, location_id, metadata})."""
        raise NotImplementedError


class SpreadsheetAssessor:
    """Fills `cellReference` feedback and assessments for spreadsheet tasks."""

    def assess_spreadsheets(self, assignment) -> None:
        raise NotImplementedError


class AssignmentPropertiesStore:
    def save_document_ids(self, title: str, document_ids: Mapping[str, str]) -> DocumentType:
        """Persist the reference/template ids for `title`; returns the derived document type."""
        raise NotImplementedError


class Notifier:
    def toast(self, message: str, title: str = "", seconds: int = 5) -> None:
        raise NotImplementedError

    def show_progress(self) -> None:
        raise NotImplementedError


class ReportGenerator:
    def create_analysis(self, assignment) -> None:
        raise NotImplementedError

    def update_overview(self, assignment) -> None:
        raise NotImplementedError


class ClassRecordStore:
    def add_assignment(self, course_id: str, assignment) -> None:
        raise NotImplementedError
