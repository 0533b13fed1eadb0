from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RUN_PARAMETERS_SCHEMA_VERSION = 2

E = TypeVar("E", bound=Enum)


def parse_upper_enum(enum_cls: Type[E], value: Any) -> E:
    """Accept a member or its (case-insensitive) value."""
    if isinstance(value, enum_cls):
        return value
    return enum_cls(str(value).strip().upper())


# --- Basic Enums ---
class ArtifactType(str, Enum):
    TEXT = "TEXT"
    TABLE = "TABLE"
    IMAGE = "IMAGE"
    SPREADSHEET = "SPREADSHEET"


class ArtifactRole(str, Enum):
    REFERENCE = "reference"
    TEMPLATE = "template"
    SUBMISSION = "submission"


class DocumentType(str, Enum):
    SLIDES = "SLIDES"
    SHEETS = "SHEETS"


class CellStatus(str, Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"
    NOT_ATTEMPTED = "notAttempted"


ASSESSMENT_CRITERIA = ("completeness", "accuracy", "spag")
CELL_REFERENCE_FEEDBACK = "cellReference"


# --- Participants ---
class Participant(BaseModel):
    """A roster entry; never mutated after the roster fetch."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: Optional[str] = None
    external_id: str


class Assessment(BaseModel):
    """Score for one criterion. `N` marks a task that was not attempted."""

    score: float | str
    reasoning: str

    @classmethod
    def not_attempted(cls) -> "Assessment":
        return cls(score="N", reasoning="Task not attempted")


class CellFeedbackItem(BaseModel):
    location: tuple[int, int] = Field(..., description="Zero-based (row, column)")
    status: str


class CellReferenceFeedback(BaseModel):
    """Per-cell verdicts for a spreadsheet task."""

    type: str = CELL_REFERENCE_FEEDBACK
    items: list[CellFeedbackItem] = Field(default_factory=list)

    def add_item(self, location: tuple[int, int], status: str) -> None:
        self.items.append(CellFeedbackItem(location=location, status=status))

    def items_by_status(self, status: str) -> list[CellFeedbackItem]:
        return [i for i in self.items if i.status == status]


# --- Persisted run parameters ---
class RunParameters(BaseModel):
    """
    Everything `run()` needs, written once at schedule time and deleted at run end.

    Stored as one JSON value so the record is either fully present or absent.
    Version 1 payloads (slide-id keyed, camelCase) are migrated on read.
    """

    schema_version: int = RUN_PARAMETERS_SCHEMA_VERSION
    assignment_id: str = Field(..., min_length=1)
    reference_document_id: str = Field(..., min_length=1)
    template_document_id: str = Field(..., min_length=1)
    trigger_id: str = Field(..., min_length=1)
    document_type: DocumentType

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if int(data.get("schema_version") or 1) >= RUN_PARAMETERS_SCHEMA_VERSION:
            return data
        legacy_keys = {
            "assignmentId": "assignment_id",
            "referenceDocumentId": "reference_document_id",
            "referenceSlideId": "reference_document_id",
            "templateDocumentId": "template_document_id",
            "templateSlideId": "template_document_id",
            "emptySlideId": "template_document_id",
            "triggerId": "trigger_id",
            "documentType": "document_type",
        }
        migrated: Dict[str, Any] = {}
        for key, value in data.items():
            target = legacy_keys.get(key, key)
            migrated.setdefault(target, value)
        # Slide-id era predates spreadsheet support.
        migrated.setdefault("document_type", DocumentType.SLIDES.value)
        migrated["schema_version"] = RUN_PARAMETERS_SCHEMA_VERSION
        return migrated

    @field_validator("document_type", mode="before")
    @classmethod
    def _upper_document_type(cls, v: Any) -> Any:
        return parse_upper_enum(DocumentType, v) if isinstance(v, str) else v


class ScheduleRequest(BaseModel):
    title: str = Field(..., min_length=1)
    assignment_id: str = Field(..., min_length=1)
    reference_document_id: str = Field(..., min_length=1)
    template_document_id: str = Field(..., min_length=1)


class ScheduleResponse(BaseModel):
    status: str
    trigger_id: str
    document_type: Optional[DocumentType] = None
