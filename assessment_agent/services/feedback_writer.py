"""
Colour-codes graded spreadsheet cells in each participant's document.

One batched update is sent per document. A document whose batch fails is
recorded and skipped; the rest still get their feedback.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from assessment_agent.models.schemas import CELL_REFERENCE_FEEDBACK, CellStatus
from assessment_agent.utils.observability import log_event

logger = logging.getLogger(__name__)

Rgb = Tuple[float, float, float]

STATUS_COLOURS: Dict[str, Rgb] = {
    CellStatus.CORRECT.value: (0.7137, 0.8431, 0.6588),
    CellStatus.INCORRECT.value: (0.9176, 0.6, 0.6),
    CellStatus.NOT_ATTEMPTED.value: (1.0, 0.898, 0.6),
}
DEFAULT_COLOUR: Rgb = (1.0, 1.0, 1.0)


def colour_for_status(status: str) -> Rgb:
    return STATUS_COLOURS.get(status, DEFAULT_COLOUR)


@dataclass(frozen=True)
class CellFormatRequest:
    sheet_id: Any
    row: int
    column: int
    colour: Rgb

    def to_api(self) -> Dict[str, Any]:
        red, green, blue = self.colour
        return {
            "repeatCell": {
                "range": {
                    "sheetId": self.sheet_id,
                    "startRowIndex": self.row,
                    "endRowIndex": self.row + 1,
                    "startColumnIndex": self.column,
                    "endColumnIndex": self.column + 1,
                },
                "cell": {
                    "userEnteredFormat": {
                        "backgroundColor": {"red": red, "green": green, "blue": blue}
                    }
                },
                "fields": "userEnteredFormat.backgroundColor",
            }
        }


class SheetsUpdater:
    """Destination for batched formatting requests."""

    def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class BatchUpdateBuilder:
    pending: Tuple[Tuple[str, CellFormatRequest], ...] = ()

    def add(self, document_id: str, request: CellFormatRequest) -> "BatchUpdateBuilder":
        return BatchUpdateBuilder(self.pending + ((document_id, request),))

    def grouped(self) -> Dict[str, List[CellFormatRequest]]:
        out: Dict[str, List[CellFormatRequest]] = {}
        for document_id, request in self.pending:
            out.setdefault(document_id, []).append(request)
        return out

    def flush(self, updater: SheetsUpdater, result: "FeedbackResult | None" = None) -> "BatchUpdateBuilder":
        result = result if result is not None else FeedbackResult()
        for document_id, requests in self.grouped().items():
            if not requests:
                continue
            try:
                updater.batch_update(document_id, [r.to_api() for r in requests])
                result.applied[document_id] = len(requests)
            except Exception as e:
                result.failed[document_id] = str(e)
                log_event(
                    logger,
                    "feedback_batch_failed",
                    level="error",
                    document_id=document_id,
                    requests=len(requests),
                    error=str(e),
                )
        return BatchUpdateBuilder()


@dataclass
class FeedbackResult:
    applied: Dict[str, int] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)


class FeedbackWriter:
    def __init__(self, updater: SheetsUpdater):
        self.updater = updater

    def build_requests(self, assignment) -> BatchUpdateBuilder:
        builder = BatchUpdateBuilder()
        for submission in assignment.submissions:
            if not submission.document_id:
                continue
            for item in submission.items.values():
                feedback = item.get_cell_feedback(CELL_REFERENCE_FEEDBACK)
                sheet_id = item.artifact.location_id
                if feedback is None or sheet_id is None:
                    continue
                for cell in feedback.items:
                    row, column = cell.location
                    builder = builder.add(
                        submission.document_id,
                        CellFormatRequest(sheet_id, row, column, colour_for_status(cell.status)),
                    )
        return builder

    def apply_feedback(self, assignment) -> FeedbackResult:
        result = FeedbackResult()
        self.build_requests(assignment).flush(self.updater, result)
        log_event(
            logger,
            "feedback_applied",
            assignment_id=assignment.assignment_id,
            documents=len(result.applied),
            failed=len(result.failed),
        )
        return result
