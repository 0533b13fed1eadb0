from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from assessment_agent.core.orchestrator import RunOrchestrator, load_orchestrator_factory
from assessment_agent.models.schemas import ScheduleRequest, ScheduleResponse
from assessment_agent.services.progress import ProgressTracker
from assessment_agent.utils.errors import AssessmentAgentError, ErrorCode
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache(maxsize=1)
def get_orchestrator() -> RunOrchestrator:
    return load_orchestrator_factory()()


def get_progress_tracker() -> ProgressTracker:
    return ProgressTracker(get_settings().document_scope)


@router.post(
    "/assignments/schedule",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ScheduleResponse,
)
def schedule_assignment(
    req: ScheduleRequest,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
):
    if req.reference_document_id == req.template_document_id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="reference and template documents must differ",
        )
    try:
        trigger_id = orchestrator.schedule(
            req.title,
            {
                "reference_document_id": req.reference_document_id,
                "template_document_id": req.template_document_id,
            },
            req.assignment_id,
        )
    except AssessmentAgentError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": str(e), "code": e.code.value},
        ) from e
    except Exception as e:
        log_event(logger, "schedule_endpoint_failed", level="error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": f"failed to schedule assessment: {e}", "code": ErrorCode.SERVICE_ERROR.value},
        ) from e

    params = orchestrator.run_store.load()
    return ScheduleResponse(
        status="scheduled",
        trigger_id=trigger_id,
        document_type=params.document_type if params is not None else None,
    )


@router.get("/progress")
def get_progress(tracker: ProgressTracker = Depends(get_progress_tracker)) -> Dict[str, Any]:
    return tracker.get_status()
