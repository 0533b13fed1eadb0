"""
Run orchestrator: schedule -> run across two independent executions.

`schedule()` persists the run parameters and asks for a one-shot
continuation. When the continuation fires, `run()` takes the document lock,
replays the parameters and executes the grading pipeline. Whatever happens
inside `run()`, the lock is released and the parameters are deleted.
"""

from __future__ import annotations

import importlib
import logging
import threading
from typing import Callable, Dict, Mapping, Optional

from assessment_agent.core.assignment import Assignment
from assessment_agent.core.collaborators import (
    AssignmentPropertiesStore,
    ClassRecordStore,
    ClassroomProvider,
    DocumentParser,
    Notifier,
    ReportGenerator,
    SpreadsheetAssessor,
)
from assessment_agent.core.run_state import (
    RunEvent,
    RunOutcome,
    RunState,
    transition,
)
from assessment_agent.models.schemas import DocumentType, RunParameters
from assessment_agent.services.assessor import AssessmentRequestManager
from assessment_agent.services.feedback_writer import FeedbackWriter
from assessment_agent.services.image_manager import ImageManager
from assessment_agent.services.locks import DocumentLock
from assessment_agent.services.progress import ProgressTracker
from assessment_agent.services.run_store import RunParameterStore
from assessment_agent.services.scheduler import ContinuationScheduler
from assessment_agent.utils.errors import ErrorCode, FatalConfigError
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)

ENTRY_POINT = "process_selected_assignment"
BUSY_MESSAGE = "Another process is currently running. Please wait."


class RunOrchestrator:
    def __init__(
        self,
        *,
        classroom: ClassroomProvider,
        parser: DocumentParser,
        properties: AssignmentPropertiesStore,
        notifier: Notifier,
        reports: ReportGenerator,
        scheduler: ContinuationScheduler,
        run_store: RunParameterStore,
        lock: DocumentLock,
        progress: ProgressTracker,
        assessor: AssessmentRequestManager,
        image_manager: Optional[ImageManager] = None,
        feedback_writer: Optional[FeedbackWriter] = None,
        spreadsheet_assessor: Optional[SpreadsheetAssessor] = None,
        class_records: Optional[ClassRecordStore] = None,
        lock_wait_seconds: Optional[float] = None,
    ):
        self.classroom = classroom
        self.parser = parser
        self.properties = properties
        self.notifier = notifier
        self.reports = reports
        self.scheduler = scheduler
        self.run_store = run_store
        self.lock = lock
        self.progress = progress
        self.assessor = assessor
        self.image_manager = image_manager
        self.feedback_writer = feedback_writer
        self.spreadsheet_assessor = spreadsheet_assessor
        self.class_records = class_records
        self.lock_wait_seconds = float(
            get_settings().lock_wait_seconds if lock_wait_seconds is None else lock_wait_seconds
        )

        # Document types this orchestrator can grade, keyed to their grading step.
        self._graders: Dict[DocumentType, Callable[[Assignment], None]] = {}
        if image_manager is not None:
            self._graders[DocumentType.SLIDES] = self._grade_slides
        if feedback_writer is not None:
            self._graders[DocumentType.SHEETS] = self._grade_sheets

    # --- state ---
    def _advance(self, event: RunEvent) -> RunState:
        current = self.progress.get_status().get("state") or RunState.IDLE.value
        try:
            nxt = transition(current, event)
        except ValueError:
            # Stale state left by a crashed execution; replay from the nearest sane origin.
            origin = RunState.RUNNING if event in (RunEvent.SUCCEED, RunEvent.FAIL) else RunState.IDLE
            log_event(logger, "run_state_reset", level="warning", state=current, run_event=event.value)
            nxt = transition(origin, event)
        self.progress.set_state(nxt.value)
        return nxt

    def _notify(self, message: str, title: str, seconds: int = 5) -> None:
        try:
            self.notifier.toast(message, title, seconds)
        except Exception as e:
            log_event(logger, "notify_failed", level="warning", error=str(e))

    # --- schedule side ---
    def schedule(self, title: str, document_ids: Mapping[str, str], assignment_id: str) -> str:
        trigger_id: Optional[str] = None
        try:
            document_type = self.properties.save_document_ids(title, document_ids)
            trigger_id = self.start_processing(
                assignment_id,
                document_ids["reference_document_id"],
                document_ids["template_document_id"],
                document_type,
            )
            self.progress.start_tracking()
            self._reset_finished()
            self._advance(RunEvent.SCHEDULE)
            self.notifier.show_progress()
            threading.Thread(target=self._warm_up, name="backend-warm-up", daemon=True).start()
            return trigger_id
        except Exception as e:
            log_event(logger, "schedule_failed", level="error", assignment_id=assignment_id, error=str(e))
            if trigger_id is not None:
                self._cancel_scheduled(trigger_id)
            self._notify(f"Failed to start assessment: {e}", "Error")
            self.progress.log_error(f"Failed to start assessment: {e}")
            raise

    def _reset_finished(self) -> None:
        state = self.progress.get_status().get("state")
        if state in (RunState.COMPLETED.value, RunState.FAILED.value):
            self._advance(RunEvent.RESET)

    def _cancel_scheduled(self, trigger_id: str) -> None:
        """Undo a half-finished schedule so the continuation never fires."""
        try:
            self.scheduler.remove_by_id(trigger_id)
        except Exception as e:
            log_event(logger, "schedule_rollback_failed", level="error", trigger_id=trigger_id, error=str(e))
        try:
            self.run_store.delete()
        except Exception as e:
            log_event(logger, "schedule_rollback_failed", level="error", trigger_id=trigger_id, error=str(e))

    def _warm_up(self) -> None:
        try:
            self.assessor.warm_up()
        except Exception as e:
            log_event(logger, "backend_warm_up_failed", level="warning", error=str(e))

    def start_processing(
        self,
        assignment_id: str,
        reference_document_id: str,
        template_document_id: str,
        document_type: DocumentType | str,
    ) -> str:
        trigger_id = self.scheduler.create_one_shot(ENTRY_POINT)
        try:
            self.run_store.save(
                RunParameters(
                    assignment_id=assignment_id,
                    reference_document_id=reference_document_id,
                    template_document_id=template_document_id,
                    trigger_id=trigger_id,
                    document_type=document_type,
                )
            )
        except Exception:
            self.scheduler.remove_by_id(trigger_id)
            raise
        log_event(logger, "run_scheduled", assignment_id=assignment_id, trigger_id=trigger_id)
        return trigger_id

    # --- run side ---
    def run(self) -> RunOutcome:
        if not self.lock.try_lock(self.lock_wait_seconds):
            log_event(logger, "run_busy", level="warning", scope=self.run_store.scope)
            self._notify(BUSY_MESSAGE, "Busy")
            return RunOutcome.BUSY

        try:
            params = self.run_store.load()
            if params is None:
                self.scheduler.remove_all(ENTRY_POINT)
                raise FatalConfigError("Missing run parameters; nothing to process.")
            self.scheduler.remove_by_id(params.trigger_id)
            self._reset_finished()
            self._advance(RunEvent.START)
            log_event(logger, "run_started", assignment_id=params.assignment_id, document_type=params.document_type.value)
            self._execute(params)
            self._advance(RunEvent.SUCCEED)
            return RunOutcome.COMPLETED
        except Exception as e:
            log_event(logger, "run_failed", level="error", error_type=type(e).__name__, error=str(e))
            self._advance(RunEvent.FAIL)
            self.progress.log_error(str(e))
            self._notify(f"Error during assessment: {e}", "Error")
            raise
        finally:
            self.lock.release()
            try:
                self.run_store.delete()
            except Exception as e:
                log_event(logger, "run_cleanup_failed", level="error", error=str(e))

    def _execute(self, params: RunParameters) -> Assignment:
        grade = self._graders.get(params.document_type)
        if grade is None:
            raise FatalConfigError(
                f"Unsupported document type: {params.document_type.value}",
                code=ErrorCode.UNSUPPORTED_DOCUMENT_TYPE,
            )
        step = self.progress.update_progress

        step("Resolving course.")
        course_id = self.classroom.get_course_id()

        step("Creating assignment.")
        assignment = Assignment(
            course_id=course_id,
            assignment_id=params.assignment_id,
            reference_document_id=params.reference_document_id,
            template_document_id=params.template_document_id,
            document_type=params.document_type,
            title=self.classroom.fetch_assignment_title(course_id, params.assignment_id),
        )

        step("Fetching participants.")
        assignment.add_participants(self.classroom.fetch_participants(course_id))

        step("Extracting tasks from reference and template documents.")
        assignment.populate_tasks(self.parser)

        step("Fetching submitted documents.")
        assignment.assign_documents(
            self.classroom.fetch_submitted_document_ids(course_id, params.assignment_id, params.document_type)
        )

        step("Extracting participant responses.")
        assignment.extract_responses(self.parser)

        grade(assignment)

        assignment.touch_updated()
        if self.class_records is not None:
            self.class_records.add_assignment(course_id, assignment)

        step("Generating analysis and overview reports.")
        self.reports.create_analysis(assignment)
        self.reports.update_overview(assignment)

        self.progress.complete()
        self._notify("Assessment completed.", "Done")
        log_event(logger, "run_completed", assignment_id=assignment.assignment_id, submissions=len(assignment.submissions))
        return assignment

    def _grade_slides(self, assignment: Assignment) -> None:
        self.progress.update_progress("Fetching images.")
        self.image_manager.process_images(assignment)
        self.progress.update_progress("Assessing responses.")
        self.assessor.assess(assignment)

    def _grade_sheets(self, assignment: Assignment) -> None:
        self.progress.update_progress("Assessing spreadsheet responses.")
        if self.spreadsheet_assessor is not None:
            self.spreadsheet_assessor.assess_spreadsheets(assignment)
        self.assessor.assess(assignment)
        self.progress.update_progress("Applying feedback.")
        self.feedback_writer.apply_feedback(assignment)


def load_orchestrator_factory(path: Optional[str] = None) -> Callable[[], RunOrchestrator]:
    """Resolve `package.module:callable` (ORCHESTRATOR_FACTORY) to a factory."""
    spec = path or get_settings().orchestrator_factory
    if not spec or ":" not in spec:
        raise FatalConfigError("ORCHESTRATOR_FACTORY must be set as 'module:callable'")
    module_name, attr = spec.split(":", 1)
    factory = getattr(importlib.import_module(module_name), attr, None)
    if not callable(factory):
        raise FatalConfigError(f"ORCHESTRATOR_FACTORY target is not callable: {spec}")
    return factory
