"""
Grading dispatcher.

Turns submission items into backend requests, short-circuiting items that
are not attempted or already cached, then validates and stores the verdicts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

from assessment_agent.models.artifacts import SubmissionItem, TableArtifact, TaskArtifact
from assessment_agent.models.schemas import ASSESSMENT_CRITERIA, ArtifactType, Assessment
from assessment_agent.services.request_client import BatchedRequestClient, HttpRequest
from assessment_agent.services.result_cache import ResultCache
from assessment_agent.utils.errors import FatalAuthError
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)

_AUTH_FATAL_STATUSES = (401, 403)


@dataclass(frozen=True)
class AssessmentJob:
    """One outgoing grading request and where its verdict goes."""

    request: HttpRequest
    item: SubmissionItem
    reference_hash: Optional[str]
    response_hash: Optional[str]
    participant_name: str


def _payload_content(artifact: TaskArtifact) -> Any:
    if isinstance(artifact, TableArtifact):
        return artifact.to_markdown()
    return artifact.content


def is_not_attempted(response: TaskArtifact, template: Optional[TaskArtifact]) -> bool:
    if response.is_empty():
        return True
    return template is not None and template.content_hash is not None and (
        response.content_hash == template.content_hash
    )


def validate_verdict(data: Any) -> Optional[Dict[str, Dict[str, Any]]]:
    """Lower-cased criteria -> {score, reasoning}, or None if any criterion is malformed."""
    if not isinstance(data, dict):
        return None
    lowered = {str(k).lower(): v for k, v in data.items()}
    out: Dict[str, Dict[str, Any]] = {}
    for criterion in ASSESSMENT_CRITERIA:
        entry = lowered.get(criterion)
        if not isinstance(entry, dict):
            return None
        score = entry.get("score")
        reasoning = entry.get("reasoning")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not isinstance(reasoning, str):
            return None
        out[criterion] = {"score": score, "reasoning": reasoning}
    return out


def _parse_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return None


class AssessmentRequestManager:
    def __init__(
        self,
        client: BatchedRequestClient,
        cache: ResultCache,
        *,
        backend_url: Optional[str] = None,
        api_key: Optional[str] = None,
        warm_up_url: Optional[str] = None,
    ):
        settings = get_settings()
        self.client = client
        self.cache = cache
        self.backend_url = (backend_url or settings.backend_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.backend_api_key
        self.warm_up_url = warm_up_url if warm_up_url is not None else settings.warm_up_url

    @property
    def assessor_url(self) -> str:
        return f"{self.backend_url}/v1/assessor"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _assign(self, item: SubmissionItem, verdict: Dict[str, Dict[str, Any]]) -> None:
        for criterion in ASSESSMENT_CRITERIA:
            item.add_assessment(criterion, Assessment(**verdict[criterion]))

    def generate_requests(self, assignment) -> List[AssessmentJob]:
        jobs: List[AssessmentJob] = []
        for submission in assignment.submissions:
            for task_uid, item in submission.items.items():
                if item.artifact_type == ArtifactType.SPREADSHEET:
                    continue
                task = assignment.tasks.get(task_uid)
                reference = task.primary_reference if task else None
                template = task.primary_template if task else None
                if reference is None or template is None:
                    log_event(
                        logger,
                        "assessment_task_incomplete",
                        level="warning",
                        task_id=task_uid,
                        has_reference=reference is not None,
                        has_template=template is not None,
                    )
                    continue

                response = item.artifact
                if is_not_attempted(response, template):
                    for criterion in ASSESSMENT_CRITERIA:
                        item.add_assessment(criterion, Assessment.not_attempted())
                    continue

                cached = validate_verdict(self.cache.get(reference.content_hash, response.content_hash))
                if cached is not None:
                    self._assign(item, cached)
                    log_event(logger, "assessment_cache_hit", task_id=task_uid, item_id=item.uid)
                    continue

                request = HttpRequest(
                    url=self.assessor_url,
                    method="POST",
                    headers=self._headers(),
                    json={
                        "taskType": task.task_type.value,
                        "reference": _payload_content(reference),
                        "template": _payload_content(template),
                        "studentResponse": _payload_content(response),
                    },
                    uid=item.uid,
                )
                jobs.append(
                    AssessmentJob(
                        request=request,
                        item=item,
                        reference_hash=reference.content_hash,
                        response_hash=response.content_hash,
                        participant_name=submission.participant.name,
                    )
                )
        return jobs

    def _accept(self, job: AssessmentJob, response: Optional[httpx.Response]) -> bool:
        if response is None or response.status_code != 200:
            return False
        verdict = validate_verdict(_parse_json(response))
        if verdict is None:
            return False
        self._assign(job.item, verdict)
        self.cache.put(job.reference_hash, job.response_hash, verdict)
        return True

    def process_responses(
        self, jobs: Sequence[AssessmentJob], responses: Sequence[Optional[httpx.Response]]
    ) -> int:
        assessed = 0
        for job, response in zip(jobs, responses):
            status = getattr(response, "status_code", None)
            if status in _AUTH_FATAL_STATUSES:
                raise FatalAuthError(status, job.request.url, body=response.text[:500])
            if self._accept(job, response):
                assessed += 1
                continue
            if status == 200:
                # Reachable backend, unusable verdict: one more try.
                log_event(logger, "assessment_invalid_verdict", level="warning", item_id=job.item.uid)
                if self._accept(job, self.client.call_with_retries(job.request)):
                    assessed += 1
                    continue
            log_event(
                logger,
                "assessment_failed",
                level="error",
                item_id=job.item.uid,
                participant=job.participant_name,
                status_code=status,
            )
        return assessed

    def assess(self, assignment) -> int:
        jobs = self.generate_requests(assignment)
        if not jobs:
            return 0
        responses = self.client.call_in_batches([j.request for j in jobs])
        assessed = self.process_responses(jobs, responses)
        log_event(logger, "assessment_done", assignment_id=assignment.assignment_id, requested=len(jobs), assessed=assessed)
        return assessed

    def warm_up(self) -> bool:
        if not self.warm_up_url:
            return False
        try:
            response = self.client.call_with_retries(
                HttpRequest(url=self.warm_up_url, method="POST", headers=self._headers(), json={})
            )
        except Exception as e:
            log_event(logger, "backend_warm_up_failed", level="warning", error=str(e))
            return False
        ok = response is not None
        log_event(logger, "backend_warm_up", ok=ok)
        return ok
