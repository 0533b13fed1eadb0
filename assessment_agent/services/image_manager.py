"""
Image collection, fetch and write-back.

Image artifacts are extracted with a source URL only; this module downloads
the bytes and stores them on the artifacts as PNG data URLs. Requests are
interleaved across owning documents so one large document cannot monopolise
a batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, TypeVar

from assessment_agent.models.artifacts import ImageArtifact
from assessment_agent.models.schemas import ArtifactRole, ArtifactType
from assessment_agent.services.request_client import BatchedRequestClient, HttpRequest
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings
from assessment_agent.utils.url_helpers import is_valid_url, normalize_url

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ImageEntry:
    artifact_id: str
    url: str
    owner_document_id: str
    role: ArtifactRole
    task_id: str
    item_id: Optional[str] = None


@dataclass(frozen=True)
class FetchedImage:
    artifact_id: str
    data: bytes


@dataclass
class WriteBackResult:
    updated: List[str] = field(default_factory=list)
    unmatched: List[str] = field(default_factory=list)


def round_robin(entries: Iterable[T], key=lambda e: e.owner_document_id) -> List[T]:
    """Interleave entries by owner: A:[1,2,3], B:[4,5] -> [1,4,2,5,3]."""
    groups: Dict[str, List[T]] = {}
    for entry in entries:
        groups.setdefault(key(entry), []).append(entry)
    queues = list(groups.values())
    out: List[T] = []
    depth = max((len(q) for q in queues), default=0)
    for i in range(depth):
        for q in queues:
            if i < len(q):
                out.append(q[i])
    return out


def _entry_for(artifact, owner_document_id: Optional[str], item_id: Optional[str] = None) -> Optional[ImageEntry]:
    if artifact.artifact_type != ArtifactType.IMAGE:
        return None
    url = normalize_url(artifact.source_url)
    if not url or not is_valid_url(url) or not owner_document_id:
        return None
    return ImageEntry(
        artifact_id=artifact.uid,
        url=url,
        owner_document_id=owner_document_id,
        role=artifact.role,
        task_id=artifact.task_id,
        item_id=item_id,
    )


class ImageManager:
    def __init__(self, client: BatchedRequestClient, *, batch_size: Optional[int] = None, auth_token: Optional[str] = None):
        settings = get_settings()
        self.client = client
        self.batch_size = max(1, int(batch_size or settings.image_fetch_batch_size))
        self.auth_token = auth_token if auth_token is not None else settings.image_auth_token

    def collect(self, assignment) -> List[ImageEntry]:
        entries: List[ImageEntry] = []
        for task in assignment.tasks.values():
            for artifact in task.iter_artifacts():
                entry = _entry_for(artifact, assignment.owner_document_id(artifact.role))
                if entry is not None:
                    entries.append(entry)
        for submission in assignment.submissions:
            for item in submission.items.values():
                entry = _entry_for(item.artifact, submission.document_id, item_id=item.uid)
                if entry is not None:
                    entries.append(entry)
        log_event(logger, "images_collected", assignment_id=assignment.assignment_id, count=len(entries))
        return entries

    def _request_for(self, entry: ImageEntry) -> HttpRequest:
        headers = {"Authorization": f"Bearer {self.auth_token}"} if self.auth_token else {}
        return HttpRequest(url=entry.url, method="GET", headers=headers, uid=entry.artifact_id)

    def fetch_all(self, entries: Sequence[ImageEntry]) -> List[FetchedImage]:
        ordered = round_robin(entries)
        fetched: List[FetchedImage] = []
        for start in range(0, len(ordered), self.batch_size):
            chunk = ordered[start : start + self.batch_size]
            responses = self.client.call_in_batches([self._request_for(e) for e in chunk])
            for entry, response in zip(chunk, responses):
                if response is not None and response.status_code == 200:
                    fetched.append(FetchedImage(artifact_id=entry.artifact_id, data=response.content))
                    continue
                log_event(
                    logger,
                    "image_fetch_failed",
                    level="warning",
                    artifact_id=entry.artifact_id,
                    url=entry.url,
                    status_code=getattr(response, "status_code", None),
                )
        return fetched

    def write_back(self, assignment, fetched: Sequence[FetchedImage]) -> WriteBackResult:
        by_uid = {a.uid: a for a in assignment.iter_artifacts()}
        result = WriteBackResult()
        for image in fetched:
            artifact = by_uid.get(image.artifact_id)
            if not isinstance(artifact, ImageArtifact):
                result.unmatched.append(image.artifact_id)
                continue
            artifact.set_content_from_bytes(image.data)
            result.updated.append(image.artifact_id)
        if result.unmatched:
            log_event(logger, "image_writeback_unmatched", level="warning", artifact_ids=result.unmatched)
        return result

    def process_images(self, assignment) -> WriteBackResult:
        entries = self.collect(assignment)
        if not entries:
            return WriteBackResult()
        return self.write_back(assignment, self.fetch_all(entries))
