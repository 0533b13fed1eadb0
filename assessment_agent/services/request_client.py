"""
Batched HTTP client with per-request retries.

Success is exactly HTTP 200. Anything else (or a transport error) is retried
with exponential backoff starting at `request_backoff_seconds` and doubling,
for `max_retries + 1` attempts in total.

Two single-request variants:
- `call_with_retries`: returns None once attempts are exhausted, never raises.
- `call_with_retries_strict`: 403/404 raise FatalAuthError immediately;
  exhaustion raises RequestFailedError.

`call_in_batches` fans a group of requests out concurrently, then retries
each failed item on its own. The result list is index-aligned with the input.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from assessment_agent.utils.errors import FatalAuthError, RequestFailedError
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)

_STRICT_FATAL_STATUSES = (403, 404)


@dataclass(frozen=True)
class HttpRequest:
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None
    # Caller-side correlation id (artifact uid, submission item uid, ...).
    uid: Optional[str] = None


def _is_success(response: Optional[httpx.Response]) -> bool:
    return response is not None and response.status_code == 200


def _log_retry(op: str, retry_state: RetryCallState) -> None:
    request = retry_state.args[0] if retry_state.args else None
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None else None
    status = None
    if outcome is not None and exc is None:
        result = outcome.result()
        status = getattr(result, "status_code", None)
    log_event(
        logger,
        "request_retry",
        level="warning",
        op=op,
        url=getattr(request, "url", None),
        uid=getattr(request, "uid", None),
        attempt=retry_state.attempt_number,
        status_code=status,
        error=str(exc) if exc else None,
        next_wait_s=getattr(retry_state.next_action, "sleep", None),
    )


class BatchedRequestClient:
    def __init__(
        self,
        *,
        client: Optional[httpx.Client] = None,
        batch_size: Optional[int] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        progress=None,
    ):
        settings = get_settings()
        self.client = client or httpx.Client(timeout=settings.request_timeout_seconds)
        self.batch_size = max(1, int(batch_size or settings.backend_batch_size))
        self.max_retries = int(settings.request_max_retries if max_retries is None else max_retries)
        self.backoff_seconds = float(
            settings.request_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self._sleep = sleep
        self.progress = progress

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "BatchedRequestClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _send(self, request: HttpRequest) -> httpx.Response:
        return self.client.request(
            request.method,
            request.url,
            headers=request.headers or None,
            json=request.json,
        )

    def _retrying(self, op: str, max_retries: Optional[int], **kwargs) -> Retrying:
        attempts = (self.max_retries if max_retries is None else int(max_retries)) + 1
        return Retrying(
            retry=retry_if_exception_type(httpx.TransportError)
            | retry_if_result(lambda r: not _is_success(r)),
            wait=wait_exponential(multiplier=self.backoff_seconds, exp_base=2),
            stop=stop_after_attempt(attempts),
            sleep=self._sleep,
            before_sleep=partial(_log_retry, op),
            **kwargs,
        )

    def call_with_retries(
        self, request: HttpRequest, max_retries: Optional[int] = None
    ) -> Optional[httpx.Response]:
        def _give_up(state: RetryCallState) -> None:
            outcome = state.outcome
            exc = outcome.exception() if outcome is not None else None
            last = None if exc is not None or outcome is None else outcome.result()
            log_event(
                logger,
                "request_exhausted",
                level="error",
                url=request.url,
                uid=request.uid,
                attempts=state.attempt_number,
                status_code=getattr(last, "status_code", None),
                error=str(exc) if exc else None,
            )
            return None

        retrying = self._retrying("call_with_retries", max_retries, retry_error_callback=_give_up)
        return retrying(self._send, request)

    def call_with_retries_strict(
        self, request: HttpRequest, max_retries: Optional[int] = None
    ) -> httpx.Response:
        def _attempt(req: HttpRequest) -> httpx.Response:
            response = self._send(req)
            if response.status_code in _STRICT_FATAL_STATUSES:
                raise FatalAuthError(response.status_code, req.url, body=response.text[:500])
            return response

        def _give_up(state: RetryCallState) -> None:
            outcome = state.outcome
            exc = outcome.exception() if outcome is not None else None
            last = None if exc is not None or outcome is None else outcome.result()
            raise RequestFailedError(
                request.url, state.attempt_number, getattr(last, "status_code", None)
            ) from exc

        retrying = self._retrying("call_with_retries_strict", max_retries, retry_error_callback=_give_up)
        return retrying(_attempt, request)

    def _send_quietly(self, request: HttpRequest) -> Optional[httpx.Response]:
        try:
            return self._send(request)
        except httpx.TransportError as e:
            log_event(logger, "batch_item_transport_error", level="warning", url=request.url, uid=request.uid, error=str(e))
            return None

    def call_in_batches(self, requests: Sequence[HttpRequest]) -> List[Optional[httpx.Response]]:
        requests = list(requests)
        results: List[Optional[httpx.Response]] = []
        total_batches = (len(requests) + self.batch_size - 1) // self.batch_size
        for batch_no, start in enumerate(range(0, len(requests), self.batch_size), start=1):
            batch = requests[start : start + self.batch_size]
            if self.progress is not None:
                self.progress.update_progress(
                    f"Processing batch {batch_no} of {total_batches}.", increment_step=False
                )
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                responses = list(pool.map(self._send_quietly, batch))

            failed = 0
            for i, (request, response) in enumerate(zip(batch, responses)):
                if _is_success(response):
                    continue
                failed += 1
                retried = self.call_with_retries(request)
                if retried is not None:
                    responses[i] = retried
            log_event(
                logger,
                "request_batch_done",
                batch=batch_no,
                batches=total_batches,
                size=len(batch),
                retried=failed,
            )
            results.extend(responses)
        return results
