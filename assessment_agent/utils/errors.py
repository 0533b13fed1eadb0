from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    # 4xx - Client / configuration errors
    INVALID_REQUEST = "E4000"
    MISSING_RUN_PARAMETERS = "E4001"
    UNSUPPORTED_DOCUMENT_TYPE = "E4002"
    NOT_FOUND = "E4004"
    UNAUTHORIZED = "E4010"
    FORBIDDEN = "E4030"
    CONFLICT = "E4090"
    VALIDATION_ERROR = "E4220"
    RATE_LIMITED = "E4290"

    # 5xx - Service errors
    SERVICE_ERROR = "E5000"
    BACKEND_UNAVAILABLE = "E5001"
    TRIGGER_QUOTA_EXCEEDED = "E5002"
    URL_FETCH_FAILED = "E5003"
    REDIS_UNAVAILABLE = "E5004"


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    FATAL_CONFIG = "fatal_config"
    FATAL_AUTH = "fatal_auth"
    BEST_EFFORT = "best_effort"


class AssessmentAgentError(Exception):
    """Base error for the assessment agent."""

    code: ErrorCode = ErrorCode.SERVICE_ERROR
    kind: ErrorKind = ErrorKind.TRANSIENT


class RequestFailedError(AssessmentAgentError):
    """A request still failed after every retry attempt was spent."""

    code = ErrorCode.BACKEND_UNAVAILABLE

    def __init__(self, url: str, attempts: int, status_code: Optional[int] = None):
        self.url = url
        self.attempts = attempts
        self.status_code = status_code
        super().__init__(
            f"Request to {url} failed after {attempts} attempts"
            + (f" (last status {status_code})" if status_code is not None else "")
        )


class FatalAuthError(AssessmentAgentError):
    """Authentication/permission failure; retrying cannot help."""

    code = ErrorCode.FORBIDDEN
    kind = ErrorKind.FATAL_AUTH

    def __init__(self, status_code: int, url: str, body: str = ""):
        self.status_code = int(status_code)
        self.url = url
        self.body = body
        self.code = error_code_for_http_status(self.status_code)
        super().__init__(f"Request to {url} failed with status {status_code}")


class FatalConfigError(AssessmentAgentError):
    """Run cannot proceed because its inputs are missing or unusable."""

    code = ErrorCode.MISSING_RUN_PARAMETERS
    kind = ErrorKind.FATAL_CONFIG

    def __init__(self, message: str, *, code: ErrorCode | None = None):
        if code is not None:
            self.code = code
        super().__init__(message)


class TriggerQuotaExceededError(AssessmentAgentError):
    """Host continuation quota is still exhausted after purging our own triggers."""

    code = ErrorCode.TRIGGER_QUOTA_EXCEEDED
    kind = ErrorKind.FATAL_CONFIG


def error_code_for_http_status(status_code: int) -> ErrorCode:
    if status_code == 401:
        return ErrorCode.UNAUTHORIZED
    if status_code == 403:
        return ErrorCode.FORBIDDEN
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 409:
        return ErrorCode.CONFLICT
    if status_code == 422:
        return ErrorCode.VALIDATION_ERROR
    if status_code == 429:
        return ErrorCode.RATE_LIMITED
    if 400 <= int(status_code) < 500:
        return ErrorCode.INVALID_REQUEST
    return ErrorCode.SERVICE_ERROR


def build_error_payload(
    *,
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Canonical error shape for HTTP JSON responses and progress errors."""
    payload: Dict[str, Any] = {"code": code.value, "error": str(message), "message": str(message)}
    if details is not None:
        payload["details"] = details
    if request_id:
        payload["request_id"] = str(request_id)
    return payload
