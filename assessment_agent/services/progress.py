"""
Run progress record, polled by the UI through GET /api/v1/progress.

Stored under `progress:{scope}` in the shared cache so the API process can
read what the worker process writes.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Type

from assessment_agent.utils.cache import BaseCache, get_cache_store
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)


def progress_key(scope: str) -> str:
    return f"progress:{scope}"


class ProgressTracker:
    def __init__(self, scope: str, store: Optional[BaseCache] = None, *, ttl_seconds: Optional[int] = None):
        self.scope = scope
        self.key = progress_key(scope)
        self._store = store
        self.ttl_seconds = int(ttl_seconds or get_settings().progress_ttl_seconds)

    @property
    def store(self) -> BaseCache:
        if self._store is None:
            self._store = get_cache_store()
        return self._store

    def _write(self, data: Dict[str, Any]) -> None:
        data["timestamp"] = datetime.now().isoformat()
        try:
            self.store.set(self.key, data, ttl_seconds=self.ttl_seconds)
        except Exception as e:
            log_event(logger, "progress_write_failed", level="warning", scope=self.scope, error=str(e))

    def get_status(self) -> Dict[str, Any]:
        try:
            data = self.store.get(self.key)
        except Exception as e:
            log_event(logger, "progress_read_failed", level="warning", scope=self.scope, error=str(e))
            data = None
        if not isinstance(data, dict):
            return {"step": 0, "message": "No progress yet.", "completed": False, "error": None, "state": "IDLE"}
        return data

    def start_tracking(self) -> None:
        state = self.get_status().get("state") or "IDLE"
        self._write({"step": 0, "message": "Starting...", "completed": False, "error": None, "state": state})

    def update_progress(self, message: str, increment_step: bool = True) -> None:
        data = dict(self.get_status())
        if increment_step:
            data["step"] = int(data.get("step") or 0) + 1
        data["message"] = message
        self._write(data)

    def set_state(self, state: str) -> None:
        data = dict(self.get_status())
        data["state"] = str(state)
        self._write(data)

    def complete(self) -> None:
        data = dict(self.get_status())
        data.update({"completed": True, "message": "Assessment run completed successfully."})
        self._write(data)

    def log_error(self, message: str, details: Any = None) -> None:
        data = dict(self.get_status())
        data["error"] = message if details is None else {"message": message, "details": details}
        data["completed"] = False
        self._write(data)
        log_event(logger, "progress_error", level="error", scope=self.scope, message=message, details=details)

    def log_and_raise(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        exc_type: Type[Exception] = RuntimeError,
    ) -> None:
        self.log_error(message, details=str(cause) if cause else None)
        raise exc_type(message) from cause

    def clear(self) -> None:
        try:
            self.store.delete(self.key)
        except Exception as e:
            log_event(logger, "progress_clear_failed", level="warning", scope=self.scope, error=str(e))
