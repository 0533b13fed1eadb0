"""
Persisted run parameters (the schedule -> run hand-off).

One key per document scope holding one JSON value, so a record is either
fully present or absent.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from assessment_agent.models.schemas import RunParameters
from assessment_agent.utils.cache import BaseCache, get_cache_store
from assessment_agent.utils.observability import log_event

logger = logging.getLogger(__name__)


def run_params_key(scope: str) -> str:
    return f"runparams:{scope}"


class RunParameterStore:
    def __init__(self, scope: str, store: Optional[BaseCache] = None):
        self.scope = scope
        self.key = run_params_key(scope)
        self._store = store

    @property
    def store(self) -> BaseCache:
        if self._store is None:
            self._store = get_cache_store()
        return self._store

    def save(self, params: RunParameters) -> None:
        self.store.set(self.key, params.model_dump(mode="json"))

    def load(self) -> Optional[RunParameters]:
        """Validated parameters, or None when missing or unusable."""
        raw = self.store.get(self.key)
        if not isinstance(raw, dict):
            return None
        try:
            return RunParameters.model_validate(raw)
        except ValidationError as e:
            log_event(logger, "run_params_invalid", level="error", scope=self.scope, error=str(e))
            return None

    def delete(self) -> None:
        self.store.delete(self.key)
