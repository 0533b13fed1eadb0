"""
Continuation driver.

Run:
  export REDIS_URL=redis://localhost:6379/0
  export ORCHESTRATOR_FACTORY=mypackage.wiring:build_orchestrator
  python3 -m assessment_agent.workers.run_worker

Notes:
- Polls the trigger host, claims due one-shot triggers and invokes the
  entry point they are bound to (`process_selected_assignment`).
- Without REDIS_URL only triggers created in this same process are seen.
"""

from __future__ import annotations

import logging
import signal
import time
from typing import Callable, Dict, Optional

from assessment_agent.core.orchestrator import ENTRY_POINT, RunOrchestrator, load_orchestrator_factory
from assessment_agent.services.scheduler import TriggerHost, get_trigger_host
from assessment_agent.utils.logging_setup import configure_logging
from assessment_agent.utils.observability import log_event
from assessment_agent.utils.settings import get_settings

logger = logging.getLogger(__name__)


class _Stopper:
    stop = False


def _install_signal_handlers(stopper: _Stopper) -> None:
    def _handle(signum, frame):  # noqa: ARG001
        stopper.stop = True

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def build_entry_points(orchestrator: RunOrchestrator) -> Dict[str, Callable[[], object]]:
    return {ENTRY_POINT: orchestrator.run}


def poll_once(host: TriggerHost, entry_points: Dict[str, Callable[[], object]], *, now: Optional[float] = None) -> int:
    """Invoke every due trigger once; returns how many entry points ran."""
    ran = 0
    for trigger in host.pop_due(now):
        fn = entry_points.get(trigger.entry_point)
        if fn is None:
            log_event(
                logger,
                "run_worker_unknown_entry",
                level="warning",
                trigger_id=trigger.trigger_id,
                entry_point=trigger.entry_point,
            )
            host.remove_by_id(trigger.trigger_id)
            continue
        started = time.monotonic()
        log_event(logger, "run_worker_entry_start", trigger_id=trigger.trigger_id, entry_point=trigger.entry_point)
        try:
            outcome = fn()
            log_event(
                logger,
                "run_worker_entry_done",
                trigger_id=trigger.trigger_id,
                outcome=getattr(outcome, "value", outcome),
                elapsed_ms=int((time.monotonic() - started) * 1000),
            )
        except Exception as e:
            log_event(
                logger,
                "run_worker_entry_failed",
                level="error",
                trigger_id=trigger.trigger_id,
                entry_point=trigger.entry_point,
                error_type=type(e).__name__,
                error=str(e),
            )
        ran += 1
    return ran


def run_loop(
    host: TriggerHost,
    entry_points: Dict[str, Callable[[], object]],
    stopper: _Stopper,
    *,
    poll_interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    while not stopper.stop:
        try:
            poll_once(host, entry_points)
        except Exception as e:
            # Trigger store hiccup; keep polling.
            log_event(logger, "run_worker_poll_failed", level="error", error=str(e))
        sleep(poll_interval)


def main() -> int:
    settings = get_settings()
    configure_logging(settings, log_file_path="logs/run_worker.log")

    try:
        orchestrator = load_orchestrator_factory()()
    except Exception as e:
        logger.error("Cannot build orchestrator for run worker: %s", e)
        return 2

    host = get_trigger_host()
    stopper = _Stopper()
    _install_signal_handlers(stopper)

    log_event(logger, "run_worker_started", host=type(host).__name__, poll_interval=settings.worker_poll_interval_seconds)
    run_loop(
        host,
        build_entry_points(orchestrator),
        stopper,
        poll_interval=settings.worker_poll_interval_seconds,
    )
    log_event(logger, "run_worker_stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
