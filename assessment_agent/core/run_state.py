from __future__ import annotations

from enum import Enum


class RunState(str, Enum):
    IDLE = "IDLE"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RunEvent(str, Enum):
    SCHEDULE = "schedule"
    START = "start"
    SUCCEED = "succeed"
    FAIL = "fail"
    RESET = "reset"


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    BUSY = "busy"


class InvalidTransitionError(ValueError):
    pass


_TRANSITIONS = {
    (RunState.IDLE, RunEvent.SCHEDULE): RunState.SCHEDULED,
    (RunState.SCHEDULED, RunEvent.START): RunState.RUNNING,
    # Continuations fired by the host arrive without a prior schedule in this process.
    (RunState.IDLE, RunEvent.START): RunState.RUNNING,
    (RunState.RUNNING, RunEvent.SUCCEED): RunState.COMPLETED,
    (RunState.RUNNING, RunEvent.FAIL): RunState.FAILED,
    (RunState.SCHEDULED, RunEvent.FAIL): RunState.FAILED,
    (RunState.COMPLETED, RunEvent.RESET): RunState.IDLE,
    (RunState.FAILED, RunEvent.RESET): RunState.IDLE,
}


def transition(state: RunState | str, event: RunEvent | str) -> RunState:
    """Next state for `event`, or InvalidTransitionError."""
    current = RunState(state)
    ev = RunEvent(event)
    nxt = _TRANSITIONS.get((current, ev))
    if nxt is None:
        raise InvalidTransitionError(f"{ev.value} is not allowed from {current.value}")
    return nxt
