from __future__ import annotations

from assessment_agent.services.scheduler import InMemoryTriggerHost
from assessment_agent.workers.run_worker import _Stopper, poll_once, run_loop


def test_poll_once_invokes_due_entry_points_once() -> None:
    host = InMemoryTriggerHost()
    host.create_one_shot("process_selected_assignment", 5.0)
    host.create_one_shot("process_selected_assignment", 50.0)
    calls = []

    assert poll_once(host, {"process_selected_assignment": lambda: calls.append(1)}, now=10.0) == 1
    assert poll_once(host, {"process_selected_assignment": lambda: calls.append(1)}, now=10.0) == 0
    assert calls == [1]


def test_entry_point_errors_do_not_stop_polling() -> None:
    host = InMemoryTriggerHost()
    host.create_one_shot("process_selected_assignment", 0.0)
    host.create_one_shot("process_selected_assignment", 0.0)

    def boom():
        raise RuntimeError("pipeline exploded")

    assert poll_once(host, {"process_selected_assignment": boom}, now=1.0) == 2


def test_unknown_entry_points_are_dropped() -> None:
    host = InMemoryTriggerHost(max_triggers=1)
    host.create_one_shot("legacy_entry", 0.0)
    assert poll_once(host, {}, now=1.0) == 0
    # Removed, so the quota slot is free again.
    assert host.create_one_shot("legacy_entry", 0.0).trigger_id


def test_run_loop_stops_when_flagged() -> None:
    host = InMemoryTriggerHost()
    stopper = _Stopper()
    sleeps = []

    def _sleep(seconds):
        sleeps.append(seconds)
        stopper.stop = True

    run_loop(host, {}, stopper, poll_interval=0.5, sleep=_sleep)
    assert sleeps == [0.5]
