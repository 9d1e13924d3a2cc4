from __future__ import annotations

import threading

import pytest

from evgraph.scheduler import PeriodicTask


def test_run_once_counts_failures() -> None:
    calls = []

    def flaky() -> None:
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("boom")

    task = PeriodicTask("flaky", 60, flaky)
    for _ in range(3):
        task.run_once()

    assert task.runs == 3
    assert task.failures == 1
    assert task.last_run is not None


def test_background_loop_runs_until_stopped() -> None:
    ran = threading.Event()
    task = PeriodicTask("tick", 0.01, ran.set)

    task.start()
    assert ran.wait(timeout=5)
    task.stop(timeout=5)

    assert not task.running
    assert task.runs >= 1


def test_delayed_start_does_not_run_before_interval() -> None:
    task = PeriodicTask("anchor", 60, lambda: None, run_immediately=False)

    task.start()
    task.stop(timeout=5)

    assert task.runs == 0


def test_start_twice_is_an_error() -> None:
    task = PeriodicTask("tick", 60, lambda: None, run_immediately=False)
    task.start()
    try:
        with pytest.raises(RuntimeError, match="already running"):
            task.start()
    finally:
        task.stop(timeout=5)


@pytest.mark.parametrize(("interval", "func"), [(0, lambda: None), (-1, lambda: None), (1, "not callable")])
def test_invalid_task(interval: float, func) -> None:
    with pytest.raises(ValueError):
        PeriodicTask("bad", interval, func)
