"""Tests for the cooperative frame scheduler."""

import pytest

from irradiance_baker.core.errors import DeviceFailure
from irradiance_baker.core.scheduler import BakeScheduler


class CountingTask:
    def __init__(self, status="baked"):
        self.status = status
        self.ticks = 0

    def tick(self):
        self.ticks += 1
        return self.status


class FailingTask:
    def tick(self):
        raise DeviceFailure("lost device")


def test_every_task_ticks_once_per_frame():
    scheduler = BakeScheduler()
    tasks = {name: CountingTask(name) for name in ("a", "b", "c")}
    for name, task in tasks.items():
        scheduler.add(name, task)

    statuses = scheduler.frame()

    assert list(statuses) == ["a", "b", "c"]
    assert statuses == {"a": "a", "b": "b", "c": "c"}
    assert all(task.ticks == 1 for task in tasks.values())
    assert scheduler.frames == 1


def test_budget_rotates_round_robin():
    scheduler = BakeScheduler(max_ticks_per_frame=2)
    for name in ("a", "b", "c"):
        scheduler.add(name, CountingTask())

    order = [list(scheduler.frame()) for _ in range(3)]

    assert order == [["a", "b"], ["c", "a"], ["b", "c"]]


def test_cancel_stops_all_work():
    messages = []
    scheduler = BakeScheduler(on_progress=messages.append)
    task = CountingTask()
    scheduler.add("a", task)
    scheduler.frame()

    scheduler.cancel()
    scheduler.cancel()

    assert scheduler.frame() == {}
    assert scheduler.run(5) == []
    assert task.ticks == 1
    assert scheduler.cancelled
    assert len(messages) == 1


def test_run_returns_history():
    scheduler = BakeScheduler()
    scheduler.add("a", CountingTask())
    history = scheduler.run(3)
    assert history == [{"a": "baked"}] * 3


def test_failures_propagate():
    scheduler = BakeScheduler()
    after = CountingTask()
    scheduler.add("bad", FailingTask())
    scheduler.add("after", after)

    with pytest.raises(DeviceFailure):
        scheduler.frame()
    assert after.ticks == 0


def test_duplicate_and_removed_tasks():
    scheduler = BakeScheduler()
    scheduler.add("a", CountingTask())
    with pytest.raises(ValueError):
        scheduler.add("a", CountingTask())

    scheduler.remove("a")
    assert scheduler.task_names == []
    assert scheduler.frame() == {}


def test_budget_must_be_positive():
    with pytest.raises(ValueError):
        BakeScheduler(max_ticks_per_frame=0)
