"""
Cooperative frame scheduler.

Nothing in the bake runs on its own thread. Every component exposes a
bounded-cost tick() and the scheduler calls them from the caller's frame
loop — one tick per task per frame — so the display loop never stalls.

With many concurrent bakes, `max_ticks_per_frame` caps the number of ticks a
single frame may spend. The starting task rotates every frame so every task
gets its turn (round-robin time slicing).

Cancellation takes effect between ticks: after cancel(), frame() does no
work at all and every buffer keeps whatever it last held.
"""

from dataclasses import dataclass
from typing import Callable


@dataclass
class ScheduledTask:
    """A named tickable registered with the scheduler."""
    name: str
    target: object


class BakeScheduler:
    """
    Pull-based driver: call frame() once per display frame.

    Args:
        max_ticks_per_frame: maximum task ticks per frame (None = every task).
        on_progress:         optional callback(str) for status messages.
    """

    def __init__(self, max_ticks_per_frame: int | None = None,
                 on_progress: Callable[[str], None] | None = None):
        if max_ticks_per_frame is not None and max_ticks_per_frame <= 0:
            raise ValueError("max_ticks_per_frame must be positive")
        self.max_ticks_per_frame = max_ticks_per_frame
        self._on_progress = on_progress or (lambda message: None)
        self._tasks: list[ScheduledTask] = []
        self._next_start = 0
        self._cancelled = False
        self.frames = 0

    def add(self, name: str, target):
        """Register a task; tasks tick in registration order each frame."""
        if any(task.name == name for task in self._tasks):
            raise ValueError(f"A task named '{name}' is already scheduled")
        self._tasks.append(ScheduledTask(name, target))

    def remove(self, name: str):
        self._tasks = [task for task in self._tasks if task.name != name]
        self._next_start = 0

    @property
    def task_names(self) -> list[str]:
        return [task.name for task in self._tasks]

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        """Stop ticking. Takes effect at the next frame boundary."""
        if not self._cancelled:
            self._cancelled = True
            self._on_progress("Bake cancelled; buffers keep their last written state")

    def frame(self) -> dict[str, str]:
        """
        Run one frame of ticks.

        Returns:
            task name → TickStatus for every task ticked this frame, in tick
            order. Empty after cancel().

        Raises:
            Whatever a task's tick raises (e.g. DeviceFailure); the frame
            stops at the failing task.
        """
        if self._cancelled or not self._tasks:
            return {}

        count = len(self._tasks)
        budget = count if self.max_ticks_per_frame is None else min(count, self.max_ticks_per_frame)

        # With a budget smaller than the task list, rotate the starting point
        # so later tasks are not starved.
        start = self._next_start % count if budget < count else 0
        statuses = {}
        for step in range(budget):
            task = self._tasks[(start + step) % count]
            statuses[task.name] = task.target.tick()

        self._next_start = (start + budget) % count
        self.frames += 1
        return statuses

    def run(self, frames: int) -> list[dict[str, str]]:
        """Run `frames` frames back to back (stops early if cancelled)."""
        history = []
        for _ in range(frames):
            if self._cancelled:
                break
            history.append(self.frame())
        return history
