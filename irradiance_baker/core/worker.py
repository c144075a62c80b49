"""
Background bake worker.

This module provides the QThread subclass that drives a BakeScheduler on a
background thread, for applications that would rather not call frame() from
their own render loop.

Communication between the worker thread and the UI main thread is handled
entirely through Qt signals. Qt's signal/slot mechanism automatically
marshals cross-thread signals via QueuedConnection (the default when
sender and receiver live on different threads), so:
    - The worker never touches any widget or texture consumer directly
    - Slot methods in the UI always execute on the main thread
    - No explicit mutex, lock, or QMetaObject.invokeMethod is needed

Each accumulation buffer has exactly one writer (its renderer, ticked from
this thread) and the compositor only reads; a reader may observe a buffer
one texel behind, never a torn pass.

The worker receives a BakeScheduler via constructor injection rather than
creating one itself. This keeps bake wiring in the session layer and makes
the worker testable with stub tasks.
"""

import time

from PySide6.QtCore import QThread, Signal

from irradiance_baker.core.errors import BakeError
from irradiance_baker.core.scheduler import BakeScheduler
from irradiance_baker.core.settings import TickStatus


class BakeWorker(QThread):
    """
    Runs scheduler frames on a background thread until cancelled.

    Signals:
        frame_completed(int)  — Emitted after every frame. Payload is the frame count.
        pass_completed(str)   — A renderer task finished a full pass. Payload is
                                the task name.
        progress(str)         — Status messages.
        error(str)            — A tick raised; the worker stops after emitting.
        bake_finished()       — The loop ended without error (cancelled, or
                                `max_passes` reached).

    `max_passes` is reached once every task in `pass_tasks` (default: every
    scheduled task) has completed that many passes.
    """

    frame_completed = Signal(int)
    pass_completed = Signal(str)
    progress = Signal(str)
    error = Signal(str)
    bake_finished = Signal()

    def __init__(self, scheduler: BakeScheduler, max_passes: int | None = None,
                 frame_interval_s: float = 0.0, max_frames: int | None = None,
                 pass_tasks: list[str] | None = None):
        super().__init__()
        self._scheduler = scheduler
        self._max_passes = max_passes
        # Tasks whose passes count towards max_passes. Every one of them must
        # reach the limit, including those that have not finished a pass yet.
        self._pass_tasks = list(scheduler.task_names if pass_tasks is None else pass_tasks)
        self._max_frames = max_frames
        self._frame_interval_s = frame_interval_s

        # Cooperative cancellation flag. Checked between frames (never
        # mid-tick). Python's GIL makes single boolean reads/writes
        # thread-safe, so no explicit lock is needed for this flag.
        self._cancelled = False

    def cancel(self):
        """Request cancellation. Takes effect between frames."""
        self._cancelled = True

    def run(self):
        """
        Tick the scheduler until cancelled, out of frames or out of passes.

        This method runs on the BACKGROUND THREAD. On error, the loop stops
        at the failing frame and emits the error signal. Failures are never
        retried: a device failure will not fix itself on the next tick.
        """
        passes = {name: 0 for name in self._pass_tasks}
        frames = 0

        while not self._cancelled and not self._scheduler.cancelled:
            if self._max_frames is not None and frames >= self._max_frames:
                break

            try:
                statuses = self._scheduler.frame()
            except BakeError as e:
                self.error.emit(str(e))
                return
            except Exception as e:
                # Unexpected failures stop the bake the same way.
                self.error.emit(f"Unexpected bake failure: {e}")
                return

            frames += 1
            self.frame_completed.emit(frames)

            for name, status in statuses.items():
                if status == TickStatus.PASS_COMPLETE:
                    passes[name] = passes.get(name, 0) + 1
                    self.pass_completed.emit(name)
                    self.progress.emit(f"{name}: pass {passes[name]} complete")

            if self._max_passes is not None and self._pass_tasks \
                    and all(passes[name] >= self._max_passes for name in self._pass_tasks):
                break

            if self._frame_interval_s > 0:
                time.sleep(self._frame_interval_s)

        self.bake_finished.emit()
