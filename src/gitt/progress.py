"""Progress reporting for long-running git operations.

Git reports progress in units (objects received, deltas resolved, files
checked out). ProgressReporter turns those into coarse percentage events,
one every 5% at most, stamped with a process-wide sequence number so that
consumers can drop events that arrive late.
"""

from __future__ import annotations

import itertools
import threading
from typing import Callable

from .models import ProgressEvent

STEP_PERCENT = 5


class SequenceCounter:
    """Strictly increasing numbers for the lifetime of the process."""

    def __init__(self, start: int = 0):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


class ProgressReporter:
    """Unit-based progress monitor for a single repository.

    Every begin_task() emits a 0% event. update() accumulates units and
    emits when the percentage moved by at least STEP_PERCENT or reached
    100. Tasks with an unknown total (0 units) are silent.
    """

    def __init__(
        self,
        receiver_id: str,
        sink: Callable[[ProgressEvent], None],
        sequence: SequenceCounter,
    ):
        self.receiver_id = receiver_id
        self._sink = sink
        self._sequence = sequence
        self.task: str | None = None
        self.total_units = 0
        self.current_units = 0
        self.last_percent = 0

    def begin_task(self, task: str, total_units: int) -> None:
        self.task = task
        self.total_units = total_units
        self.current_units = 0
        self.last_percent = 0
        self._emit(0)

    def update(self, units: int) -> None:
        if self.total_units == 0:
            return
        self.current_units += units
        percent = self.current_units * 100 // self.total_units
        if percent >= self.last_percent + STEP_PERCENT or percent == 100:
            self.last_percent = percent
            self._emit(percent)

    def end_task(self) -> None:
        """Task boundary hook for GitProgressParser; update() already emitted the final 100%."""

    def _emit(self, percent: int) -> None:
        event = ProgressEvent(
            receiver_id=self.receiver_id,
            task=self.task or "",
            progress=percent,
            sequence=self._sequence.next(),
        )
        self._sink(event)


class ProgressBoard:
    """Latest progress per repository, ignoring stale deliveries.

    Events with a sequence number not greater than the last one accepted
    are discarded, whichever repository they belong to.
    """

    def __init__(self):
        self.last_sequence = -1
        self.rows: dict[str, tuple[str, int]] = {}
        self._lock = threading.Lock()

    def accept(self, event: ProgressEvent) -> bool:
        with self._lock:
            if event.sequence <= self.last_sequence:
                return False
            self.last_sequence = event.sequence
            self.rows[event.receiver_id] = (event.task, event.progress)
            return True

    def get(self, receiver_id: str) -> tuple[str, int] | None:
        with self._lock:
            return self.rows.get(receiver_id)
