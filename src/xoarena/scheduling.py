"""Deferred callbacks used for the engine's thinking delay."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Protocol

Callback = Callable[[], None]


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callback) -> Handle: ...


class TimerScheduler:
    """Runs each callback on a daemon ``threading.Timer``."""

    def call_later(self, delay: float, callback: Callback) -> Handle:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return timer


@dataclass
class ManualCall:
    delay: float
    callback: Callback = field(repr=False)
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Collects callbacks until ``run_pending`` is called.

    Useful in tests and when the host drives its own event loop.
    """

    def __init__(self) -> None:
        self.calls: List[ManualCall] = []

    def call_later(self, delay: float, callback: Callback) -> Handle:
        call = ManualCall(delay=delay, callback=callback)
        self.calls.append(call)
        return call

    @property
    def pending(self) -> List[ManualCall]:
        return [call for call in self.calls if not call.cancelled]

    def run_pending(self) -> int:
        """Run queued callbacks (including ones queued while running). Returns how many ran."""
        ran = 0
        while True:
            calls, self.calls = self.pending, []
            if not calls:
                return ran
            for call in calls:
                if call.cancelled:
                    continue
                call.cancelled = True
                call.callback()
                ran += 1
