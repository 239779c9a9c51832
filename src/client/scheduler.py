"""One-shot timers for delay triggers and the post-success close."""

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class ThreadingScheduler:
    """Runs each callback once on a daemon ``threading.Timer``."""

    def call_later(self, seconds: float, callback: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0.0, float(seconds)), callback)
        timer.daemon = True
        timer.start()
        return timer
