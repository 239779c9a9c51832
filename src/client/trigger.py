"""
Trigger Evaluator.

Decides the moment a dormant popup becomes visible: after a fixed delay or
once the visitor has scrolled far enough. Never talks to the server.
"""

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping, Optional, Protocol

from client.scheduler import Scheduler, TimerHandle
from utils.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_DELAY_SECONDS = 2
DEFAULT_SCROLL_PERCENT = 50


@dataclass(frozen=True)
class ScrollMetrics:
    scroll_top: float
    document_height: float
    viewport_height: float


ScrollListener = Callable[[ScrollMetrics], None]


class ScrollSource(Protocol):
    def add_listener(self, listener: ScrollListener) -> None:
        ...

    def remove_listener(self, listener: ScrollListener) -> None:
        ...


def scroll_percentage(metrics: ScrollMetrics) -> int:
    """Rounded scroll depth; a page that cannot scroll counts as 0%."""
    scrollable = metrics.document_height - metrics.viewport_height
    if scrollable <= 0:
        return 0
    return round(metrics.scroll_top / scrollable * 100)


def _whole_number(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


class TriggerEvaluator:
    """Arms one trigger and calls ``on_show`` at most once."""

    def __init__(
        self,
        trigger_config: Optional[Mapping[str, Any]],
        on_show: Callable[[], None],
        scheduler: Scheduler,
        scroll_source: Optional[ScrollSource] = None,
    ):
        self.config = dict(trigger_config or {})
        self.on_show = on_show
        self.scheduler = scheduler
        self.scroll_source = scroll_source
        self._fired = False
        self._lock = Lock()
        self._timer: Optional[TimerHandle] = None
        self._listening = False

    @property
    def fired(self) -> bool:
        return self._fired

    def arm(self) -> None:
        trigger_type = self.config.get("type")
        value = self.config.get("value")

        if trigger_type == "scroll" and self.scroll_source is not None:
            self._threshold = _whole_number(value, DEFAULT_SCROLL_PERCENT)
            self.scroll_source.add_listener(self._on_scroll)
            self._listening = True
            logger.debug("Scroll trigger armed", extra={"threshold": self._threshold})
            return

        if trigger_type == "delay":
            seconds = _whole_number(value, DEFAULT_DELAY_SECONDS)
        else:
            # Unknown types, and scroll without a scroll source, use the default delay.
            seconds = DEFAULT_DELAY_SECONDS
        self._timer = self.scheduler.call_later(seconds, self._fire)
        logger.debug("Delay trigger armed", extra={"seconds": seconds})

    def disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._stop_listening()

    def _on_scroll(self, metrics: ScrollMetrics) -> None:
        if scroll_percentage(metrics) >= self._threshold:
            self._stop_listening()
            self._fire()

    def _stop_listening(self) -> None:
        if self._listening and self.scroll_source is not None:
            self.scroll_source.remove_listener(self._on_scroll)
            self._listening = False

    def _fire(self) -> None:
        with self._lock:
            if self._fired:
                return
            self._fired = True
        self._timer = None
        self.on_show()
