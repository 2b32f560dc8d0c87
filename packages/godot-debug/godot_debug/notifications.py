"""Step notifications for the front end.

Each pipeline step reports ``start`` / ``success`` / ``failure``.  Events are
logged and handed to subscribed listeners (an editor toast, an MCP reply, a
CLI printer...).
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

START = "start"
SUCCESS = "success"
FAILURE = "failure"

# Events kept for late readers; older ones are dropped.
HISTORY_LIMIT = 500


@dataclass(frozen=True)
class StepEvent:
    step: str
    status: str
    message: str
    elapsed: float | None = None


Listener = Callable[[StepEvent], None]


class Notifier:
    """Fan-out of :class:`StepEvent` objects with operation timing."""

    def __init__(self, history_limit: int = HISTORY_LIMIT) -> None:
        self._listeners: list[Listener] = []
        self._started: dict[str, float] = {}
        self.history: deque[StepEvent] = deque(maxlen=history_limit)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def start(self, step: str, message: str) -> None:
        self._started[step] = time.monotonic()
        logger.info(message)
        self._emit(StepEvent(step, START, message))

    def success(self, step: str, message: str) -> None:
        logger.info(message)
        self._emit(StepEvent(step, SUCCESS, message, self._elapsed(step)))

    def failure(self, step: str, message: str) -> None:
        logger.error(message)
        self._emit(StepEvent(step, FAILURE, message, self._elapsed(step)))

    def overdue(self, threshold: float = 30.0) -> list[tuple[str, float]]:
        """Return (step, elapsed) for operations running past *threshold*."""
        now = time.monotonic()
        late = [
            (step, now - started)
            for step, started in self._started.items()
            if now - started > threshold
        ]
        for step, elapsed in late:
            logger.warning("%s is taking longer than expected (%.1fs)", step, elapsed)
        return late

    def _elapsed(self, step: str) -> float | None:
        started = self._started.pop(step, None)
        return None if started is None else time.monotonic() - started

    def _emit(self, event: StepEvent) -> None:
        self.history.append(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in notification listener")
