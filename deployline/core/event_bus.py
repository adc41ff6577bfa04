"""Explicit message passing for the pipeline.

``TriggerQueue`` carries trigger events *into* the controller; ``EventBus``
carries transition events *out* to observers. Both are plain objects
passed in by whoever wires the pipeline together; there are no global
listeners.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from deployline.models.events import EventKind, TransitionEvent, TriggerEvent

logger = logging.getLogger(__name__)

TransitionHandler = Callable[[TransitionEvent], None]


class QueueClosedError(RuntimeError):
    """Raised when putting onto a closed trigger queue."""


class TriggerQueue:
    """FIFO of ``TriggerEvent``s awaiting execution.

    ``get()`` returns ``None`` once the queue is closed and drained.
    """

    def __init__(self) -> None:
        self._queue: queue.Queue[TriggerEvent | None] = queue.Queue()
        self._closed = threading.Event()

    def put(self, event: TriggerEvent) -> None:
        if self._closed.is_set():
            raise QueueClosedError("Trigger queue is closed")
        logger.info("Queued trigger %s for revision %s", event.event_id, event.revision)
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> TriggerEvent | None:
        """Block for the next event. Raises ``queue.Empty`` on timeout."""
        event = self._queue.get(timeout=timeout)
        if event is None:
            # Re-post the sentinel so every consumer sees the close.
            self._queue.put(None)
        return event

    def close(self) -> None:
        if not self._closed.is_set():
            self._closed.set()
            self._queue.put(None)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()


class EventBus:
    """Fans transition events out to subscribed handlers.

    Handlers run synchronously in publish order. A failing handler is
    logged and skipped so that observability never changes a pipeline
    outcome.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[EventKind | None, list[TransitionHandler]] = {}

    def subscribe(self, handler: TransitionHandler, kind: EventKind | None = None) -> None:
        """Register *handler* for one kind, or for every kind when ``None``."""
        with self._lock:
            self._handlers.setdefault(kind, []).append(handler)

    def unsubscribe(self, handler: TransitionHandler, kind: EventKind | None = None) -> None:
        with self._lock:
            handlers = self._handlers.get(kind, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: TransitionEvent) -> int:
        """Deliver *event*; returns how many handlers accepted it."""
        with self._lock:
            handlers = list(self._handlers.get(None, [])) + list(
                self._handlers.get(event.kind, [])
            )

        delivered = 0
        for handler in handlers:
            try:
                handler(event)
                delivered += 1
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Event handler %r failed for %s of execution %s",
                    handler,
                    event.kind.value,
                    event.execution_id,
                )
        return delivered
