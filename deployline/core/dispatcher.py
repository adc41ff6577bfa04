"""TriggerDispatcher — feeds queued trigger events to the controller.

Each queued event becomes one execution on a worker thread. Executions
for different commits run concurrently up to ``max_workers``; extra
commits wait in the queue. Nothing in flight is ever cancelled.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from deployline.core.controller import PipelineController
from deployline.core.event_bus import TriggerQueue
from deployline.models.events import TriggerEvent
from deployline.models.results import PipelineResult

logger = logging.getLogger(__name__)

ResultCallback = Callable[[PipelineResult], None]


class TriggerDispatcher:
    """Pulls ``TriggerEvent``s off a ``TriggerQueue`` and runs them.

    Usage
    -----
    >>> dispatcher = TriggerDispatcher(controller, trigger_queue, max_workers=2)
    >>> dispatcher.start()
    >>> trigger_queue.put(TriggerEvent(revision="abc123"))
    >>> results = dispatcher.drain()
    """

    def __init__(
        self,
        controller: PipelineController,
        trigger_queue: TriggerQueue,
        *,
        max_workers: int = 4,
        on_result: ResultCallback | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._controller = controller
        self._queue = trigger_queue
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="execution")
        self._on_result = on_result
        self._futures: list[tuple[TriggerEvent, Future[PipelineResult]]] = []
        self._futures_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("Dispatcher already started")
        self._thread = threading.Thread(target=self._loop, name="trigger-dispatcher", daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            event = self._queue.get()
            if event is None:
                break
            future = self._pool.submit(self._controller.run, event)
            if self._on_result is not None:
                future.add_done_callback(self._deliver)
            with self._futures_lock:
                self._futures.append((event, future))
        logger.debug("Trigger queue closed; dispatcher loop exiting")

    def _deliver(self, future: Future[PipelineResult]) -> None:
        if future.exception() is None and self._on_result is not None:
            self._on_result(future.result())

    def drain(self) -> list[PipelineResult]:
        """Close the queue, wait for every execution, return results in queue order.

        Executions that raised (for example a duplicate trigger) are
        logged and left out of the returned list.
        """
        self._queue.close()
        if self._thread is not None:
            self._thread.join()
        self._pool.shutdown(wait=True)

        results: list[PipelineResult] = []
        with self._futures_lock:
            futures = list(self._futures)
        for event, future in futures:
            exc = future.exception()
            if exc is not None:
                logger.error("Trigger %s did not run: %s", event.event_id, exc)
                continue
            results.append(future.result())
        return results
