"""In-process publish/subscribe channel for availability transitions.

Delivery is synchronous, best-effort and in subscription order. There is no
replay: a subscriber attached after an event was published never sees it, so
every consumer must make its own initial check when it attaches.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from heartline.reliability.models import StatusEvent
from heartline.utils.async_utils import task_callback

logger = logging.getLogger(__name__)

StatusHandler = Callable[[StatusEvent], Any]
Unsubscribe = Callable[[], None]


class StatusBroadcaster:
    """Observer list distributing StatusEvents.

    Handlers may be plain functions or coroutine functions; coroutine handlers
    are scheduled as tasks on the running loop and their failures are logged.

    Example:
        >>> broadcaster = StatusBroadcaster()
        >>> unsubscribe = broadcaster.subscribe(lambda e: print(e.available))
        >>> broadcaster.publish(StatusEvent(available=False, source="probe"))
        False
        >>> unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: list[tuple[int, StatusHandler]] = []
        self._next_token = 0
        self._published = 0
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    @property
    def published_count(self) -> int:
        """Number of events published so far."""
        return self._published

    def subscribe(self, handler: StatusHandler) -> Unsubscribe:
        """Register a handler.

        Args:
            handler: Called with every subsequently published StatusEvent.

        Returns:
            A function removing this subscription; calling it twice is harmless.
        """
        token = self._next_token
        self._next_token += 1
        self._handlers.append((token, handler))

        def unsubscribe() -> None:
            self._handlers = [(t, h) for t, h in self._handlers if t != token]

        return unsubscribe

    def publish(self, event: StatusEvent) -> int:
        """Deliver an event to every current subscriber.

        A failing handler is logged and does not stop delivery to the rest.

        Returns:
            Number of handlers the event was delivered to.
        """
        self._published += 1
        # Snapshot so handlers may unsubscribe (or subscribe) during delivery
        handlers = list(self._handlers)
        logger.debug(
            "Publishing available=%s from %s to %d subscribers",
            event.available,
            event.source,
            len(handlers),
        )

        delivered = 0
        for _, handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
                delivered += 1
            except Exception:
                logger.exception("Status subscriber %r failed", handler)
        return delivered

    def clear(self) -> None:
        """Drop all subscribers."""
        self._handlers.clear()

    def _schedule(self, awaitable: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("Async status subscriber needs a running event loop; dropped")
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return
        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(task_callback("Async status subscriber failed", logger))
