"""Cancellable one-shot timers for asyncio code.

A ScheduledTask waits ``delay`` seconds and then awaits its callback. Cancelling
only affects a timer that has not fired yet: once the callback has started it
runs to completion, so work that is already in flight is never torn down by a
late ``cancel()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from heartline.utils.async_utils import task_callback

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for a pending delayed callback.

    Example:
        >>> timer = ScheduledTask(2.5, probe_again, name="retry")
        >>> timer.remaining()
        2.5
        >>> timer.cancel()
        True
    """

    def __init__(
        self,
        delay: float,
        callback: Callable[[], Awaitable[Any]],
        name: str = "timer",
    ) -> None:
        """Schedule ``callback`` on the running loop.

        Args:
            delay: Seconds to wait before calling back.
            callback: Coroutine function invoked once the delay elapses.
            name: Label used for the task and logs.
        """
        self._loop = asyncio.get_running_loop()
        self.delay = max(0.0, delay)
        self.name = name
        self.due_at = self._loop.time() + self.delay
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._task = self._loop.create_task(self._run(), name=name)
        self._task.add_done_callback(task_callback(f"Timer {name} callback failed", logger))

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        if self._cancelled:
            return
        self._fired = True
        await self._callback()

    @property
    def fired(self) -> bool:
        """True once the callback has started."""
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """True while the timer is still waiting."""
        return not (self._fired or self._cancelled)

    def remaining(self) -> float:
        """Seconds until the callback fires (0 when no longer pending)."""
        if not self.active:
            return 0.0
        return max(0.0, self.due_at - self._loop.time())

    def cancel(self) -> bool:
        """Cancel the timer if it has not fired.

        Returns:
            True if a pending timer was cancelled, False otherwise.
        """
        if not self.active:
            return False
        self._cancelled = True
        self._task.cancel()
        return True

    async def wait(self) -> None:
        """Wait until the timer has fired and its callback finished, or was cancelled."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    def __repr__(self) -> str:
        state = "fired" if self._fired else "cancelled" if self._cancelled else "pending"
        return f"ScheduledTask(name={self.name!r}, delay={self.delay:.3f}, state={state})"
