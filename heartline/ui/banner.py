"""Availability banner shown while the backend cannot be reached.

The banner subscribes to supervisor transitions, makes its own check when
mounted (events are not replayed), and keeps a whole-second countdown to the
next automatic probe. The countdown is refreshed by a local ticker task; the
supervisor is never polled for state, only for the remaining timer seconds.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import math
from collections.abc import Callable
from typing import Any

from rich.console import Group
from rich.panel import Panel
from rich.text import Text

from heartline.config import BannerConfig
from heartline.reliability.models import AvailabilityState, ProbeResult, StatusEvent
from heartline.reliability.supervisor import RetrySupervisor
from heartline.utils.async_utils import spawn

logger = logging.getLogger(__name__)


class BannerController:
    """Drives the "backend not running" banner for one view.

    Example:
        >>> banner = BannerController(supervisor, on_recovered=reload_page)
        >>> await banner.mount()
        >>> banner.visible, banner.countdown
        (True, 2)
        >>> await banner.retry_now()
        >>> banner.unmount()
    """

    def __init__(
        self,
        supervisor: RetrySupervisor,
        config: BannerConfig | None = None,
        on_recovered: Callable[[], Any] | None = None,
    ) -> None:
        """Initialize the banner.

        Args:
            supervisor: Owner of the availability state.
            config: Wording and countdown refresh interval.
            on_recovered: Called when the backend comes back after being
                unavailable (e.g. to reload the page).
        """
        self._supervisor = supervisor
        self._config = config or BannerConfig()
        self._on_recovered = on_recovered
        self._state = AvailabilityState.UNKNOWN
        self._checking = False
        self._countdown: int | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._ticker: asyncio.Task[None] | None = None

    @property
    def state(self) -> AvailabilityState:
        return self._state

    @property
    def visible(self) -> bool:
        return self._state is not AvailabilityState.AVAILABLE

    @property
    def checking(self) -> bool:
        """True while a manual or initial check is running."""
        return self._checking

    @property
    def countdown(self) -> int | None:
        """Whole seconds until the next automatic probe, None when none is scheduled."""
        return self._countdown

    @property
    def mounted(self) -> bool:
        return self._unsubscribe is not None

    async def mount(self) -> ProbeResult | None:
        """Subscribe, start the countdown ticker and check the backend directly."""
        if self.mounted:
            return None
        self._unsubscribe = self._supervisor.subscribe(self._on_status)
        self._ticker = asyncio.get_running_loop().create_task(
            self._tick(), name="banner-countdown"
        )
        return await self._check()

    def unmount(self) -> None:
        """Unsubscribe and stop the countdown ticker."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    async def retry_now(self) -> ProbeResult | None:
        """Manual retry; cancels the pending automatic probe.

        Ignored (returns None) while a check is already running.
        """
        if self._checking:
            logger.debug("Retry ignored: check already in progress")
            return None
        return await self._check()

    async def _check(self) -> ProbeResult:
        self._checking = True
        try:
            result = await self._supervisor.probe_now()
        finally:
            self._checking = False
        # No event is published when the state did not change
        self._adopt(self._supervisor.state)
        self.refresh_countdown()
        return result

    def refresh_countdown(self) -> None:
        remaining = self._supervisor.seconds_until_next_probe()
        self._countdown = None if remaining is None else math.ceil(remaining)

    async def _tick(self) -> None:
        interval = self._config.countdown_interval_seconds
        while True:
            self.refresh_countdown()
            await asyncio.sleep(interval)

    def _on_status(self, event: StatusEvent) -> None:
        self._adopt(event.state)
        self.refresh_countdown()

    def _adopt(self, new_state: AvailabilityState) -> None:
        previous = self._state
        self._state = new_state
        if previous is AvailabilityState.UNAVAILABLE and new_state is AvailabilityState.AVAILABLE:
            logger.info("Backend recovered")
            self._notify_recovered()

    def _notify_recovered(self) -> None:
        if self._on_recovered is None:
            return
        try:
            result = self._on_recovered()
            if inspect.iscoroutine(result):
                spawn(result, "Banner recovery hook failed", logger)
        except Exception:
            logger.exception("Banner recovery hook failed")

    def render(self) -> Panel | None:
        """Renderable banner, or None when the backend is available."""
        if not self.visible:
            return None

        if self._checking or self._state is AvailabilityState.UNKNOWN:
            return Panel(
                Text("Checking connection...", style="yellow"),
                title="Backend",
                border_style="yellow",
            )

        lines = [
            Text(self._config.title, style="bold red"),
            Text(self._config.hint, style="dim"),
        ]
        if self._countdown is not None:
            lines.append(Text(f"Retrying in {self._countdown}s", style="yellow"))
        failures = self._supervisor.consecutive_failures
        if failures:
            lines.append(Text(f"Failed attempts: {failures}", style="dim"))
        lines.append(Text("Press Enter to retry now", style="cyan"))

        return Panel(Group(*lines), title="Backend unavailable", border_style="red")
