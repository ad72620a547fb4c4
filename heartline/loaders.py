"""Availability-aware consumers: data loaders and the submission guard."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from heartline.errors import BackendUnavailableError, RequestFailedError
from heartline.reliability.models import AvailabilityState, StatusEvent
from heartline.reliability.supervisor import RetrySupervisor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataLoader(Generic[T]):
    """Loads a list or detail view and refetches it when the backend recovers.

    The loader subscribes before making its own direct check, so a recovery
    published in between cannot be missed.

    Example:
        >>> documents = DataLoader("documents", lambda: client.get("/documents"), supervisor)
        >>> await documents.attach()
        >>> documents.data
    """

    def __init__(
        self,
        name: str,
        fetch: Callable[[], Awaitable[T]],
        supervisor: RetrySupervisor,
    ) -> None:
        self.name = name
        self._fetch = fetch
        self._supervisor = supervisor
        self._unsubscribe: Callable[[], None] | None = None
        self.data: T | None = None
        self.error: RequestFailedError | None = None
        self.backend_down = False
        self.load_count = 0

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    async def attach(self) -> T | None:
        """Subscribe to availability events, check the backend and load."""
        if self._unsubscribe is None:
            self._unsubscribe = self._supervisor.subscribe(self._on_status)

        result = await self._supervisor.probe_now()
        if not result.available:
            logger.info("%s: backend unavailable, waiting for recovery", self.name)
            self.backend_down = True
            return None
        return await self.load()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def load(self) -> T | None:
        """Fetch the data.

        Request failures are recorded on ``error`` rather than raised; a
        connectivity failure marks the loader down until the next recovery.
        """
        try:
            data = await self._fetch()
        except BackendUnavailableError as e:
            self.error = e
            self.backend_down = True
            return None
        except RequestFailedError as e:
            logger.warning("%s: load failed: %s", self.name, e)
            self.error = e
            return None

        self.load_count += 1
        self.data = data
        self.error = None
        self.backend_down = False
        return data

    async def _on_status(self, event: StatusEvent) -> None:
        if not event.available:
            self.backend_down = True
            return
        if self.backend_down:
            logger.info("%s: backend recovered, reloading", self.name)
            await self.load()


async def ensure_available(supervisor: RetrySupervisor, action: str) -> None:
    """Refuse to start ``action`` while the backend is unavailable.

    An UNKNOWN state is resolved with a direct probe first.

    Raises:
        BackendUnavailableError: If the backend is not available.
    """
    if supervisor.state is AvailabilityState.UNKNOWN:
        await supervisor.probe_now()

    if supervisor.state is not AvailabilityState.AVAILABLE:
        logger.warning("Cannot %s: backend server is not running", action)
        raise BackendUnavailableError(
            f"Cannot {action}: backend server is not running. Please start it and try again.",
            details={"action": action},
        )


__all__ = ["DataLoader", "ensure_available"]
