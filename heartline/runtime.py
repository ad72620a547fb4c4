"""Wiring of the availability subsystem.

There is no module-level singleton: the application builds one
AvailabilityRuntime at startup, hands its parts to the views that need them
and closes it on shutdown.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from heartline.config import HeartlineConfig, load_config
from heartline.loaders import DataLoader, ensure_available
from heartline.reliability.broadcast import StatusBroadcaster
from heartline.reliability.client import ApiClient
from heartline.reliability.probe import HealthProbe
from heartline.reliability.supervisor import RetrySupervisor
from heartline.session import SessionBootstrap, SessionStore
from heartline.ui.banner import BannerController

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class AvailabilityRuntime:
    """Everything one application instance needs, owned in one place."""

    config: HeartlineConfig
    broadcaster: StatusBroadcaster
    probe: HealthProbe
    supervisor: RetrySupervisor
    session_store: SessionStore
    client: ApiClient

    def banner(self, on_recovered: Callable[[], Any] | None = None) -> BannerController:
        return BannerController(self.supervisor, self.config.banner, on_recovered=on_recovered)

    def loader(self, name: str, fetch: Callable[[], Awaitable[T]]) -> DataLoader[T]:
        return DataLoader(name, fetch, self.supervisor)

    def session_bootstrap(self) -> SessionBootstrap:
        return SessionBootstrap(
            self.session_store,
            self.client,
            self.supervisor,
            profile_path=self.config.client.profile_path,
        )

    async def ensure_available(self, action: str) -> None:
        await ensure_available(self.supervisor, action)

    def close(self) -> None:
        """Stop supervision and release HTTP sessions."""
        self.supervisor.stop()
        self.client.close()
        self.probe.close()
        logger.debug("Availability runtime closed")


def build_runtime(
    config: HeartlineConfig | None = None,
    *,
    on_auth_expired: Callable[[], None] | None = None,
    rng: random.Random | None = None,
) -> AvailabilityRuntime:
    """Build the availability subsystem from config.

    Args:
        config: Configuration; loaded from disk when omitted.
        on_auth_expired: Hook fired once when a 401 clears the cached session.
        rng: Random source for retry jitter.
    """
    config = config or load_config()
    broadcaster = StatusBroadcaster()
    probe = HealthProbe(config.liveness_url, timeout=config.probe.timeout_seconds)
    supervisor = RetrySupervisor.from_config(probe, broadcaster, config, rng=rng)
    session_path = config.client.session_path
    store = SessionStore(Path(session_path).expanduser() if session_path else None)
    client = ApiClient(
        config.api_base_url,
        supervisor,
        store,
        timeout=config.client.request_timeout_seconds,
        on_auth_expired=on_auth_expired,
    )
    logger.debug("Availability runtime built for %s", config.api_base_url)
    return AvailabilityRuntime(
        config=config,
        broadcaster=broadcaster,
        probe=probe,
        supervisor=supervisor,
        session_store=store,
        client=client,
    )
