"""Cached login session and the session bootstrap consumer.

SessionStore keeps the last known user and token on disk so the app can keep
working from cache while the backend is unreachable. SessionBootstrap decides
at startup whether the cached session can be revalidated remotely now, has to
be used as-is until the backend recovers, or must be dropped.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from heartline.errors import AuthExpiredError, BackendUnavailableError, RequestFailedError
from heartline.reliability.models import StatusEvent

if TYPE_CHECKING:
    from heartline.reliability.client import ApiClient
    from heartline.reliability.supervisor import RetrySupervisor

logger = logging.getLogger(__name__)


@dataclass
class CachedSession:
    """A user profile plus the bearer token it was issued with."""

    token: str
    user: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"token": self.token, "user": self.user}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedSession:
        token = data["token"]
        if not isinstance(token, str) or not token:
            raise ValueError("token must be a non-empty string")
        user = data.get("user") or {}
        if not isinstance(user, dict):
            raise ValueError("user must be an object")
        return cls(token=token, user=user)


class SessionStore:
    """Persisted session cache.

    With ``path=None`` the session lives in memory only.

    Example:
        >>> store = SessionStore(Path("~/.heartline/session.json").expanduser())
        >>> store.save(CachedSession(token="abc", user={"email": "a@b.c"}))
        >>> store.token
        'abc'
        >>> store.clear()
        True
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._session: CachedSession | None = None
        self._loaded = False

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def token(self) -> str | None:
        session = self.load()
        return session.token if session else None

    def load(self) -> CachedSession | None:
        """Return the cached session, reading it from disk on first use.

        A corrupted cache file is removed and treated as no session.
        """
        if self._loaded or self._path is None:
            return self._session

        self._loaded = True
        if not self._path.exists():
            return None

        try:
            data = json.loads(self._path.read_text())
            self._session = CachedSession.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding corrupted session cache %s: %s", self._path, e)
            self._remove_file()
            self._session = None
        except OSError as e:
            logger.warning("Cannot read session cache %s: %s", self._path, e)
            self._session = None
        return self._session

    def save(self, session: CachedSession) -> None:
        """Replace the cached session."""
        self._session = session
        self._loaded = True
        if self._path is None:
            return

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self._path.with_suffix(".tmp")
            temp_path.write_text(json.dumps(session.to_dict(), indent=2))
            os.chmod(temp_path, 0o600)
            temp_path.replace(self._path)
        except OSError as e:
            logger.warning("Failed to persist session cache: %s", e)

    def clear(self) -> bool:
        """Forget the cached session.

        Returns:
            True if a session was present, so callers can act exactly once.
        """
        had_session = self.load() is not None
        self._session = None
        self._loaded = True
        self._remove_file()
        return had_session

    def _remove_file(self) -> None:
        if self._path is None:
            return
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to remove session cache %s: %s", self._path, e)


class SessionMode(Enum):
    """How the current session was established."""

    PENDING = "pending"  # bootstrap not run yet
    VALIDATED = "validated"  # token confirmed by the backend
    CACHED = "cached"  # backend unreachable, using the cached session
    SIGNED_OUT = "signed_out"


class SessionBootstrap:
    """Startup session logic that survives an unreachable backend.

    While the backend is down, remote token revalidation is paused and the
    cached session is used. When the supervisor publishes a recovery, the
    cached session is revalidated.
    """

    def __init__(
        self,
        store: SessionStore,
        client: ApiClient,
        supervisor: RetrySupervisor,
        profile_path: str = "/auth/profile",
    ) -> None:
        self._store = store
        self._client = client
        self._supervisor = supervisor
        self._profile_path = profile_path
        self._unsubscribe: Callable[[], None] | None = None
        self.mode = SessionMode.PENDING
        self.session: CachedSession | None = None

    @property
    def user(self) -> dict[str, Any] | None:
        return self.session.user if self.session else None

    async def bootstrap(self) -> SessionMode:
        """Establish the session at startup.

        Subscribes for recovery events first, then performs its own direct
        check since earlier broadcasts are not replayed.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self._supervisor.subscribe(self._on_status)

        cached = self._store.load()
        result = await self._supervisor.probe_now()

        if not result.available:
            if cached:
                logger.info("Backend unavailable - using cached session")
                return self._set(SessionMode.CACHED, cached)
            logger.info("Backend unavailable and no cached session")
            return self._set(SessionMode.SIGNED_OUT, None)

        if cached is None:
            return self._set(SessionMode.SIGNED_OUT, None)

        return await self.revalidate()

    async def revalidate(self) -> SessionMode:
        """Confirm the cached token with the backend."""
        cached = self._store.load()
        if cached is None:
            return self._set(SessionMode.SIGNED_OUT, None)

        try:
            data = await self._client.get(self._profile_path)
        except AuthExpiredError:
            logger.warning("Stored token is no longer valid")
            return self._set(SessionMode.SIGNED_OUT, None)
        except BackendUnavailableError:
            logger.warning("Network error during session validation - keeping cached session")
            return self._set(SessionMode.CACHED, cached)
        except RequestFailedError as e:
            logger.error("Session validation failed: %s", e)
            self._store.clear()
            return self._set(SessionMode.SIGNED_OUT, None)

        if isinstance(data, dict) and data.get("success") is False:
            logger.warning("Backend rejected the stored session")
            self._store.clear()
            return self._set(SessionMode.SIGNED_OUT, None)

        profile = data.get("user") if isinstance(data, dict) else None
        updated = CachedSession(token=cached.token, user={**cached.user, **(profile or {})})
        self._store.save(updated)
        logger.info("Session restored from cache and validated")
        return self._set(SessionMode.VALIDATED, updated)

    def sign_in(self, token: str, user: dict[str, Any]) -> None:
        """Record a fresh login."""
        session = CachedSession(token=token, user=user)
        self._store.save(session)
        self._set(SessionMode.VALIDATED, session)

    def sign_out(self) -> None:
        self._store.clear()
        self._set(SessionMode.SIGNED_OUT, None)

    def close(self) -> None:
        """Stop listening for recovery events."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _set(self, mode: SessionMode, session: CachedSession | None) -> SessionMode:
        self.mode = mode
        self.session = session
        return mode

    async def _on_status(self, event: StatusEvent) -> None:
        if event.available and self.mode is SessionMode.CACHED:
            logger.info("Backend recovered - revalidating cached session")
            await self.revalidate()
