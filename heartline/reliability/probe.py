"""Liveness probe for the backend.

Sends a single lightweight GET to the liveness endpoint and races it against
a timeout. Every outcome, including unexpected errors, resolves to a
ProbeResult so callers never need exception handling around a probe.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import time

import requests

from heartline.reliability.models import FailureKind, ProbeResult
from heartline.utils.async_utils import run_in_thread

logger = logging.getLogger(__name__)

_UNREACHABLE_ERRNOS = frozenset(
    {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ENETDOWN, errno.EHOSTDOWN}
)


def connection_failure_kind(exc: BaseException) -> FailureKind:
    """Tell a refused connection apart from an unreachable network.

    Walks the exception chain looking for the underlying OSError.
    """
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return FailureKind.CONNECTION_REFUSED
        if isinstance(current, OSError) and current.errno in _UNREACHABLE_ERRNOS:
            return FailureKind.NETWORK_UNREACHABLE
        # urllib3 wraps the socket error in MaxRetryError.reason
        reason = getattr(current, "reason", None)
        if isinstance(reason, BaseException):
            current = reason
            continue
        if current.args and isinstance(current.args[0], BaseException):
            current = current.args[0]
            continue
        current = current.__cause__ or current.__context__

    text = str(exc).lower()
    if "refused" in text:
        return FailureKind.CONNECTION_REFUSED
    return FailureKind.NETWORK_UNREACHABLE


class HealthProbe:
    """Bounded-time reachability check against a liveness URL.

    Example:
        >>> probe = HealthProbe("http://localhost:5000/api/health")
        >>> result = await probe.probe(timeout=3.0)
        >>> result.available
        True
    """

    DEFAULT_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            url: Full liveness URL.
            timeout: Default timeout in seconds for a probe.
            session: Optional requests session (one is created and owned otherwise).
        """
        self.url = url
        self.timeout = timeout
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")

    def _get(self, timeout: float) -> requests.Response:
        return self._session.get(self.url, timeout=timeout, allow_redirects=False)

    async def probe(self, timeout: float | None = None) -> ProbeResult:
        """Check the liveness endpoint once.

        Args:
            timeout: Seconds to wait; defaults to the probe's timeout.

        Returns:
            ProbeResult; never raises (except on task cancellation).
        """
        limit = self.timeout if timeout is None else timeout
        start = time.perf_counter()

        def elapsed_ms() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            # requests' timeout bounds each socket operation, wait_for bounds the total
            response = await asyncio.wait_for(run_in_thread(self._get, limit), timeout=limit)
        except (TimeoutError, requests.exceptions.Timeout) as e:
            logger.debug("Probe %s timed out after %.1fs", self.url, limit)
            return ProbeResult(
                available=False,
                latency_ms=elapsed_ms(),
                failure_kind=FailureKind.TIMEOUT,
                error=str(e) or "Timeout",
            )
        except requests.exceptions.ConnectionError as e:
            kind = connection_failure_kind(e)
            logger.debug("Probe %s failed: %s (%s)", self.url, kind.value, e)
            return ProbeResult(
                available=False,
                latency_ms=elapsed_ms(),
                failure_kind=kind,
                error=f"Connection error: {e}",
            )
        except Exception as e:
            logger.warning("Probe %s failed unexpectedly: %s", self.url, e)
            return ProbeResult(
                available=False,
                latency_ms=elapsed_ms(),
                failure_kind=FailureKind.UNKNOWN,
                error=str(e),
            )

        latency = elapsed_ms()
        status = response.status_code
        response.close()
        if 200 <= status < 300:
            return ProbeResult(available=True, latency_ms=latency, status_code=status)

        return ProbeResult(
            available=False,
            latency_ms=latency,
            failure_kind=FailureKind.HTTP_STATUS,
            status_code=status,
            error=f"HTTP {status}",
        )

    def close(self) -> None:
        """Release the session if this probe created it."""
        if self._owns_session:
            self._session.close()
