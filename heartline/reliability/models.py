"""Shared data types for the availability subsystem."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AvailabilityState(Enum):
    """Known availability of the backend.

    UNKNOWN means "never checked" and must not be treated as healthy.
    """

    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class FailureKind(Enum):
    """Why a request or probe failed."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    NETWORK_UNREACHABLE = "network_unreachable"
    INTERMEDIARY_UNAVAILABLE = "intermediary_unavailable"  # proxy up, backend behind it down
    AUTH_EXPIRED = "auth_expired"
    SERVER_ERROR = "server_error"  # origin 5xx
    CLIENT_ERROR = "client_error"  # 4xx
    HTTP_STATUS = "http_status"  # probe only: any non-2xx answer
    UNKNOWN = "unknown"


class FailureCategory(Enum):
    """Coarse routing of a failure to its remedy."""

    UNAUTHORIZED = "unauthorized"  # clear the session, never retry
    CONNECTIVITY = "connectivity"  # hand off to the retry supervisor
    SERVER_ERROR = "server_error"  # show to the caller
    CLIENT_ERROR = "client_error"  # show to the caller


CONNECTIVITY_KINDS = frozenset(
    {
        FailureKind.TIMEOUT,
        FailureKind.CONNECTION_REFUSED,
        FailureKind.NETWORK_UNREACHABLE,
        FailureKind.INTERMEDIARY_UNAVAILABLE,
    }
)


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of one liveness probe."""

    available: bool
    timestamp: float = field(default_factory=time.time)
    latency_ms: float | None = None
    failure_kind: FailureKind | None = None
    status_code: int | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "timestamp": self.timestamp,
            "latency_ms": self.latency_ms,
            "failure_kind": self.failure_kind.value if self.failure_kind else None,
            "status_code": self.status_code,
            "error": self.error,
        }


@dataclass(frozen=True)
class StatusEvent:
    """Broadcast payload describing an availability transition.

    Attributes:
        available: True when the backend is reachable.
        source: What produced the transition ("probe", "manual", "reset", ...).
        timestamp: Epoch seconds of the transition.
    """

    available: bool
    source: str
    timestamp: float = field(default_factory=time.time)

    @property
    def state(self) -> AvailabilityState:
        return AvailabilityState.AVAILABLE if self.available else AvailabilityState.UNAVAILABLE
