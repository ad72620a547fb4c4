"""Heartline - backend availability detection and recovery.

Detects when the backend server cannot be reached, retries with exponential
backoff, and tells the rest of the application when it is back.
"""

from heartline.reliability import (
    ApiClient,
    AvailabilityState,
    HealthProbe,
    RetrySupervisor,
    StatusBroadcaster,
    StatusEvent,
)

__version__ = "1.0.0"

__all__ = [
    "ApiClient",
    "AvailabilityState",
    "HealthProbe",
    "RetrySupervisor",
    "StatusBroadcaster",
    "StatusEvent",
]
