"""Backend availability detection, retry supervision and failure routing."""

from heartline.reliability.broadcast import StatusBroadcaster
from heartline.reliability.classifier import (
    Classification,
    classify_exception,
    classify_response,
    to_error,
)
from heartline.reliability.client import ApiClient
from heartline.reliability.models import (
    AvailabilityState,
    FailureCategory,
    FailureKind,
    ProbeResult,
    StatusEvent,
)
from heartline.reliability.probe import HealthProbe
from heartline.reliability.supervisor import RetrySchedule, RetrySupervisor, SupervisorPhase

__all__ = [
    "ApiClient",
    "AvailabilityState",
    "Classification",
    "FailureCategory",
    "FailureKind",
    "HealthProbe",
    "ProbeResult",
    "RetrySchedule",
    "RetrySupervisor",
    "StatusBroadcaster",
    "StatusEvent",
    "SupervisorPhase",
    "classify_exception",
    "classify_response",
    "to_error",
]
