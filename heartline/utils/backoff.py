"""Backoff strategies for the retry supervisor.

Provides the exponential backoff + jitter schedule used between health probes
and a small tracker that counts consecutive failures.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with symmetric jitter.

    Attributes:
        initial_delay: Delay after the first failure (seconds).
        multiplier: Exponential growth factor.
        max_delay: Maximum delay cap (seconds).
        jitter_ratio: Random spread as a fraction of the delay, applied as +/-.
    """

    initial_delay: float = 1.0
    multiplier: float = 1.5
    max_delay: float = 15.0
    jitter_ratio: float = 0.2

    def base_delay(self, failures: int) -> float:
        """Un-jittered delay for a failure count, capped at ``max_delay``.

        Args:
            failures: Consecutive failures recorded before the current one.
        """
        if failures < 0:
            raise ValueError(f"failures must be >= 0, got {failures}")
        try:
            raw = self.initial_delay * (self.multiplier**failures)
        except OverflowError:
            return self.max_delay
        return min(raw, self.max_delay)

    def delay(self, failures: int, rng: random.Random | None = None) -> float:
        """Jittered delay for a failure count.

        Jitter is uniform in ``[-jitter_ratio, +jitter_ratio]`` of the capped
        base delay, and the result is clamped to ``max_delay`` again.
        """
        base = self.base_delay(failures)
        if self.jitter_ratio <= 0:
            return base
        spread = (rng or random).uniform(-1.0, 1.0) * self.jitter_ratio
        return max(0.0, min(base * (1.0 + spread), self.max_delay))


class ConsecutiveFailureTracker:
    """Track consecutive failures and hand out backoff delays.

    Resets when an operation succeeds.

    Example:
        tracker = ConsecutiveFailureTracker(BackoffPolicy(), name="health")

        result = await probe()
        if result.available:
            tracker.reset()
        else:
            delay = tracker.on_failure()
    """

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        name: str = "",
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            policy: Backoff schedule. Uses defaults if not provided.
            name: Optional name for logging.
            rng: Random source for jitter (seeded in tests).
        """
        self.policy = policy or BackoffPolicy()
        self.name = name or "tracker"
        self._rng = rng
        self._consecutive = 0
        self._total = 0
        self._current_delay = self.policy.base_delay(0)

    @property
    def consecutive_failures(self) -> int:
        """Current count of consecutive failures."""
        return self._consecutive

    @property
    def total_failures(self) -> int:
        """Total failures since creation."""
        return self._total

    @property
    def current_delay(self) -> float:
        """Delay returned by the most recent ``on_failure`` call."""
        return self._current_delay

    def reset(self) -> None:
        """Reset the consecutive count. Call on success."""
        if self._consecutive > 0:
            logger.debug(f"{self.name}: reset after {self._consecutive} consecutive failures")
        self._consecutive = 0
        self._current_delay = self.policy.base_delay(0)

    def on_failure(self) -> float:
        """Record a failure and return the delay before the next attempt."""
        delay = self.policy.delay(self._consecutive, self._rng)
        self._consecutive += 1
        self._total += 1
        self._current_delay = delay
        logger.debug(
            f"{self.name}: consecutive failure {self._consecutive}, backing off for {delay:.2f}s"
        )
        return delay
