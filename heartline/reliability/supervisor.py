"""Retry supervisor: the availability state machine.

Runs liveness probes on an exponential-backoff schedule until the backend
answers, then publishes the recovery and goes idle.

Phases:
- IDLE: nothing scheduled, nothing in flight
- PROBING: a probe for the current cycle is in flight
- SCHEDULED: the last probe failed, a retry timer is pending

Transitions:
- IDLE -> PROBING: start() or probe_now()
- PROBING -> IDLE: probe succeeded (state AVAILABLE)
- PROBING -> SCHEDULED: probe failed (state UNAVAILABLE)
- SCHEDULED -> PROBING: timer fired, or probe_now() preempted it
- any -> IDLE: stop() / reset()

Every start(), probe_now(), stop() and reset() opens a new cycle. A probe
result is applied only if its cycle is still current, so a probe that
resolves after being superseded is dropped.

The supervisor is driven from a single asyncio event loop and is not
thread-safe; the single-flight and single-timer guards are plain attributes.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from heartline.reliability.broadcast import StatusBroadcaster, StatusHandler, Unsubscribe
from heartline.reliability.models import AvailabilityState, FailureKind, ProbeResult, StatusEvent
from heartline.utils.async_utils import spawn
from heartline.utils.backoff import BackoffPolicy, ConsecutiveFailureTracker
from heartline.utils.timers import ScheduledTask

if TYPE_CHECKING:
    from heartline.config import HeartlineConfig

logger = logging.getLogger(__name__)

RecoveryCallback = Callable[[], Any]


class Probe(Protocol):
    """Anything that can check the backend once."""

    async def probe(self, timeout: float | None = None) -> ProbeResult: ...


class SupervisorPhase(Enum):
    """Scheduling phase of the supervisor."""

    IDLE = "idle"
    PROBING = "probing"
    SCHEDULED = "scheduled"


@dataclass(frozen=True)
class RetrySchedule:
    """Snapshot of the retry schedule."""

    consecutive_failures: int
    next_delay: float
    pending: bool
    seconds_remaining: float | None


class RetrySupervisor:
    """Single owner of the backend's AvailabilityState.

    Example:
        >>> supervisor = RetrySupervisor(HealthProbe(url), StatusBroadcaster())
        >>> supervisor.subscribe(lambda e: print("available" if e.available else "down"))
        >>> await supervisor.start()
        >>> supervisor.state
        <AvailabilityState.UNAVAILABLE: 'unavailable'>
        >>> await supervisor.probe_now()  # manual retry, preempts the timer
    """

    def __init__(
        self,
        probe: Probe,
        broadcaster: StatusBroadcaster | None = None,
        policy: BackoffPolicy | None = None,
        probe_timeout: float | None = None,
        rng: random.Random | None = None,
        name: str = "backend",
    ) -> None:
        """Initialize the supervisor.

        Args:
            probe: Liveness probe to run.
            broadcaster: Channel for status events. A private one is created if omitted.
            policy: Backoff schedule. Uses defaults if not provided.
            probe_timeout: Timeout passed to every probe (None = probe's default).
            rng: Random source for jitter.
            name: Label for logs and timers.
        """
        self.name = name
        self._probe = probe
        self._broadcaster = broadcaster or StatusBroadcaster()
        self._probe_timeout = probe_timeout
        self._tracker = ConsecutiveFailureTracker(policy, name=f"{name}-supervisor", rng=rng)

        self._state = AvailabilityState.UNKNOWN
        self._phase = SupervisorPhase.IDLE
        self._cycle = 0
        self._timer: ScheduledTask | None = None
        self._inflight: asyncio.Task[ProbeResult] | None = None
        self._inflight_cycle = -1
        self._recovery_callbacks: list[RecoveryCallback] = []
        self._last_result: ProbeResult | None = None

        # Instrumentation
        self._probes_in_flight = 0
        self._max_probes_in_flight = 0
        self._probe_count = 0

    @classmethod
    def from_config(
        cls,
        probe: Probe,
        broadcaster: StatusBroadcaster,
        config: HeartlineConfig,
        rng: random.Random | None = None,
    ) -> RetrySupervisor:
        """Build a supervisor from the retry and probe sections of the config."""
        retry = config.retry
        policy = BackoffPolicy(
            initial_delay=retry.initial_delay_seconds,
            multiplier=retry.multiplier,
            max_delay=retry.max_delay_seconds,
            jitter_ratio=retry.jitter_ratio,
        )
        return cls(
            probe,
            broadcaster,
            policy=policy,
            probe_timeout=config.probe.timeout_seconds,
            rng=rng,
        )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> AvailabilityState:
        return self._state

    @property
    def phase(self) -> SupervisorPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        """True while a probe is in flight or a retry is scheduled."""
        return self._phase is not SupervisorPhase.IDLE

    @property
    def consecutive_failures(self) -> int:
        return self._tracker.consecutive_failures

    @property
    def policy(self) -> BackoffPolicy:
        return self._tracker.policy

    @property
    def next_delay(self) -> float:
        """Delay of the pending retry, or the un-jittered delay the next failure would get."""
        if self._timer is not None and self._timer.active:
            return self._timer.delay
        return self._tracker.policy.base_delay(self._tracker.consecutive_failures)

    @property
    def schedule(self) -> RetrySchedule:
        return RetrySchedule(
            consecutive_failures=self.consecutive_failures,
            next_delay=self.next_delay,
            pending=self._timer is not None and self._timer.active,
            seconds_remaining=self.seconds_until_next_probe(),
        )

    @property
    def last_result(self) -> ProbeResult | None:
        return self._last_result

    @property
    def broadcaster(self) -> StatusBroadcaster:
        return self._broadcaster

    @property
    def probe_count(self) -> int:
        """Probes issued since creation."""
        return self._probe_count

    @property
    def max_probes_in_flight(self) -> int:
        """High-water mark of concurrently running probes (stays at 1)."""
        return self._max_probes_in_flight

    def seconds_until_next_probe(self) -> float | None:
        """Seconds left on the retry timer, or None when nothing is scheduled."""
        if self._timer is None or not self._timer.active:
            return None
        return self._timer.remaining()

    def subscribe(self, handler: StatusHandler) -> Unsubscribe:
        """Subscribe to availability transitions (see StatusBroadcaster)."""
        return self._broadcaster.subscribe(handler)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def start(self, on_recovered: RecoveryCallback | None = None) -> ProbeResult | None:
        """Begin supervising: probe now, and keep retrying while it fails.

        Idempotent: if a probe or retry is already running this returns None
        without creating a second loop. ``on_recovered`` is still registered
        and fires once, on the next recovery.

        Args:
            on_recovered: Optional callback invoked when the backend is reachable.

        Returns:
            The result of the immediate probe, or None if already running.
        """
        if on_recovered is not None:
            self._recovery_callbacks.append(on_recovered)

        if self.is_running:
            logger.debug("%s: supervision already running, skipping start", self.name)
            return None

        cycle = self._begin_cycle()
        logger.info("%s: starting availability supervision", self.name)
        result = await self._probe_once(cycle)
        self._apply(result, cycle, source="probe")
        return result

    async def probe_now(self) -> ProbeResult:
        """Manual check that preempts the backoff wait.

        Cancels the pending retry timer before probing, so only one probe is
        outstanding. If a probe for the current cycle is already in flight its
        outcome is shared instead of issuing another. On failure the retry
        loop is (re)entered with the failure counted.
        """
        if self._inflight is not None and self._inflight_cycle == self._cycle:
            logger.debug("%s: probe already in flight, sharing its result", self.name)
            return await asyncio.shield(self._inflight)

        cycle = self._begin_cycle()
        logger.info("%s: manual availability check", self.name)
        result = await self._probe_once(cycle)
        self._apply(result, cycle, source="manual")
        return result

    def stop(self) -> None:
        """Cancel any pending retry and go idle.

        Safe to call when already idle. Does not touch the failure count or
        the availability state. A probe that is already in flight keeps
        running, but its result will be discarded.
        """
        if not self.is_running and self._timer is None:
            return

        self._cycle += 1
        self._cancel_timer()
        self._phase = SupervisorPhase.IDLE
        self._recovery_callbacks.clear()
        logger.info("%s: availability supervision stopped", self.name)

    def reset(self, source: str = "reset") -> None:
        """Stop, zero the failure count and assume the backend is available.

        Used after an externally confirmed success, such as an unrelated
        request that went through.
        """
        callbacks = self._recovery_callbacks
        self._recovery_callbacks = []
        self._cycle += 1
        self._cancel_timer()
        self._phase = SupervisorPhase.IDLE
        self._tracker.reset()
        self._set_state(AvailabilityState.AVAILABLE, source)
        self._run_callbacks(callbacks)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin_cycle(self) -> int:
        self._cycle += 1
        self._cancel_timer()
        self._phase = SupervisorPhase.PROBING
        return self._cycle

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            if self._timer.cancel():
                logger.debug("%s: cancelled pending retry", self.name)
            self._timer = None

    async def _probe_once(self, cycle: int) -> ProbeResult:
        """Run a probe for ``cycle`` while keeping at most one in flight."""
        while self._inflight is not None:
            task = self._inflight
            if self._inflight_cycle == cycle:
                return await asyncio.shield(task)
            # A superseded probe is still running; let it finish, ignore its result
            logger.debug("%s: waiting for superseded probe to finish", self.name)
            await asyncio.wait({task})
            if cycle != self._cycle:
                # Superseded while waiting; the caller's _apply drops this result
                logger.debug("%s: cycle %d superseded, not probing", self.name, cycle)
                if task.cancelled():
                    return ProbeResult(
                        available=False, failure_kind=FailureKind.UNKNOWN, error="Superseded"
                    )
                return task.result()

        task = asyncio.get_running_loop().create_task(
            self._run_probe(), name=f"{self.name}-probe"
        )
        self._inflight = task
        self._inflight_cycle = cycle
        return await asyncio.shield(task)

    async def _run_probe(self) -> ProbeResult:
        self._probe_count += 1
        self._probes_in_flight += 1
        self._max_probes_in_flight = max(self._max_probes_in_flight, self._probes_in_flight)
        try:
            return await self._probe.probe(self._probe_timeout)
        except Exception as e:
            logger.exception("%s: probe raised", self.name)
            return ProbeResult(available=False, failure_kind=FailureKind.UNKNOWN, error=str(e))
        finally:
            self._probes_in_flight -= 1
            self._inflight = None

    def _apply(self, result: ProbeResult, cycle: int, source: str) -> bool:
        """Apply a probe result if its cycle is still current."""
        if cycle != self._cycle:
            logger.debug(
                "%s: discarding stale probe result (cycle %d, current %d)",
                self.name,
                cycle,
                self._cycle,
            )
            return False

        self._last_result = result

        if result.available:
            self._tracker.reset()
            self._cancel_timer()
            self._phase = SupervisorPhase.IDLE
            callbacks = self._recovery_callbacks
            self._recovery_callbacks = []
            self._set_state(AvailabilityState.AVAILABLE, source)
            self._run_callbacks(callbacks)
        else:
            delay = self._tracker.on_failure()
            logger.warning(
                "%s: backend unavailable (%s), retrying in %.1fs (attempt %d)",
                self.name,
                result.error or (result.failure_kind.value if result.failure_kind else "unknown"),
                delay,
                self._tracker.consecutive_failures,
            )
            # Schedule before publishing so subscribers see a consistent schedule
            self._schedule_retry(delay, cycle)
            self._set_state(AvailabilityState.UNAVAILABLE, source)
        return True

    def _schedule_retry(self, delay: float, cycle: int) -> None:
        self._cancel_timer()
        self._phase = SupervisorPhase.SCHEDULED
        self._timer = ScheduledTask(
            delay,
            functools.partial(self._on_timer, cycle),
            name=f"{self.name}-retry",
        )

    async def _on_timer(self, cycle: int) -> None:
        if cycle != self._cycle:
            return
        self._timer = None
        self._phase = SupervisorPhase.PROBING
        result = await self._probe_once(cycle)
        self._apply(result, cycle, source="probe")

    def _set_state(self, new_state: AvailabilityState, source: str) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.info(
            "%s: availability %s -> %s (%s)",
            self.name,
            old_state.value,
            new_state.value,
            source,
        )
        self._broadcaster.publish(
            StatusEvent(available=new_state is AvailabilityState.AVAILABLE, source=source)
        )

    def _run_callbacks(self, callbacks: list[RecoveryCallback]) -> None:
        for callback in callbacks:
            try:
                result = callback()
                if inspect.iscoroutine(result):
                    spawn(result, "Recovery callback failed", logger)
            except Exception:
                logger.exception("%s: recovery callback failed", self.name)
