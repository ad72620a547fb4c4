"""Shared test helpers and fakes."""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable, Iterable
from typing import Any
from unittest.mock import MagicMock

from heartline.reliability.models import FailureKind, ProbeResult, StatusEvent

# --- Probe Results ---


def up() -> ProbeResult:
    return ProbeResult(available=True, latency_ms=1.0, status_code=200)


def down(kind: FailureKind = FailureKind.CONNECTION_REFUSED) -> ProbeResult:
    return ProbeResult(available=False, failure_kind=kind, error=kind.value)


# --- Fakes ---


class FakeProbe:
    """Probe that answers from a script.

    Outcomes are taken from ``results`` in order (bool, ProbeResult or an
    exception to raise); once the script is exhausted ``default`` is used.
    ``hold()`` makes every probe block until ``release()``.
    """

    def __init__(self, results: Iterable[object] = (), default: bool = False) -> None:
        self.results: deque[object] = deque(results)
        self.default = default
        self.calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.timeouts: list[float | None] = []
        self._gate: asyncio.Event | None = None

    def hold(self) -> None:
        self._gate = asyncio.Event()

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    def set_available(self, available: bool) -> None:
        self.results.clear()
        self.default = available

    async def probe(self, timeout: float | None = None) -> ProbeResult:
        self.calls += 1
        self.timeouts.append(timeout)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self._gate
            if gate is not None:
                await gate.wait()
            outcome = self.results.popleft() if self.results else self.default
        finally:
            self.in_flight -= 1

        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ProbeResult):
            return outcome
        return up() if outcome else down()


class EventRecorder:
    """Subscriber that keeps every StatusEvent it receives."""

    def __init__(self) -> None:
        self.events: list[StatusEvent] = []

    def __call__(self, event: StatusEvent) -> None:
        self.events.append(event)

    @property
    def availability(self) -> list[bool]:
        return [e.available for e in self.events]


def mock_response(
    status_code: int = 200,
    json_data: Any = None,
    text: str = "",
    content_type: str = "application/json",
) -> MagicMock:
    """Build a stand-in for requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    response.headers = {"Content-Type": content_type} if content_type else {}
    response.text = text
    if json_data is None:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = json_data
    return response


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the loop until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
