"""Pytest configuration for Heartline tests.

Fixtures build retry supervisors around a scripted probe so availability
transitions can be driven deterministically.
"""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from heartline.reliability.broadcast import StatusBroadcaster
from heartline.reliability.supervisor import RetrySupervisor
from heartline.session import SessionStore
from heartline.utils.backoff import BackoffPolicy
from tests.helpers import EventRecorder, FakeProbe


@pytest.fixture
def fast_policy() -> BackoffPolicy:
    """Short, jitter-free backoff for tests that let the retry timer fire."""
    return BackoffPolicy(initial_delay=0.05, multiplier=2.0, max_delay=0.2, jitter_ratio=0.0)


@pytest.fixture
def slow_policy() -> BackoffPolicy:
    """Backoff long enough that the retry timer never fires during a test."""
    return BackoffPolicy(initial_delay=10.0, multiplier=2.0, max_delay=60.0, jitter_ratio=0.0)


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def broadcaster() -> StatusBroadcaster:
    return StatusBroadcaster()


@pytest.fixture
def recorder(broadcaster: StatusBroadcaster) -> EventRecorder:
    rec = EventRecorder()
    broadcaster.subscribe(rec)
    return rec


@pytest_asyncio.fixture
async def supervisor(
    probe: FakeProbe, broadcaster: StatusBroadcaster, fast_policy: BackoffPolicy
):
    """Supervisor whose retries fire quickly."""
    sup = RetrySupervisor(probe, broadcaster, policy=fast_policy, name="test")
    yield sup
    sup.stop()
    await asyncio.sleep(0)


@pytest_asyncio.fixture
async def slow_supervisor(
    probe: FakeProbe, broadcaster: StatusBroadcaster, slow_policy: BackoffPolicy
):
    """Supervisor whose retry timer stays pending for the whole test."""
    sup = RetrySupervisor(probe, broadcaster, policy=slow_policy, name="test")
    yield sup
    sup.stop()
    await asyncio.sleep(0)


@pytest.fixture
def memory_store() -> SessionStore:
    return SessionStore()
