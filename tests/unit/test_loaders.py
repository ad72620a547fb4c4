"""Tests for availability-aware loaders and the submission guard."""

import logging
from unittest.mock import AsyncMock

import pytest

from heartline.errors import BackendUnavailableError, ClientError
from heartline.loaders import DataLoader, ensure_available
from heartline.reliability.broadcast import StatusBroadcaster
from heartline.reliability.models import AvailabilityState
from heartline.reliability.supervisor import RetrySupervisor
from tests.helpers import FakeProbe, wait_until


class TestDataLoader:
    """Tests for DataLoader."""

    @pytest.mark.asyncio
    async def test_attach_loads_when_available(
        self, supervisor: RetrySupervisor, probe: FakeProbe, broadcaster: StatusBroadcaster
    ) -> None:
        probe.set_available(True)
        fetch = AsyncMock(return_value=["doc-1", "doc-2"])
        loader = DataLoader("documents", fetch, supervisor)

        data = await loader.attach()

        assert data == ["doc-1", "doc-2"]
        assert loader.data == data
        assert loader.backend_down is False
        assert broadcaster.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_late_subscriber_makes_own_check(
        self, supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        """Attaching after the recovery was published still probes directly."""
        probe.set_available(True)
        await supervisor.start()
        assert probe.calls == 1

        loader = DataLoader("documents", AsyncMock(return_value=[]), supervisor)
        await loader.attach()

        assert probe.calls == 2
        assert loader.load_count == 1

    @pytest.mark.asyncio
    async def test_attach_while_down_waits_for_recovery(
        self, slow_supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        """No fetch while down; the recovery event triggers exactly one refetch."""
        fetch = AsyncMock(return_value=["quiz"])
        loader = DataLoader("quizzes", fetch, slow_supervisor)

        assert await loader.attach() is None
        assert loader.backend_down is True
        fetch.assert_not_called()

        probe.set_available(True)
        await slow_supervisor.probe_now()
        await wait_until(lambda: loader.load_count == 1)

        assert loader.data == ["quiz"]
        assert loader.backend_down is False
        fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unavailable_event_marks_down(
        self, supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        probe.set_available(True)
        loader = DataLoader("documents", AsyncMock(return_value=[]), supervisor)
        await loader.attach()

        probe.set_available(False)
        await supervisor.probe_now()
        await wait_until(lambda: loader.backend_down)

        assert supervisor.state is AvailabilityState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_connectivity_failure_marks_down(
        self, supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        probe.set_available(True)
        loader = DataLoader(
            "documents", AsyncMock(side_effect=BackendUnavailableError()), supervisor
        )

        assert await loader.attach() is None
        assert loader.backend_down is True
        assert isinstance(loader.error, BackendUnavailableError)

    @pytest.mark.asyncio
    async def test_other_failure_recorded(
        self, supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        """Non-connectivity failures are recorded and do not mark the loader down."""
        probe.set_available(True)
        loader = DataLoader("documents", AsyncMock(side_effect=ClientError()), supervisor)

        await loader.attach()

        assert isinstance(loader.error, ClientError)
        assert loader.backend_down is False

    @pytest.mark.asyncio
    async def test_detach_stops_refetch(
        self,
        slow_supervisor: RetrySupervisor,
        probe: FakeProbe,
        broadcaster: StatusBroadcaster,
    ) -> None:
        fetch = AsyncMock(return_value=[])
        loader = DataLoader("documents", fetch, slow_supervisor)
        await loader.attach()
        loader.detach()
        loader.detach()

        probe.set_available(True)
        await slow_supervisor.probe_now()

        assert broadcaster.subscriber_count == 0
        fetch.assert_not_called()


class TestEnsureAvailable:
    """Tests for ensure_available()."""

    @pytest.mark.asyncio
    async def test_unknown_state_probes_first(
        self, supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        probe.set_available(True)

        await ensure_available(supervisor, "generate quiz")

        assert probe.calls == 1
        assert supervisor.state is AvailabilityState.AVAILABLE

    @pytest.mark.asyncio
    async def test_available_does_not_probe(
        self, supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        supervisor.reset()
        await ensure_available(supervisor, "upload document")
        assert probe.calls == 0

    @pytest.mark.asyncio
    async def test_unavailable_blocks_submission(
        self,
        slow_supervisor: RetrySupervisor,
        probe: FakeProbe,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        await slow_supervisor.start()

        with caplog.at_level(logging.WARNING, logger="heartline.loaders"):
            with pytest.raises(BackendUnavailableError) as exc_info:
                await ensure_available(slow_supervisor, "generate quiz")

        assert exc_info.value.details["action"] == "generate quiz"
        assert "generate quiz" in exc_info.value.message
        assert "Cannot generate quiz" in caplog.text
        assert probe.calls == 1
