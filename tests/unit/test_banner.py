"""Tests for the availability banner."""

import asyncio

import pytest
import pytest_asyncio
from rich.console import Console

from heartline.config import BannerConfig
from heartline.reliability.broadcast import StatusBroadcaster
from heartline.reliability.models import AvailabilityState
from heartline.reliability.supervisor import RetrySupervisor
from heartline.ui.banner import BannerController
from tests.helpers import FakeProbe, wait_until


def _render_text(banner: BannerController) -> str:
    console = Console(record=True, width=100)
    panel = banner.render()
    assert panel is not None
    console.print(panel)
    return console.export_text()


@pytest_asyncio.fixture
async def banner(slow_supervisor: RetrySupervisor):
    controller = BannerController(
        slow_supervisor, BannerConfig(countdown_interval_seconds=0.01)
    )
    yield controller
    controller.unmount()
    await asyncio.sleep(0)


class TestBannerVisibility:
    """Tests for when the banner is shown."""

    @pytest.mark.asyncio
    async def test_unknown_before_mount(self, banner: BannerController) -> None:
        """Unknown is not healthy: the banner shows a checking state."""
        assert banner.visible is True
        assert "Checking connection" in _render_text(banner)

    @pytest.mark.asyncio
    async def test_mount_backend_down(
        self, banner: BannerController, broadcaster: StatusBroadcaster
    ) -> None:
        """Mounting checks directly and shows the countdown when down."""
        result = await banner.mount()

        assert result is not None and not result.available
        assert banner.visible is True
        assert banner.state is AvailabilityState.UNAVAILABLE
        assert banner.countdown == 10
        assert broadcaster.subscriber_count == 1

        text = _render_text(banner)
        assert "Backend server is not running" in text
        assert "Retrying in 10s" in text
        assert "Failed attempts: 1" in text

    @pytest.mark.asyncio
    async def test_mount_backend_up(self, banner: BannerController, probe: FakeProbe) -> None:
        probe.set_available(True)

        await banner.mount()

        assert banner.visible is False
        assert banner.render() is None
        assert banner.countdown is None

    @pytest.mark.asyncio
    async def test_mount_twice_is_noop(
        self, banner: BannerController, probe: FakeProbe, broadcaster: StatusBroadcaster
    ) -> None:
        await banner.mount()
        assert await banner.mount() is None
        assert probe.calls == 1
        assert broadcaster.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_follows_broadcast_transitions(
        self, banner: BannerController, slow_supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        """Transitions caused elsewhere update the banner."""
        probe.set_available(True)
        await banner.mount()

        probe.set_available(False)
        await slow_supervisor.probe_now()
        assert banner.visible is True

        slow_supervisor.reset()
        assert banner.visible is False


class TestCountdown:
    """Tests for the countdown ticker."""

    @pytest.mark.asyncio
    async def test_ticker_refreshes_countdown(self, banner: BannerController) -> None:
        await banner.mount()
        banner._countdown = None

        await wait_until(lambda: banner.countdown is not None)
        assert 1 <= banner.countdown <= 10

    @pytest.mark.asyncio
    async def test_countdown_rounds_up(self, probe: FakeProbe) -> None:
        """Countdown shows whole seconds, rounded up."""
        from heartline.utils.backoff import BackoffPolicy

        sup = RetrySupervisor(probe, policy=BackoffPolicy(2.5, 2.0, 10.0, 0.0))
        banner = BannerController(sup)
        await banner.mount()

        assert banner.countdown == 3
        banner.unmount()
        sup.stop()


class TestRetryNow:
    """Tests for the manual retry action."""

    @pytest.mark.asyncio
    async def test_retry_preempts_timer(
        self, banner: BannerController, slow_supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        """A manual retry issues one probe and clears the countdown on success."""
        await banner.mount()
        probe.set_available(True)

        result = await banner.retry_now()

        assert result is not None and result.available
        assert probe.calls == 2
        assert banner.visible is False
        assert banner.countdown is None
        assert slow_supervisor.seconds_until_next_probe() is None

    @pytest.mark.asyncio
    async def test_retry_ignored_while_checking(
        self, banner: BannerController, probe: FakeProbe
    ) -> None:
        probe.hold()
        mount = asyncio.create_task(banner.mount())
        await wait_until(lambda: probe.in_flight == 1)

        assert banner.checking is True
        assert "Checking connection" in _render_text(banner)
        assert await banner.retry_now() is None

        probe.release()
        await mount
        assert probe.calls == 1
        assert banner.checking is False

    @pytest.mark.asyncio
    async def test_failed_retry_restarts_countdown(
        self, banner: BannerController, slow_supervisor: RetrySupervisor
    ) -> None:
        await banner.mount()
        await banner.retry_now()

        assert banner.visible is True
        assert banner.countdown == 20
        assert slow_supervisor.consecutive_failures == 2


class TestRecoveryHook:
    """Tests for the on_recovered hook."""

    @pytest.mark.asyncio
    async def test_called_on_recovery(
        self, slow_supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        reloads: list[str] = []
        banner = BannerController(slow_supervisor, on_recovered=lambda: reloads.append("reload"))
        await banner.mount()

        probe.set_available(True)
        await banner.retry_now()
        slow_supervisor.reset()

        assert reloads == ["reload"]
        banner.unmount()

    @pytest.mark.asyncio
    async def test_not_called_when_never_down(
        self, slow_supervisor: RetrySupervisor, probe: FakeProbe
    ) -> None:
        reloads: list[str] = []
        probe.set_available(True)
        banner = BannerController(slow_supervisor, on_recovered=lambda: reloads.append("reload"))

        await banner.mount()

        assert reloads == []
        banner.unmount()

    @pytest.mark.asyncio
    async def test_async_hook(self, slow_supervisor: RetrySupervisor, probe: FakeProbe) -> None:
        done = asyncio.Event()

        async def reload() -> None:
            done.set()

        banner = BannerController(slow_supervisor, on_recovered=reload)
        await banner.mount()
        probe.set_available(True)
        await banner.retry_now()

        await asyncio.wait_for(done.wait(), timeout=1.0)
        banner.unmount()


class TestUnmount:
    """Tests for unmount()."""

    @pytest.mark.asyncio
    async def test_unmount_detaches(
        self,
        banner: BannerController,
        slow_supervisor: RetrySupervisor,
        broadcaster: StatusBroadcaster,
    ) -> None:
        """After unmount no events reach the banner and the ticker is stopped."""
        await banner.mount()
        banner.unmount()

        assert broadcaster.subscriber_count == 0
        assert banner.mounted is False
        slow_supervisor.reset()
        assert banner.state is AvailabilityState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unmount_before_mount(self, banner: BannerController) -> None:
        banner.unmount()
