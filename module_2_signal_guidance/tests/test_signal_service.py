import asyncio
import logging
import threading
import time
from typing import List, Union

from module_2_signal_guidance.core.countdown import CountdownEngine
from module_2_signal_guidance.core.errors import FetchError
from module_2_signal_guidance.core.models import MonitorState, SignalSnapshot, SignalState
from module_2_signal_guidance.core.state_resolver import SignalStateResolver
from module_2_signal_guidance.services.signal_service import SignalStateService


T = 1_700_000_000_000


class FakeClock:
    def __init__(self, now: int = T) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class ScriptedSource:
    """Returns scripted snapshots or raises scripted errors; repeats the last entry."""

    def __init__(self, script: List[Union[SignalSnapshot, Exception]]) -> None:
        self.script = list(script)
        self.calls = 0

    def fetch(self, intersection_id=None) -> SignalSnapshot:
        index = min(self.calls, len(self.script) - 1)
        self.calls += 1
        item = self.script[index]
        if isinstance(item, Exception):
            raise item
        return item


class BlockingSource:
    def __init__(self, snapshot: SignalSnapshot) -> None:
        self.snapshot = snapshot
        self.started = threading.Event()
        self.release = threading.Event()

    def fetch(self, intersection_id=None) -> SignalSnapshot:
        self.started.set()
        self.release.wait(2.0)
        return self.snapshot


class SlowSource:
    def fetch(self, intersection_id=None) -> SignalSnapshot:
        time.sleep(0.5)
        return green_snapshot(T)


def green_snapshot(timestamp_ms: int, seconds: int = 15) -> SignalSnapshot:
    return SignalSnapshot(
        green_phases=frozenset({4}),
        red_phases=frozenset({2}),
        max_time_to_change={4: seconds, 2: 30},
        timestamp_ms=timestamp_ms,
    )


def build_service(source, clock: FakeClock, **kwargs) -> SignalStateService:
    options = {"poll_interval": 60.0, "acquisition_interval": 60.0}
    options.update(kwargs)
    return SignalStateService(
        source,
        SignalStateResolver(staleness_window_seconds=10),
        CountdownEngine(clock=clock),
        clock=clock,
        **options,
    )


def test_monitoring_acquires_snapshot_and_starts_countdown() -> None:
    clock = FakeClock()
    service = build_service(ScriptedSource([green_snapshot(T)]), clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        assert service.state == MonitorState.MONITORING
        assert await service.wait_for_snapshot(1.0)

        assert service.resolution.state == SignalState.GREEN
        assert service.resolution.contributing_phases == (4,)
        assert service.countdown.state.formatted == "15s"
        await service.shutdown()
        assert service.state == MonitorState.IDLE

    asyncio.run(scenario())


def test_failures_keep_snapshot_and_count(caplog) -> None:
    clock = FakeClock()
    source = ScriptedSource([green_snapshot(T), FetchError("boom")])
    service = build_service(source, clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        assert await service.wait_for_snapshot(1.0)
        with caplog.at_level(logging.WARNING):
            for _ in range(3):
                assert await service.poll_once() is False

        assert service.consecutive_failures == 3
        assert service.error == "boom"
        assert service.snapshot is not None
        assert service.resolution.state == SignalState.GREEN
        assert service.state == MonitorState.MONITORING
        assert any("still retrying" in record.message for record in caplog.records)
        await service.shutdown()

    asyncio.run(scenario())


def test_staleness_forces_unknown_while_feed_fails() -> None:
    clock = FakeClock()
    service = build_service(ScriptedSource([green_snapshot(T), FetchError("down")]), clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        assert await service.wait_for_snapshot(1.0)
        clock.now = T + 10_001
        await service.poll_once()

        assert service.resolution.state == SignalState.UNKNOWN
        assert service.resolution.fresh is False
        assert service.countdown.state.active is False
        await service.shutdown()

    asyncio.run(scenario())


def test_success_clears_error() -> None:
    clock = FakeClock()
    source = ScriptedSource([FetchError("down"), green_snapshot(T)])
    service = build_service(source, clock)

    async def scenario() -> None:
        assert await service.poll_once() is False
        assert service.error == "down"
        assert await service.poll_once() is True
        assert service.error is None
        assert service.consecutive_failures == 0

    asyncio.run(scenario())


def test_timeout_is_recorded_as_fetch_failure() -> None:
    service = build_service(SlowSource(), FakeClock(), request_timeout=0.1)

    async def scenario() -> None:
        assert await service.poll_once() is False

    asyncio.run(scenario())
    assert service.consecutive_failures == 1
    assert "exceeded" in service.error


def test_in_flight_result_is_discarded_after_stop() -> None:
    clock = FakeClock()
    source = BlockingSource(green_snapshot(T))
    service = build_service(source, clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        pending = asyncio.create_task(service.poll_once())
        await asyncio.sleep(0)
        await asyncio.to_thread(source.started.wait, 1.0)

        service.stop_monitoring()
        source.release.set()

        assert await pending is False
        assert service.snapshot is None
        assert service.resolution.state == SignalState.UNKNOWN
        await service.shutdown()

    asyncio.run(scenario())


def test_in_flight_result_is_discarded_after_phase_change() -> None:
    clock = FakeClock()
    source = BlockingSource(green_snapshot(T))
    service = build_service(source, clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        pending = asyncio.create_task(service.poll_once())
        await asyncio.sleep(0)
        await asyncio.to_thread(source.started.wait, 1.0)

        service.start_monitoring([2])
        source.release.set()
        assert await pending is False
        assert service.phases == (2,)
        await service.shutdown()

    asyncio.run(scenario())


def test_duplicate_snapshot_does_not_reset_countdown() -> None:
    clock = FakeClock()
    service = build_service(ScriptedSource([green_snapshot(T, seconds=10)]), clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        assert await service.wait_for_snapshot(1.0)
        clock.now = T + 3_000
        service.countdown.tick()
        await service.poll_once()

        assert service.countdown.state.remaining_seconds == 7
        await service.shutdown()

    asyncio.run(scenario())


def test_lane_statuses_use_each_lanes_own_phases() -> None:
    clock = FakeClock()
    service = build_service(ScriptedSource([green_snapshot(T)]), clock)

    async def scenario() -> None:
        await service.poll_once()

    asyncio.run(scenario())
    statuses = service.lane_statuses({9: (2, 4), 7: (2,)})

    assert [(status.lane_id, status.state) for status in statuses] == [
        (7, SignalState.RED),
        (9, SignalState.GREEN),
    ]
    assert service.approach_state(statuses) == SignalState.GREEN


def test_empty_phase_set_does_not_monitor() -> None:
    service = build_service(ScriptedSource([green_snapshot(T)]), FakeClock())

    async def scenario() -> None:
        service.start_monitoring([])

    asyncio.run(scenario())
    assert service.state == MonitorState.IDLE


class StallingSource:
    """Answers the first fetch, then hangs until released."""

    def __init__(self, snapshot: SignalSnapshot) -> None:
        self.snapshot = snapshot
        self.calls = 0
        self.release = threading.Event()

    def fetch(self, intersection_id=None) -> SignalSnapshot:
        self.calls += 1
        if self.calls > 1:
            self.release.wait(2.0)
        return self.snapshot


def test_snapshot_expires_while_fetch_is_stalled() -> None:
    clock = FakeClock()
    source = StallingSource(green_snapshot(T))
    service = SignalStateService(
        source,
        SignalStateResolver(staleness_window_seconds=0.05),
        CountdownEngine(clock=clock),
        poll_interval=0.01,
        acquisition_interval=0.01,
        clock=clock,
    )

    async def scenario() -> None:
        service.start_monitoring([4])
        assert await service.wait_for_snapshot(1.0)
        clock.now = T + 20_000
        await asyncio.sleep(0.3)

        assert source.calls == 2
        assert service.snapshot is not None
        assert service.consecutive_failures == 0
        assert service.resolution.state == SignalState.UNKNOWN
        assert service.resolution.fresh is False
        assert service.countdown.state.active is False

        source.release.set()
        await service.shutdown()

    asyncio.run(scenario())


def test_stopping_cancels_expiry_timer() -> None:
    clock = FakeClock()
    service = build_service(ScriptedSource([green_snapshot(T)]), clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        assert await service.wait_for_snapshot(1.0)
        assert service._stale_timer is not None

        service.stop_monitoring()
        assert service._stale_timer is None
        await service.shutdown()

    asyncio.run(scenario())


def test_unexpected_source_error_counts_as_fetch_failure() -> None:
    clock = FakeClock()
    service = build_service(ScriptedSource([ValueError("bad payload")]), clock)

    async def scenario() -> None:
        service.start_monitoring([4])
        await asyncio.sleep(0.1)

        assert service.consecutive_failures == 1
        assert service.error == "SPaT fetch failed: bad payload"
        assert service.resolution.state == SignalState.UNKNOWN
        assert service.state == MonitorState.MONITORING
        await service.shutdown()

    asyncio.run(scenario())
