import asyncio
import logging
from contextlib import suppress
from typing import Callable, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

from module_1_lane_detection.app.utils.clock import Clock, epoch_ms
from module_2_signal_guidance.core.countdown import CountdownEngine
from module_2_signal_guidance.core.errors import FetchError, FetchTimeout
from module_2_signal_guidance.core.models import (
    LaneSignalStatus,
    MonitorState,
    SignalResolution,
    SignalSnapshot,
    SignalState,
)
from module_2_signal_guidance.core.state_resolver import SignalStateResolver, approach_state


logger = logging.getLogger(__name__)

ResolutionListener = Callable[[SignalResolution], None]


class SpatSource(Protocol):
    def fetch(self, intersection_id: Optional[int] = None) -> SignalSnapshot:
        ...


class SignalStateService:
    """Poll signal-phase snapshots for the monitored phases and resolve their state.

    Polling runs at ``acquisition_interval`` until the first snapshot of a
    session arrives, then at ``poll_interval``. Every monitoring session has a
    generation number; fetch results from an older generation are dropped.
    """

    def __init__(
        self,
        source: SpatSource,
        resolver: Optional[SignalStateResolver] = None,
        countdown: Optional[CountdownEngine] = None,
        *,
        intersection_id: Optional[int] = None,
        request_timeout: float = 5.0,
        poll_interval: float = 3.0,
        acquisition_interval: float = 0.5,
        failure_alert_threshold: int = 3,
        clock: Clock = epoch_ms,
    ) -> None:
        self.source = source
        self.resolver = resolver or SignalStateResolver()
        self.countdown = countdown or CountdownEngine(clock=clock)
        self.intersection_id = intersection_id
        self.request_timeout = max(request_timeout, 0.1)
        self.poll_interval = max(poll_interval, 0.01)
        self.acquisition_interval = max(acquisition_interval, 0.01)
        self.failure_alert_threshold = max(failure_alert_threshold, 1)
        self._clock = clock
        self._state = MonitorState.IDLE
        self._phases: Tuple[int, ...] = ()
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._stale_timer: Optional[asyncio.TimerHandle] = None
        self._snapshot: Optional[SignalSnapshot] = None
        self._resolution = SignalResolution()
        self._first_snapshot = asyncio.Event()
        self._listeners: List[ResolutionListener] = []
        self.error: Optional[str] = None
        self.consecutive_failures = 0

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def phases(self) -> Tuple[int, ...]:
        return self._phases

    @property
    def snapshot(self) -> Optional[SignalSnapshot]:
        return self._snapshot

    @property
    def resolution(self) -> SignalResolution:
        return self._resolution

    @property
    def generation(self) -> int:
        return self._generation

    def add_listener(self, listener: ResolutionListener) -> None:
        self._listeners.append(listener)

    def start_monitoring(self, phases: Iterable[int]) -> None:
        """Begin polling for ``phases``; restarts the session if the phase set differs."""

        phases = tuple(sorted(set(phases)))
        if self._state == MonitorState.MONITORING and phases == self._phases:
            logger.debug("Already monitoring phases %s", phases)
            return
        self.stop_monitoring()
        if not phases:
            logger.info("No signal groups to monitor")
            return

        self._phases = phases
        self._state = MonitorState.MONITORING
        generation = self._generation
        logger.info("Monitoring signal phases %s (session %d)", phases, generation)
        self._task = asyncio.get_running_loop().create_task(self._poll_loop(generation))

    def stop_monitoring(self) -> None:
        """Cancel polling and drop per-session state. In-flight fetches are discarded."""

        self._generation += 1
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._cancel_stale_timer()
        was_monitoring = self._state == MonitorState.MONITORING
        self._state = MonitorState.IDLE
        self._phases = ()
        self._snapshot = None
        self.error = None
        self.consecutive_failures = 0
        self._first_snapshot = asyncio.Event()
        self.countdown.stop()
        self._set_resolution(SignalResolution())
        if was_monitoring:
            logger.info("Stopped signal monitoring")

    async def shutdown(self) -> None:
        task = self._task
        self.stop_monitoring()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        await self.countdown.aclose()

    async def wait_for_snapshot(self, timeout: float) -> bool:
        """Wait until the current session has its first snapshot."""

        event = self._first_snapshot
        try:
            await asyncio.wait_for(event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def poll_once(self) -> bool:
        """Fetch one snapshot. Returns ``True`` when a snapshot was applied."""

        generation = self._generation
        try:
            snapshot = await asyncio.wait_for(
                asyncio.to_thread(self.source.fetch, self.intersection_id),
                timeout=self.request_timeout,
            )
        except asyncio.TimeoutError:
            failure: Optional[FetchError] = FetchTimeout(f"SPaT fetch exceeded {self.request_timeout}s")
        except FetchError as exc:
            failure = exc
        except Exception as exc:
            failure = FetchError(f"SPaT fetch failed: {exc}")
        else:
            failure = None

        if generation != self._generation:
            logger.debug("Discarding SPaT result from stale session %d", generation)
            return False

        if failure is not None:
            self._record_failure(failure)
            self.refresh()
            return False

        self._snapshot = snapshot
        self.error = None
        self.consecutive_failures = 0
        self._first_snapshot.set()
        self.refresh()
        return True

    def refresh(self) -> SignalResolution:
        """Recompute the resolution against the clock and re-anchor the countdown."""

        resolution = self.resolver.resolve(self._snapshot, self._phases, self._clock())
        if resolution.fresh and resolution.state != SignalState.UNKNOWN and self._snapshot is not None:
            self.countdown.apply(resolution.estimated_remaining_seconds, self._snapshot.timestamp_ms)
        else:
            self.countdown.stop()
        if resolution.fresh:
            self._arm_stale_timer()
        else:
            self._cancel_stale_timer()
        self._set_resolution(resolution)
        return resolution

    def lane_statuses(self, lane_groups: Mapping[int, Sequence[int]]) -> List[LaneSignalStatus]:
        now = self._clock()
        return [
            LaneSignalStatus(
                lane_id=lane_id,
                signal_group_ids=tuple(groups),
                state=self.resolver.lane_state(self._snapshot, groups, now),
            )
            for lane_id, groups in sorted(lane_groups.items())
        ]

    @staticmethod
    def approach_state(statuses: Iterable[LaneSignalStatus]) -> SignalState:
        return approach_state(status.state for status in statuses)

    async def _poll_loop(self, generation: int) -> None:
        while generation == self._generation:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Unexpected error while polling SPaT")
            if generation != self._generation:
                return
            interval = self.poll_interval if self._snapshot is not None else self.acquisition_interval
            await asyncio.sleep(interval)

    def _arm_stale_timer(self) -> None:
        """Re-resolve when the current snapshot leaves the staleness window, even mid-fetch."""

        self._cancel_stale_timer()
        if self._snapshot is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        expires_at = self._snapshot.timestamp_ms + self.resolver.staleness_window_ms
        delay_ms = max(expires_at - self._clock() + 1, 1)
        self._stale_timer = loop.call_later(delay_ms / 1000.0, self._on_stale_timer)

    def _cancel_stale_timer(self) -> None:
        if self._stale_timer is not None:
            self._stale_timer.cancel()
            self._stale_timer = None

    def _on_stale_timer(self) -> None:
        self._stale_timer = None
        if self._state == MonitorState.MONITORING:
            self.refresh()

    def _record_failure(self, exc: FetchError) -> None:
        self.consecutive_failures += 1
        self.error = str(exc)
        if self.consecutive_failures == self.failure_alert_threshold:
            logger.error(
                "SPaT fetch failed %d times in a row; still retrying: %s",
                self.consecutive_failures,
                exc,
            )
        else:
            logger.warning("SPaT fetch failed (attempt %d): %s", self.consecutive_failures, exc)

    def _set_resolution(self, resolution: SignalResolution) -> None:
        # Listeners hear every poll outcome so failure counts reach them too.
        previous = self._resolution
        self._resolution = resolution
        if previous.state != resolution.state:
            logger.info("Signal state %s -> %s (%s)", previous.state.value, resolution.state.value, resolution.summary)
        for listener in list(self._listeners):
            listener(resolution)
