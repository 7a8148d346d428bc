import asyncio
import logging
from contextlib import suppress
from typing import Callable, List, Optional

from module_1_lane_detection.app.utils.clock import Clock, epoch_ms
from module_2_signal_guidance.core.models import CountdownState


logger = logging.getLogger(__name__)

CountdownListener = Callable[[CountdownState], None]


def format_remaining(seconds: Optional[int]) -> str:
    if seconds is None or seconds <= 0:
        return ""
    if seconds < 120:
        return f"{seconds}s"
    minutes, rest = divmod(seconds, 60)
    return f"{minutes}:{rest:02d}"


class CountdownEngine:
    """Local countdown re-anchored on every authoritative time-to-change value.

    ``apply`` sets the baseline from the latest snapshot; between snapshots a
    ticker task recomputes the remaining time from the clock, so missed ticks
    never accumulate drift.
    """

    def __init__(self, tick_seconds: float = 1.0, clock: Clock = epoch_ms) -> None:
        self.tick_seconds = max(tick_seconds, 0.01)
        self._clock = clock
        self._state = CountdownState()
        self._applied_timestamp_ms: Optional[int] = None
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[CountdownListener] = []

    @property
    def state(self) -> CountdownState:
        return self._state

    @property
    def ticking(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: CountdownListener) -> None:
        self._listeners.append(listener)

    def apply(self, seconds: Optional[int], snapshot_timestamp_ms: int) -> CountdownState:
        """Re-anchor on a snapshot's value. A snapshot already applied is ignored."""

        if snapshot_timestamp_ms == self._applied_timestamp_ms:
            return self._state
        self._applied_timestamp_ms = snapshot_timestamp_ms

        if seconds is None or seconds <= 0:
            self._cancel_ticker()
            self._publish(CountdownState())
            return self._state

        now = self._clock()
        logger.debug("Countdown baseline %ss at %d", seconds, now)
        self._publish(
            CountdownState(
                baseline_seconds=int(seconds),
                baseline_epoch_ms=now,
                remaining_seconds=int(seconds),
                formatted=format_remaining(int(seconds)),
                active=True,
            )
        )
        # Restart so ticks stay aligned to the new baseline.
        self._cancel_ticker()
        self._ensure_ticker()
        return self._state

    def tick(self) -> CountdownState:
        if not self._state.active:
            return self._state
        elapsed_seconds = (self._clock() - self._state.baseline_epoch_ms) // 1000
        remaining = max(0, self._state.baseline_seconds - int(elapsed_seconds))
        if remaining == 0:
            self._publish(
                CountdownState(
                    baseline_seconds=self._state.baseline_seconds,
                    baseline_epoch_ms=self._state.baseline_epoch_ms,
                )
            )
        elif remaining != self._state.remaining_seconds:
            self._publish(
                self._state.model_copy(
                    update={"remaining_seconds": remaining, "formatted": format_remaining(remaining)}
                )
            )
        return self._state

    def stop(self) -> None:
        """Cancel ticking and clear the countdown; the next snapshot starts afresh."""

        self._cancel_ticker()
        self._applied_timestamp_ms = None
        if self._state != CountdownState():
            self._publish(CountdownState())

    async def aclose(self) -> None:
        task = self._task
        self.stop()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    def _ensure_ticker(self) -> None:
        if self.ticking:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Without a loop the caller drives tick() directly.
            return
        self._task = loop.create_task(self._run())

    def _cancel_ticker(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick_seconds)
            if not self.tick().active:
                logger.debug("Countdown reached zero")
                return

    def _publish(self, state: CountdownState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)
