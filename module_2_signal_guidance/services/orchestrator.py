import asyncio
import logging
from typing import Dict, Optional, Sequence, Tuple

from module_1_lane_detection.app.models import AllowedTurn, DetectionState
from module_1_lane_detection.app.services.lane_mapper import LaneDetector
from module_1_lane_detection.app.services.position_tracker import PositionTracker
from module_1_lane_detection.app.services.signal_groups import SignalGroupResolver
from module_1_lane_detection.app.services.turn_resolver import TurnResolver
from module_1_lane_detection.app.utils.clock import Clock, epoch_ms
from module_2_signal_guidance.core.models import CountdownState, GuidanceStatus, SignalResolution, TurnStatus
from module_2_signal_guidance.core.state_store import StateStore
from module_2_signal_guidance.services.signal_service import SignalStateService


logger = logging.getLogger(__name__)


class OrchestrationController:
    """Wire position fixes through lane detection into turn and signal guidance.

    Holds no geometry or signal logic of its own; it decides when each
    collaborator runs and publishes the combined status to the store.
    """

    def __init__(
        self,
        tracker: PositionTracker,
        detector: LaneDetector,
        turn_resolver: TurnResolver,
        group_resolver: SignalGroupResolver,
        signal_service: SignalStateService,
        state_store: Optional[StateStore] = None,
        clock: Clock = epoch_ms,
    ) -> None:
        self.tracker = tracker
        self.detector = detector
        self.turn_resolver = turn_resolver
        self.group_resolver = group_resolver
        self.signal_service = signal_service
        self.state_store = state_store or StateStore()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._lane_groups: Dict[int, Tuple[int, ...]] = {}
        self.error: Optional[str] = None
        signal_service.add_listener(self._on_resolution)
        signal_service.countdown.add_listener(self._on_countdown)
        self.state_store.update(intersection_id=detector.config.intersection_id)

    def status(self) -> GuidanceStatus:
        return self.state_store.status

    async def handle_fix(self, lat: float, lon: float, timestamp_ms: Optional[int] = None) -> GuidanceStatus:
        """Process one GPS fix. Never raises for bad fixes or feed trouble."""

        async with self._lock:
            position = self.tracker.accept(lat, lon, timestamp_ms)
            if position is None:
                return self.status()

            previous_active = self.detector.state.active_lane_ids
            result = self.detector.detect(position)
            if result.changed and result.state.active_lane_ids != previous_active:
                await self._on_lane_change(result.state)
            self._publish_detection(result.state)
            return self.status()

    async def reset(self) -> GuidanceStatus:
        async with self._lock:
            self.signal_service.stop_monitoring()
            self.tracker.reset()
            self.detector.reset()
            self._lane_groups = {}
            self.error = None
            self.state_store.reset()
            logger.info("Guidance session reset")
            return self.status()

    async def shutdown(self) -> None:
        async with self._lock:
            await self.signal_service.shutdown()

    async def _on_lane_change(self, state: DetectionState) -> None:
        reconciliation = self.state_store.reconcile(state.active_lane_ids)
        if not state.active_lane_ids:
            logger.info("Left all lane groups; stopping guidance")
            self._lane_groups = {}
            self.signal_service.stop_monitoring()
            self.error = None
            self.state_store.update(allowed_turns=[], signal_group_ids=(), lane_signals=[], error=None)
            return

        logger.info(
            "Lane group changed to %s (added %s, removed %s)",
            state.active_lane_ids,
            reconciliation.added,
            reconciliation.removed,
        )
        lanes = self.detector.config.lanes_for(state.active_lane_ids)
        turns, groups = await asyncio.gather(
            self._resolve_turns(lanes),
            self._start_signal_monitoring(lanes),
            return_exceptions=True,
        )

        errors = []
        if isinstance(turns, BaseException):
            logger.warning("Turn resolution failed: %s", turns)
            errors.append(f"turns: {turns}")
            turns = ()
        if isinstance(groups, BaseException):
            logger.warning("Signal monitoring failed to start: %s", groups)
            errors.append(f"signal: {groups}")
            groups = ()
        self.error = "; ".join(errors) or None
        self.state_store.update(
            allowed_turns=[TurnStatus(type=turn.type.value, allowed=turn.allowed) for turn in turns],
            signal_group_ids=tuple(groups),
            error=self.error,
        )
        self._on_resolution(self.signal_service.resolution)

    async def _resolve_turns(self, lanes: Sequence) -> Tuple[AllowedTurn, ...]:
        return self.turn_resolver.resolve(lanes)

    async def _start_signal_monitoring(self, lanes: Sequence) -> Tuple[int, ...]:
        self._lane_groups = self.group_resolver.by_lane(lanes)
        groups = self.group_resolver.resolve(lanes)
        self.signal_service.start_monitoring(groups)
        return groups

    def _publish_detection(self, state: DetectionState) -> None:
        self.state_store.update(
            approach=self.detector.approach_name(),
            detected_lane_ids=state.detected_lane_ids,
            active_lane_ids=state.active_lane_ids,
            current_lanes=state.current_lanes,
            in_lane=state.is_in_any_lane,
            heading_degrees=self.tracker.heading_degrees(),
            monitor_state=self.signal_service.state,
            updated_at_ms=state.last_detection_ms,
        )

    def _on_resolution(self, resolution: SignalResolution) -> None:
        lane_signals = self.signal_service.lane_statuses(self._lane_groups)
        self.state_store.update(
            signal=resolution,
            lane_signals=lane_signals,
            approach_state=self.signal_service.approach_state(lane_signals),
            monitor_state=self.signal_service.state,
            consecutive_failures=self.signal_service.consecutive_failures,
            error=self.signal_service.error or self.error,
            updated_at_ms=self._clock(),
        )

    def _on_countdown(self, countdown: CountdownState) -> None:
        self.state_store.update(countdown=countdown)
