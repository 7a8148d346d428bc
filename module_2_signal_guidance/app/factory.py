"""Build the guidance engine from settings."""

from __future__ import annotations

import logging
from typing import Optional

from module_1_lane_detection.app.config.settings import LaneDetectionSettings
from module_1_lane_detection.app.services.lane_mapper import LaneConfig, LaneDetector
from module_1_lane_detection.app.services.map_feed import MapFeedClient
from module_1_lane_detection.app.services.position_tracker import PositionTracker
from module_1_lane_detection.app.services.signal_groups import SignalGroupResolver
from module_1_lane_detection.app.services.turn_resolver import TurnResolver
from module_1_lane_detection.app.utils.clock import Clock, epoch_ms
from module_2_signal_guidance.adapters.spat_source import (
    HttpSpatSource,
    JsonFileSpatSource,
    UnconfiguredSpatSource,
)
from module_2_signal_guidance.app.settings import AppSettings
from module_2_signal_guidance.core.countdown import CountdownEngine
from module_2_signal_guidance.core.state_resolver import SignalStateResolver
from module_2_signal_guidance.services.orchestrator import OrchestrationController
from module_2_signal_guidance.services.signal_service import SignalStateService, SpatSource


logger = logging.getLogger(__name__)


def load_lane_config(lane_settings: LaneDetectionSettings) -> LaneConfig:
    if lane_settings.map_feed_url:
        client = MapFeedClient(lane_settings.map_feed_url, timeout=lane_settings.map_request_timeout_seconds)
        try:
            return client.load_config(lane_settings.intersection_id)
        finally:
            client.close()
    return LaneConfig.from_yaml(lane_settings.lane_config_path)


def build_spat_source(settings: AppSettings, clock: Clock = epoch_ms) -> SpatSource:
    if settings.spat_replay_path is not None:
        return JsonFileSpatSource(settings.spat_replay_path, clock=clock, loop=settings.spat_replay_loop)
    if settings.has_spat_source:
        return HttpSpatSource(settings.spat_feed_url, timeout=settings.request_timeout_seconds, clock=clock)
    logger.warning("No SPaT feed or recording configured; signal state will stay UNKNOWN")
    return UnconfiguredSpatSource()


def build_controller(
    settings: AppSettings,
    lane_settings: LaneDetectionSettings,
    *,
    lane_config: Optional[LaneConfig] = None,
    source: Optional[SpatSource] = None,
    clock: Clock = epoch_ms,
) -> OrchestrationController:
    config = lane_config or load_lane_config(lane_settings)
    detector = LaneDetector(
        config,
        lane_width_meters=lane_settings.lane_width_meters,
        meters_per_degree=lane_settings.meters_per_degree,
        distance_mode=lane_settings.distance_mode,
        clock=clock,
    )
    signal_service = SignalStateService(
        source or build_spat_source(settings, clock),
        SignalStateResolver(settings.staleness_window_seconds),
        CountdownEngine(settings.countdown_tick_seconds, clock=clock),
        intersection_id=lane_settings.intersection_id or config.intersection_id or None,
        request_timeout=settings.request_timeout_seconds,
        poll_interval=settings.poll_interval_seconds,
        acquisition_interval=settings.acquisition_interval_seconds,
        failure_alert_threshold=settings.failure_alert_threshold,
        clock=clock,
    )
    return OrchestrationController(
        PositionTracker(lane_settings.detection_throttle_ms, clock=clock),
        detector,
        TurnResolver.named(lane_settings.maneuver_encoding),
        SignalGroupResolver(),
        signal_service,
        clock=clock,
    )
