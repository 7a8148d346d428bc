"""Shared data models for Module 1."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple

Coordinate = Tuple[float, float]


class TurnType(str, Enum):
    U_TURN = "U_TURN"
    RIGHT = "RIGHT"
    LEFT = "LEFT"
    STRAIGHT = "STRAIGHT"


@dataclass(frozen=True)
class AllowedTurn:
    type: TurnType
    allowed: bool


@dataclass(frozen=True)
class LaneGeometry:
    """Reference geometry for a single lane approaching the intersection.

    Points are ``(lat, lon)``. Only the first and last point of the feed's
    lane polyline are kept.
    """

    lane_id: int
    start_point: Coordinate
    end_point: Coordinate
    maneuver_bitmask: int = 0
    signal_group_ids: Tuple[int, ...] = ()


@dataclass(frozen=True)
class LaneGroup:
    """Lanes treated as one physical approach for guidance purposes."""

    name: str
    lane_ids: Tuple[int, ...]


@dataclass(frozen=True)
class VehiclePosition:
    lat: float
    lon: float
    timestamp_ms: int

    @property
    def point(self) -> Coordinate:
        return (self.lat, self.lon)


@dataclass(frozen=True)
class DetectionState:
    """Result of the latest lane detection pass.

    ``detected_lane_ids`` is the raw geometric match and ``active_lane_ids``
    the expansion through lane-group membership.
    """

    detected_lane_ids: Tuple[int, ...] = ()
    active_lane_ids: Tuple[int, ...] = ()
    active_groups: Tuple[str, ...] = ()
    last_detection_ms: int = 0

    @property
    def is_in_any_lane(self) -> bool:
        return bool(self.active_lane_ids)

    @property
    def current_lanes(self) -> str:
        return " & ".join(str(lane_id) for lane_id in self.detected_lane_ids)


@dataclass(frozen=True)
class DetectionResult:
    changed: bool
    state: DetectionState = field(default_factory=DetectionState)
