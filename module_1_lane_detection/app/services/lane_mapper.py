"""Lane geometry configuration and GPS lane detection service."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Set, Tuple

import numpy as np
import yaml

from ..errors import LaneConfigError
from ..models import Coordinate, DetectionResult, DetectionState, LaneGeometry, LaneGroup, VehiclePosition
from ..utils.clock import Clock, epoch_ms
from ..utils.geometry import segment_distances, segment_distances_meters

LOGGER = logging.getLogger(__name__)


def _coerce_point(value: object, lane_id: int, label: str) -> Coordinate:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise LaneConfigError(f"Lane {lane_id} {label} must be a [lat, lon] pair")
    try:
        return (float(value[0]), float(value[1]))
    except (TypeError, ValueError) as exc:
        raise LaneConfigError(f"Lane {lane_id} {label} is not numeric: {value!r}") from exc


@dataclass
class LaneConfig:
    intersection_id: int
    intersection_name: str
    lanes: List[LaneGeometry]
    lane_groups: List[LaneGroup] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, path: Path) -> "LaneConfig":
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or {}
        if not isinstance(payload, dict):
            raise LaneConfigError(f"{path} does not contain a mapping")
        return cls.from_mapping(payload)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> "LaneConfig":
        lanes: List[LaneGeometry] = []
        raw_lanes = payload.get("lanes", {}) or {}
        if not isinstance(raw_lanes, dict):
            raise LaneConfigError("'lanes' must map lane ids to geometry")
        for raw_id, values in raw_lanes.items():
            lane_id = int(raw_id)
            if not isinstance(values, dict):
                raise LaneConfigError(f"Lane {lane_id} must be a mapping")
            groups = values.get("signal_groups", []) or []
            lanes.append(
                LaneGeometry(
                    lane_id=lane_id,
                    start_point=_coerce_point(values.get("start"), lane_id, "start"),
                    end_point=_coerce_point(values.get("end"), lane_id, "end"),
                    maneuver_bitmask=int(values.get("maneuver_bitmask", 0)),
                    signal_group_ids=tuple(int(group) for group in groups),
                )
            )

        explicit_groups: List[LaneGroup] = []
        raw_groups = payload.get("lane_groups", {}) or {}
        if isinstance(raw_groups, dict):
            for name, lane_ids in raw_groups.items():
                if not isinstance(lane_ids, (list, tuple)):
                    continue
                explicit_groups.append(LaneGroup(name=str(name), lane_ids=tuple(int(v) for v in lane_ids)))

        derive = payload.get("derive_groups")
        lane_groups = build_lane_groups(lanes, explicit_groups, by_signal_groups=derive == "signal_groups")
        return cls(
            intersection_id=int(payload.get("intersection_id", 0)),
            intersection_name=str(payload.get("intersection_name", "unknown")),
            lanes=lanes,
            lane_groups=lane_groups,
        )

    def lane(self, lane_id: int) -> Optional[LaneGeometry]:
        for lane in self.lanes:
            if lane.lane_id == lane_id:
                return lane
        return None

    def lanes_for(self, lane_ids: Iterable[int]) -> List[LaneGeometry]:
        wanted = set(lane_ids)
        return [lane for lane in self.lanes if lane.lane_id in wanted]


def build_lane_groups(
    lanes: Sequence[LaneGeometry],
    explicit: Sequence[LaneGroup] = (),
    *,
    by_signal_groups: bool = False,
) -> List[LaneGroup]:
    """Complete the explicit lane groups so every lane belongs to at least one group.

    Leftover lanes become singleton groups, or are merged by identical
    signal-group sets when ``by_signal_groups`` is set.
    """

    known = {lane.lane_id for lane in lanes}
    groups: List[LaneGroup] = []
    covered: Set[int] = set()
    for group in explicit:
        members = tuple(lane_id for lane_id in group.lane_ids if lane_id in known)
        if not members:
            LOGGER.warning("Lane group %s references no known lanes", group.name)
            continue
        groups.append(LaneGroup(name=group.name, lane_ids=members))
        covered.update(members)

    leftovers = [lane for lane in lanes if lane.lane_id not in covered]
    if by_signal_groups:
        buckets: Dict[Tuple[int, ...], List[int]] = {}
        for lane in leftovers:
            key = tuple(sorted(set(lane.signal_group_ids)))
            buckets.setdefault(key, []).append(lane.lane_id)
        for key, lane_ids in buckets.items():
            label = "-".join(str(group) for group in key) or "none"
            groups.append(LaneGroup(name=f"signal-{label}", lane_ids=tuple(lane_ids)))
    else:
        for lane in leftovers:
            groups.append(LaneGroup(name=f"lane-{lane.lane_id}", lane_ids=(lane.lane_id,)))
    return groups


class LaneDetector:
    """Matches validated positions against lane segments and expands to lane groups."""

    def __init__(
        self,
        config: LaneConfig,
        lane_width_meters: float = 3.5,
        meters_per_degree: float = 111_111.0,
        distance_mode: Literal["planar", "haversine"] = "planar",
        clock: Clock = epoch_ms,
    ) -> None:
        self.config = config
        self.distance_mode = distance_mode
        # Planar mode compares latitude-degree distances, haversine mode compares meters.
        if distance_mode == "planar":
            self.threshold = lane_width_meters / meters_per_degree
        else:
            self.threshold = lane_width_meters
        self._clock = clock
        self._lane_ids = np.array([lane.lane_id for lane in config.lanes], dtype=np.int64)
        self._starts = [lane.start_point for lane in config.lanes]
        self._ends = [lane.end_point for lane in config.lanes]
        self._groups_by_lane: Dict[int, List[LaneGroup]] = {}
        for group in config.lane_groups:
            for lane_id in group.lane_ids:
                self._groups_by_lane.setdefault(lane_id, []).append(group)
        self._state = DetectionState()
        LOGGER.info(
            "Lane detector initialized for intersection %s with %d lanes",
            config.intersection_id,
            len(config.lanes),
        )

    @property
    def state(self) -> DetectionState:
        return self._state

    def _distance_array(self, point: Coordinate) -> np.ndarray:
        if self.distance_mode == "planar":
            return segment_distances(point, self._starts, self._ends, math.cos(math.radians(point[0])))
        return segment_distances_meters(point, self._starts, self._ends)

    def distances(self, point: Coordinate) -> Dict[int, float]:
        """Return the distance from ``point`` to every lane, in threshold units."""

        if not self.config.lanes:
            return {}
        values = self._distance_array(point)
        return {int(lane_id): float(value) for lane_id, value in zip(self._lane_ids, values)}

    def match(self, point: Coordinate) -> Tuple[int, ...]:
        """Return the sorted ids of lanes within the lane width of ``point``."""

        if not self.config.lanes:
            return ()
        matched = self._lane_ids[self._distance_array(point) <= self.threshold]
        return tuple(sorted(int(lane_id) for lane_id in matched))

    def expand(self, lane_ids: Iterable[int]) -> Tuple[Tuple[int, ...], Tuple[str, ...]]:
        """Expand detected lanes to every lane of the groups that contain them."""

        active: Set[int] = set()
        names: List[str] = []
        for lane_id in lane_ids:
            active.add(lane_id)
            for group in self._groups_by_lane.get(lane_id, []):
                if group.name not in names:
                    names.append(group.name)
                    active.update(group.lane_ids)
        return tuple(sorted(active)), tuple(names)

    def detect(self, position: VehiclePosition) -> DetectionResult:
        detected = self.match(position.point)
        now = self._clock()
        if set(detected) == set(self._state.detected_lane_ids):
            self._state = DetectionState(
                detected_lane_ids=self._state.detected_lane_ids,
                active_lane_ids=self._state.active_lane_ids,
                active_groups=self._state.active_groups,
                last_detection_ms=now,
            )
            return DetectionResult(changed=False, state=self._state)

        active, names = self.expand(detected)
        self._state = DetectionState(
            detected_lane_ids=detected,
            active_lane_ids=active,
            active_groups=names,
            last_detection_ms=now,
        )
        if detected:
            LOGGER.info("Vehicle detected in lanes %s (group %s)", self._state.current_lanes, ", ".join(names))
        else:
            LOGGER.info("Vehicle left all lanes")
        return DetectionResult(changed=True, state=self._state)

    def approach_name(self) -> str:
        if not self._state.detected_lane_ids:
            return "Not in any lane"
        if self._state.active_groups:
            return " / ".join(self._state.active_groups)
        return f"Lane group containing {self._state.current_lanes}"

    def reset(self) -> None:
        self._state = DetectionState()
