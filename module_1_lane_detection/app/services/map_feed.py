"""Fetch lane topology from the MAP feed and turn it into lane geometry."""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import requests

from ..errors import MapFeedError
from ..models import Coordinate, LaneGeometry
from .lane_mapper import LaneConfig, build_lane_groups

LOGGER = logging.getLogger(__name__)


def _lane_entries(payload: Any) -> List[dict]:
    """Normalise the three shapes the feed has been seen to return."""

    if isinstance(payload, list):
        return [entry for entry in payload if isinstance(entry, dict)]
    if isinstance(payload, dict):
        lanes = payload.get("lanes")
        if isinstance(lanes, list):
            return [entry for entry in lanes if isinstance(entry, dict)]
        if "laneId" in payload:
            return [payload]
    raise MapFeedError(f"Unrecognised lane topology payload: {type(payload).__name__}")


def _endpoints(coordinates: Sequence[Any]) -> Optional[Tuple[Coordinate, Coordinate]]:
    # Feed coordinates are [lon, lat].
    try:
        first = coordinates[0]
        last = coordinates[-1]
        return (float(first[1]), float(first[0])), (float(last[1]), float(last[0]))
    except (IndexError, TypeError, ValueError):
        return None


def _signal_groups(connects_to: Iterable[Any]) -> Tuple[int, ...]:
    groups = set()
    for connection in connects_to or []:
        if not isinstance(connection, dict):
            continue
        value = connection.get("signalGroup")
        if isinstance(value, bool):
            continue
        if isinstance(value, int) and value > 0:
            groups.add(value)
    return tuple(sorted(groups))


def parse_lane(entry: dict) -> Optional[LaneGeometry]:
    lane_id = entry.get("laneId")
    if not isinstance(lane_id, int) or isinstance(lane_id, bool):
        LOGGER.warning("Skipping lane without integer laneId: %r", lane_id)
        return None

    location = entry.get("location") or {}
    endpoints = _endpoints(location.get("coordinates") or []) if isinstance(location, dict) else None
    if endpoints is None:
        LOGGER.warning("Skipping lane %s without usable coordinates", lane_id)
        return None

    maneuvers = entry.get("maneuvers") or []
    if len(maneuvers) != 2:
        LOGGER.warning("Lane %s has %d maneuver entries, expected 2", lane_id, len(maneuvers))
    try:
        bitmask = int(maneuvers[1])
    except (IndexError, TypeError, ValueError):
        bitmask = 0

    return LaneGeometry(
        lane_id=lane_id,
        start_point=endpoints[0],
        end_point=endpoints[1],
        maneuver_bitmask=max(bitmask, 0),
        signal_group_ids=_signal_groups(entry.get("connectsTo") or []),
    )


def parse_map_payload(payload: Any) -> List[LaneGeometry]:
    """Convert a raw MAP payload into lane geometries, skipping malformed lanes."""

    lanes = []
    seen = set()
    for entry in _lane_entries(payload):
        lane = parse_lane(entry)
        if lane is None:
            continue
        if lane.lane_id in seen:
            LOGGER.warning("Duplicate lane %s in topology payload; keeping the first", lane.lane_id)
            continue
        seen.add(lane.lane_id)
        lanes.append(lane)
    return lanes


class MapFeedClient:
    """Load intersection lane topology over HTTP."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()

    def fetch(self, intersection_id: Optional[int] = None) -> List[LaneGeometry]:
        params = {"intersection": intersection_id} if intersection_id is not None else None
        try:
            response = self._session.get(
                self.url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                raise requests.HTTPError(f"Received status {response.status_code}")
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Lane topology request to %s failed: %s", self.url, exc)
            raise MapFeedError(str(exc)) from exc

        lanes = parse_map_payload(payload)
        if not lanes:
            raise MapFeedError("Lane topology payload contained no usable lanes")
        LOGGER.info("Loaded %d lanes from topology feed", len(lanes))
        return lanes

    def load_config(
        self,
        intersection_id: Optional[int] = None,
        *,
        name: str = "unknown",
        by_signal_groups: bool = True,
    ) -> LaneConfig:
        """Build a lane configuration, grouping feed lanes that share signal groups."""

        lanes = self.fetch(intersection_id)
        return LaneConfig(
            intersection_id=intersection_id or 0,
            intersection_name=name,
            lanes=lanes,
            lane_groups=build_lane_groups(lanes, by_signal_groups=by_signal_groups),
        )

    def close(self) -> None:
        self._session.close()
