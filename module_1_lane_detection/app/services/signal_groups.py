"""Map lanes to the signal groups (phases) that control them."""
from __future__ import annotations

from typing import Dict, Iterable, Tuple

from ..models import LaneGeometry


class SignalGroupResolver:
    """Union the static signal-group ids of the lanes in an active group."""

    @staticmethod
    def for_lane(lane: LaneGeometry) -> Tuple[int, ...]:
        return tuple(sorted({group for group in lane.signal_group_ids if group > 0}))

    def by_lane(self, lanes: Iterable[LaneGeometry]) -> Dict[int, Tuple[int, ...]]:
        return {lane.lane_id: self.for_lane(lane) for lane in lanes}

    def resolve(self, lanes: Iterable[LaneGeometry]) -> Tuple[int, ...]:
        groups = set()
        for lane in lanes:
            groups.update(self.for_lane(lane))
        return tuple(sorted(groups))
