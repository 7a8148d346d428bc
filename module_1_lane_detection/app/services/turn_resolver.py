"""Decode lane maneuver bitmasks into allowed turns."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import reduce
from typing import Dict, Iterable, Tuple

from ..models import AllowedTurn, LaneGeometry, TurnType

LOGGER = logging.getLogger(__name__)

TURN_ORDER: Tuple[TurnType, ...] = (TurnType.U_TURN, TurnType.RIGHT, TurnType.LEFT, TurnType.STRAIGHT)


@dataclass(frozen=True)
class ManeuverEncoding:
    """Bit position of each maneuver in a lane's bitmask."""

    u_turn_bit: int = 0
    right_bit: int = 1
    left_bit: int = 2
    straight_bit: int = 3

    def bits(self) -> Dict[TurnType, int]:
        return {
            TurnType.U_TURN: self.u_turn_bit,
            TurnType.RIGHT: self.right_bit,
            TurnType.LEFT: self.left_bit,
            TurnType.STRAIGHT: self.straight_bit,
        }


DEFAULT_ENCODING = ManeuverEncoding()
# Layout used by the first release of the topology decoder.
LEGACY_ENCODING = ManeuverEncoding(u_turn_bit=3, right_bit=2, left_bit=1, straight_bit=4)

ENCODINGS: Dict[str, ManeuverEncoding] = {
    "default": DEFAULT_ENCODING,
    "legacy": LEGACY_ENCODING,
}


class TurnResolver:
    """Union the maneuvers of a lane group and decode them into four turn flags."""

    def __init__(self, encoding: ManeuverEncoding = DEFAULT_ENCODING) -> None:
        self.encoding = encoding

    @classmethod
    def named(cls, name: str) -> "TurnResolver":
        try:
            return cls(ENCODINGS[name])
        except KeyError as exc:
            raise ValueError(f"Unknown maneuver encoding '{name}'") from exc

    @staticmethod
    def union_bitmask(lanes: Iterable[LaneGeometry]) -> int:
        return reduce(lambda acc, lane: acc | max(int(lane.maneuver_bitmask), 0), lanes, 0)

    def decode(self, bitmask: int) -> Tuple[AllowedTurn, ...]:
        bits = self.encoding.bits()
        return tuple(AllowedTurn(type=turn, allowed=bool((bitmask >> bits[turn]) & 1)) for turn in TURN_ORDER)

    def resolve(self, lanes: Iterable[LaneGeometry]) -> Tuple[AllowedTurn, ...]:
        lanes = list(lanes)
        bitmask = self.union_bitmask(lanes)
        turns = self.decode(bitmask)
        LOGGER.debug(
            "Lanes %s combined bitmask %d -> %s",
            [lane.lane_id for lane in lanes],
            bitmask,
            [turn.type.value for turn in turns if turn.allowed],
        )
        return turns


def allowed_types(turns: Iterable[AllowedTurn]) -> Tuple[TurnType, ...]:
    return tuple(turn.type for turn in turns if turn.allowed)
