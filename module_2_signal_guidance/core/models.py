from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class SignalState(str, Enum):
    GREEN = "GREEN"
    YELLOW = "YELLOW"
    RED = "RED"
    UNKNOWN = "UNKNOWN"


class MonitorState(str, Enum):
    IDLE = "IDLE"
    MONITORING = "MONITORING"


class SignalSnapshot(BaseModel):
    """One signal-phase report from the SPaT feed."""

    model_config = ConfigDict(frozen=True)

    green_phases: FrozenSet[int] = frozenset()
    yellow_phases: FrozenSet[int] = frozenset()
    red_phases: FrozenSet[int] = frozenset()
    max_time_to_change: Dict[int, int] = Field(default_factory=dict)
    min_time_to_change: Dict[int, int] = Field(default_factory=dict)
    timestamp_ms: int
    intersection: Optional[str] = None

    @property
    def has_phases(self) -> bool:
        return bool(self.green_phases or self.yellow_phases or self.red_phases)


class SignalResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    state: SignalState = SignalState.UNKNOWN
    contributing_phases: Tuple[int, ...] = ()
    estimated_remaining_seconds: Optional[int] = None
    fresh: bool = False
    summary: str = ""


class CountdownState(BaseModel):
    model_config = ConfigDict(frozen=True)

    baseline_seconds: int = 0
    baseline_epoch_ms: int = 0
    remaining_seconds: int = 0
    formatted: str = ""
    active: bool = False


class LaneSignalStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    lane_id: int
    signal_group_ids: Tuple[int, ...] = ()
    state: SignalState = SignalState.UNKNOWN


class TurnStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    allowed: bool


class GuidanceStatus(BaseModel):
    """Read-only view handed to the display layer."""

    model_config = ConfigDict(frozen=True)

    intersection_id: int = 0
    approach: str = "Not in any lane"
    detected_lane_ids: Tuple[int, ...] = ()
    active_lane_ids: Tuple[int, ...] = ()
    current_lanes: str = ""
    in_lane: bool = False
    allowed_turns: List[TurnStatus] = Field(default_factory=list)
    signal_group_ids: Tuple[int, ...] = ()
    monitor_state: MonitorState = MonitorState.IDLE
    signal: SignalResolution = Field(default_factory=SignalResolution)
    lane_signals: List[LaneSignalStatus] = Field(default_factory=list)
    approach_state: SignalState = SignalState.UNKNOWN
    countdown: CountdownState = Field(default_factory=CountdownState)
    heading_degrees: Optional[float] = None
    consecutive_failures: int = 0
    error: Optional[str] = None
    updated_at_ms: int = 0
