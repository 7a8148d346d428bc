from typing import Dict, Iterable, Optional, Sequence

from module_2_signal_guidance.core.models import SignalResolution, SignalSnapshot, SignalState


# Higher rank wins.
MOST_RESTRICTIVE_RANK: Dict[SignalState, int] = {
    SignalState.RED: 3,
    SignalState.YELLOW: 2,
    SignalState.GREEN: 1,
    SignalState.UNKNOWN: 0,
}
BEST_AVAILABLE_RANK: Dict[SignalState, int] = {
    SignalState.GREEN: 3,
    SignalState.YELLOW: 2,
    SignalState.RED: 1,
    SignalState.UNKNOWN: 0,
}


def classify(snapshot: SignalSnapshot, phase: int) -> SignalState:
    if phase in snapshot.green_phases:
        return SignalState.GREEN
    if phase in snapshot.yellow_phases:
        return SignalState.YELLOW
    if phase in snapshot.red_phases:
        return SignalState.RED
    return SignalState.UNKNOWN


def most_restrictive(states: Iterable[SignalState]) -> SignalState:
    return max(states, key=MOST_RESTRICTIVE_RANK.__getitem__, default=SignalState.UNKNOWN)


def best_available(states: Iterable[SignalState]) -> SignalState:
    return max(states, key=BEST_AVAILABLE_RANK.__getitem__, default=SignalState.UNKNOWN)


def approach_state(states: Iterable[SignalState]) -> SignalState:
    """Combine per-lane states of one approach into a single indicator."""

    states = list(states)
    if SignalState.GREEN in states:
        return SignalState.GREEN
    if SignalState.YELLOW in states:
        return SignalState.YELLOW
    if states and all(state == SignalState.RED for state in states):
        return SignalState.RED
    return SignalState.UNKNOWN


def summarize(snapshot: Optional[SignalSnapshot], phases: Optional[Iterable[int]] = None) -> str:
    """Render e.g. ``"Green: 2, 6 | Red: 4"``, restricted to ``phases`` when given."""

    if snapshot is None:
        return ""
    wanted = set(phases) if phases is not None else None
    parts = []
    for label, members in (
        ("Green", snapshot.green_phases),
        ("Yellow", snapshot.yellow_phases),
        ("Red", snapshot.red_phases),
    ):
        selected = sorted(members if wanted is None else members & wanted)
        if selected:
            parts.append(f"{label}: {', '.join(str(phase) for phase in selected)}")
    return " | ".join(parts)


class SignalStateResolver:
    """Resolve a display state for a set of signal phases from the latest snapshot."""

    def __init__(self, staleness_window_seconds: float = 10.0) -> None:
        self.staleness_window_ms = int(max(staleness_window_seconds, 0.0) * 1000)

    def is_valid(self, snapshot: Optional[SignalSnapshot], now_ms: int) -> bool:
        if snapshot is None or not snapshot.has_phases:
            return False
        return now_ms - snapshot.timestamp_ms <= self.staleness_window_ms

    @staticmethod
    def max_time_to_change(snapshot: SignalSnapshot, phases: Iterable[int]) -> Optional[int]:
        values = [snapshot.max_time_to_change[phase] for phase in phases if phase in snapshot.max_time_to_change]
        return max(values) if values else None

    @staticmethod
    def min_time_to_change(snapshot: SignalSnapshot, phases: Iterable[int]) -> Optional[int]:
        values = [
            snapshot.min_time_to_change[phase]
            for phase in phases
            if snapshot.min_time_to_change.get(phase, 0) > 0
        ]
        return min(values) if values else None

    def resolve(
        self,
        snapshot: Optional[SignalSnapshot],
        phases: Sequence[int],
        now_ms: int,
    ) -> SignalResolution:
        if not self.is_valid(snapshot, now_ms):
            return SignalResolution(state=SignalState.UNKNOWN, fresh=False, summary="No signal data")

        classified = {phase: classify(snapshot, phase) for phase in phases}
        state = most_restrictive(classified.values())
        if state == SignalState.UNKNOWN:
            return SignalResolution(state=state, fresh=True, summary=summarize(snapshot, phases))

        contributing = tuple(sorted(phase for phase, value in classified.items() if value == state))
        return SignalResolution(
            state=state,
            contributing_phases=contributing,
            estimated_remaining_seconds=self.max_time_to_change(snapshot, contributing),
            fresh=True,
            summary=summarize(snapshot, phases),
        )

    def lane_state(self, snapshot: Optional[SignalSnapshot], phases: Sequence[int], now_ms: int) -> SignalState:
        """Whether a single lane may proceed, using its own phases and the best-available rule."""

        if not self.is_valid(snapshot, now_ms):
            return SignalState.UNKNOWN
        return best_available(classify(snapshot, phase) for phase in phases)
