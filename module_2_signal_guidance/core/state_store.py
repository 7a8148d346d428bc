import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Tuple

from module_2_signal_guidance.core.models import GuidanceStatus


logger = logging.getLogger(__name__)

StatusListener = Callable[[GuidanceStatus], None]


@dataclass(frozen=True)
class LaneReconciliation:
    added: Tuple[int, ...] = ()
    removed: Tuple[int, ...] = ()
    retained: Tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class StateStore:
    """Hold the current guidance status and the lanes it is tracking.

    The status is replaced whole on every update so readers always see a
    consistent snapshot.
    """

    def __init__(self) -> None:
        self._lanes: List[int] = []
        self._status = GuidanceStatus()
        self._listeners: List[StatusListener] = []
        self.version = 0

    @property
    def status(self) -> GuidanceStatus:
        return self._status

    def lanes(self) -> List[int]:
        return list(self._lanes)

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def reconcile(self, lane_ids: Iterable[int]) -> LaneReconciliation:
        incoming = []
        for lane_id in lane_ids:
            if lane_id not in incoming:
                incoming.append(lane_id)
        current = set(self._lanes)
        result = LaneReconciliation(
            added=tuple(sorted(set(incoming) - current)),
            removed=tuple(sorted(current - set(incoming))),
            retained=tuple(sorted(current & set(incoming))),
        )
        if result.changed:
            logger.debug("Lanes added=%s removed=%s retained=%s", result.added, result.removed, result.retained)
        self._lanes = sorted(incoming)
        return result

    def update(self, **changes: object) -> GuidanceStatus:
        status = self._status.model_copy(update=changes)
        if status == self._status:
            return self._status
        self._status = status
        self.version += 1
        for listener in list(self._listeners):
            listener(status)
        return status

    def reset(self) -> None:
        self._lanes = []
        self._status = GuidanceStatus(intersection_id=self._status.intersection_id)
        self.version += 1
        for listener in list(self._listeners):
            listener(self._status)
