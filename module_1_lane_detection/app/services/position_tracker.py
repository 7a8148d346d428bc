"""GPS fix validation and detection throttling."""
from __future__ import annotations

import logging
import math
from typing import Optional

from ..errors import InvalidPosition
from ..models import VehiclePosition
from ..utils.clock import Clock, epoch_ms
from ..utils.geometry import bearing_degrees, haversine_meters

LOGGER = logging.getLogger(__name__)


class PositionTracker:
    """Validates raw fixes and emits at most one position per throttle interval.

    Latest wins: a fix arriving inside the throttle window replaces
    :attr:`latest` but is not emitted, and nothing is buffered for later.
    """

    def __init__(self, throttle_ms: int = 100, clock: Clock = epoch_ms) -> None:
        self.throttle_ms = max(int(throttle_ms), 0)
        self._clock = clock
        self._latest: Optional[VehiclePosition] = None
        self._current: Optional[VehiclePosition] = None
        self._previous: Optional[VehiclePosition] = None
        self._last_emitted_ms: Optional[int] = None

    @staticmethod
    def validate(lat: float, lon: float, timestamp_ms: int) -> VehiclePosition:
        try:
            lat = float(lat)
            lon = float(lon)
        except (TypeError, ValueError) as exc:
            raise InvalidPosition(f"Non-numeric fix ({lat!r}, {lon!r})") from exc
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidPosition(f"Non-finite fix ({lat}, {lon})")
        if lat == 0.0 and lon == 0.0:
            raise InvalidPosition("No fix (0, 0)")
        if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
            raise InvalidPosition(f"Fix out of range ({lat}, {lon})")
        return VehiclePosition(lat=lat, lon=lon, timestamp_ms=int(timestamp_ms))

    def accept(self, lat: float, lon: float, timestamp_ms: Optional[int] = None) -> Optional[VehiclePosition]:
        """Return a validated position when detection should run, otherwise ``None``."""

        now = self._clock()
        try:
            position = self.validate(lat, lon, now if timestamp_ms is None else timestamp_ms)
        except InvalidPosition as exc:
            LOGGER.debug("Discarding fix: %s", exc)
            return None

        self._latest = position
        if self._last_emitted_ms is not None and now - self._last_emitted_ms < self.throttle_ms:
            return None

        self._last_emitted_ms = now
        self._previous = self._current
        self._current = position
        return position

    @property
    def latest(self) -> Optional[VehiclePosition]:
        return self._latest

    @property
    def current(self) -> Optional[VehiclePosition]:
        return self._current

    @property
    def previous(self) -> Optional[VehiclePosition]:
        return self._previous

    def distance_moved_meters(self) -> float:
        if self._current is None or self._previous is None:
            return 0.0
        return haversine_meters(self._previous.point, self._current.point)

    def heading_degrees(self) -> Optional[float]:
        """Bearing between the last two emitted positions, ``None`` when stationary."""

        if self._current is None or self._previous is None:
            return None
        if self._current.point == self._previous.point:
            return None
        return bearing_degrees(self._previous.point, self._current.point)

    def reset(self) -> None:
        self._latest = None
        self._current = None
        self._previous = None
        self._last_emitted_ms = None
