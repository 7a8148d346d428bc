"""Exception types raised by the lane detection module."""
from __future__ import annotations


class InvalidPosition(ValueError):
    """Raised when a GPS fix is out of range, non-finite, or the (0, 0) "no fix" marker."""


class LaneConfigError(ValueError):
    """Raised when intersection lane configuration cannot be parsed."""


class MapFeedError(RuntimeError):
    """Raised when the lane topology feed cannot be fetched or decoded."""
