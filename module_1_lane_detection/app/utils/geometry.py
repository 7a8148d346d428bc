"""Geometry helpers for matching GPS fixes against lane segments.

All points are ``(lat, lon)`` in degrees. The planar helpers treat degrees as
Euclidean coordinates, optionally with longitude scaled by ``cos(lat)``; the
``*_meters`` helpers project locally and report haversine meters.
"""
from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np

Point = Tuple[float, float]

EARTH_RADIUS_M = 6_371_008.8


def _as_array(points: Sequence[Point]) -> np.ndarray:
    return np.asarray(points, dtype=np.float64).reshape(-1, 2)


def _projection_parameters(deltas: np.ndarray, offsets: np.ndarray) -> np.ndarray:
    """Return the clamped projection parameter t for each segment."""

    lengths_sq = np.einsum("ij,ij->i", deltas, deltas)
    dots = np.einsum("ij,ij->i", offsets, deltas)
    t = np.divide(dots, lengths_sq, out=np.zeros_like(dots), where=lengths_sq > 0)
    return np.clip(t, 0.0, 1.0)


def segment_distances(
    point: Point,
    starts: Sequence[Point],
    ends: Sequence[Point],
    lon_scale: float = 1.0,
) -> np.ndarray:
    """Planar distance from ``point`` to every ``starts[i]``-``ends[i]`` segment.

    Longitudes are multiplied by ``lon_scale`` first; pass ``cos(lat)`` to get
    latitude-degree units on both axes.
    """

    scale = np.array([1.0, lon_scale])
    p = np.asarray(point, dtype=np.float64) * scale
    a = _as_array(starts) * scale
    b = _as_array(ends) * scale
    deltas = b - a
    t = _projection_parameters(deltas, p - a)
    closest = a + deltas * t[:, None]
    return np.linalg.norm(closest - p, axis=1)


def point_segment_distance(point: Point, start: Point, end: Point) -> float:
    return float(segment_distances(point, [start], [end])[0])


def haversine_meters(first: Point, second: Point) -> float:
    return float(_haversine(np.asarray([first], dtype=np.float64), np.asarray([second], dtype=np.float64))[0])


def _haversine(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    lat1 = np.radians(first[:, 0])
    lat2 = np.radians(second[:, 0])
    dlat = lat2 - lat1
    dlon = np.radians(second[:, 1] - first[:, 1])
    h = np.sin(dlat / 2.0) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2.0) ** 2
    return 2.0 * EARTH_RADIUS_M * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def segment_distances_meters(point: Point, starts: Sequence[Point], ends: Sequence[Point]) -> np.ndarray:
    """Haversine distance in meters from ``point`` to each segment.

    The projection parameter is computed in an equirectangular frame centred
    on ``point`` so longitude is scaled by ``cos(lat)`` before clamping.
    """

    p = np.asarray(point, dtype=np.float64)
    a = _as_array(starts)
    b = _as_array(ends)
    scale = np.array([1.0, math.cos(math.radians(p[0]))])
    deltas = (b - a) * scale
    t = _projection_parameters(deltas, (p - a) * scale)
    closest = a + (b - a) * t[:, None]
    return _haversine(np.broadcast_to(p, closest.shape), closest)


def point_segment_distance_meters(point: Point, start: Point, end: Point) -> float:
    return float(segment_distances_meters(point, [start], [end])[0])


def bearing_degrees(first: Point, second: Point) -> float:
    """Initial bearing from ``first`` to ``second`` (0 = north, clockwise)."""

    lat1, lon1 = (math.radians(value) for value in first)
    lat2, lon2 = (math.radians(value) for value in second)
    y = math.sin(lon2 - lon1) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(lon2 - lon1)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0
