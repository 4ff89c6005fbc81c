"""Great-circle radius matching.

Pure functions, no I/O. Coordinates are validated upstream; the checks here only
catch NaN or out-of-range values that reach the matcher directly.
"""
from __future__ import annotations

import math
from collections.abc import Callable, Iterable
from typing import NamedTuple, TypeVar

from marketplace.errors import InvalidCoordinateError

EARTH_RADIUS_KM = 6371.0

T = TypeVar("T")


class Coordinates(NamedTuple):
    lat: float
    lng: float


def _check_point(point: Coordinates) -> None:
    lat, lng = point
    if math.isnan(lat) or math.isnan(lng):
        raise InvalidCoordinateError(f"Coordinate is NaN: {point}")
    if not -90.0 <= lat <= 90.0:
        raise InvalidCoordinateError(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lng <= 180.0:
        raise InvalidCoordinateError(f"Longitude {lng} outside [-180, 180]")


def _check_radius(radius_km: float) -> None:
    if math.isnan(radius_km) or math.isinf(radius_km) or radius_km < 0:
        raise InvalidCoordinateError(f"Radius must be a finite non-negative number, got {radius_km}")


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Distance between two points in kilometres."""
    _check_point(a)
    _check_point(b)
    lat1, lng1 = math.radians(a.lat), math.radians(a.lng)
    lat2, lng2 = math.radians(b.lat), math.radians(b.lng)

    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


def within_radius(center: Coordinates, point: Coordinates, radius_km: float) -> bool:
    _check_radius(radius_km)
    return haversine_km(center, point) <= radius_km


def filter_by_radius(
    center: Coordinates,
    radius_km: float,
    candidates: Iterable[T],
    locate: Callable[[T], Coordinates | None] = lambda c: c.coordinates,
) -> list[T]:
    """Return candidates within ``radius_km`` of ``center``, in input order.

    Candidates whose ``locate`` returns None are never treated as in range.
    """
    _check_radius(radius_km)
    matched = []
    for candidate in candidates:
        point = locate(candidate)
        if point is None:
            continue
        if within_radius(center, point, radius_km):
            matched.append(candidate)
    return matched
