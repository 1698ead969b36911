"""Geometry helpers: great-circle distance and point-in-shape tests."""

from __future__ import annotations

import math
from collections.abc import Sequence

from fleetwatch._constants import EARTH_RADIUS_M, METERS_PER_MILE


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two WGS84 points, in metres."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = math.sin(d_lat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return haversine_m(lat1, lng1, lat2, lng2) / METERS_PER_MILE


def point_in_circle(lat: float, lng: float, center_lat: float, center_lng: float, radius_m: float) -> bool:
    """Boundary counts as inside."""
    return haversine_m(lat, lng, center_lat, center_lng) <= radius_m


def point_in_polygon(lat: float, lng: float, vertices: Sequence[tuple[float, float]]) -> bool:
    """Even-odd ray casting against an ordered ``(lat, lng)`` vertex ring.

    The ring is traversed with wraparound, so it may be given open or closed
    (first vertex repeated at the end). Rings with fewer than three vertices
    contain nothing.
    """
    n = len(vertices)
    if n < 3:
        return False

    inside = False
    j = n - 1
    for i in range(n):
        lat_i, lng_i = vertices[i]
        lat_j, lng_j = vertices[j]
        if (lat_i > lat) != (lat_j > lat):
            crossing_lng = (lng_j - lng_i) * (lat - lat_i) / (lat_j - lat_i) + lng_i
            if lng < crossing_lng:
                inside = not inside
        j = i
    return inside
