from __future__ import annotations

"""
File: fleetsim/routing/geo.py
Purpose: Great-circle geometry helpers.
Key responsibilities:
- Haversine distance between two coordinates (km).
- Centroid and linear interpolation used by the optimizer and progression loop.
"""

from math import asin, cos, radians, sin, sqrt
from typing import Sequence

from fleetsim.schemas import Coordinate

EARTH_RADIUS_KM = 6371.0


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in km. Inputs are not range-checked."""
    lat1, lon1, lat2, lon2 = map(radians, (a.latitude, a.longitude, b.latitude, b.longitude))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    # Clamp guards asin against rounding just above 1.0 for antipodal points.
    return 2 * EARTH_RADIUS_KM * asin(min(1.0, sqrt(h)))


def centroid(points: Sequence[Coordinate]) -> Coordinate:
    """Arithmetic mean of latitudes/longitudes (adequate at city scale)."""
    n = len(points)
    return Coordinate(
        latitude=sum(p.latitude for p in points) / n,
        longitude=sum(p.longitude for p in points) / n,
    )


def lerp(a: Coordinate, b: Coordinate, t: float) -> tuple[float, float]:
    """Linear interpolation between two points, t in [0, 1]."""
    return (
        a.latitude + (b.latitude - a.latitude) * t,
        a.longitude + (b.longitude - a.longitude) * t,
    )
