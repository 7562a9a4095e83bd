from __future__ import annotations

from math import asin, cos, radians, sin, sqrt
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.models import Coordinate

EARTH_RADIUS_M = 6371000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two lat/lon points (degrees).

    NaN in any argument yields NaN. Out-of-range values are not rejected.
    """
    la1, lo1, la2, lo2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = la2 - la1
    dlon = lo2 - lo1
    a = sin(dlat / 2) ** 2 + cos(la1) * cos(la2) * sin(dlon / 2) ** 2
    # float rounding can push a a hair above 1 for antipodal points
    c = 2 * asin(sqrt(min(a, 1.0)))
    return EARTH_RADIUS_M * c


def distance_m(a: Coordinate, b: Coordinate) -> float:
    if a == b:
        return 0.0
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)
