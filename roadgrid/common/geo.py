"""
Geodesy helpers shared by ingestion and runtime routing.

Points are (longitude, latitude) tuples throughout, matching GeoJSON and the
coordinate order stored on connectors.
"""

from typing import Sequence, Tuple

import h3
from geographiclib.geodesic import Geodesic

Point = Tuple[float, float]

_GEOD = Geodesic.WGS84


def great_circle_m(a: Point, b: Point) -> float:
    """Great-circle distance in metres between two (lng, lat) points."""
    return h3.great_circle_distance((a[1], a[0]), (b[1], b[0]), unit="m")


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def line_length_m(coords: Sequence[Point]) -> float:
    """Geodesic length of a polyline."""
    total = 0.0
    for (lng1, lat1), (lng2, lat2) in zip(coords, coords[1:]):
        total += _GEOD.Inverse(lat1, lng1, lat2, lng2)["s12"]
    return total


def ring_area_m2(ring: Sequence[Point]) -> float:
    """Geodesic area of a closed ring; orientation does not matter."""
    poly = _GEOD.Polygon()
    # Closing vertex repeats the first one
    points = list(ring)
    if len(points) > 1 and points[0] == points[-1]:
        points = points[:-1]
    if len(points) < 3:
        return 0.0
    for lng, lat in points:
        poly.AddPoint(lat, lng)
    _, _, area = poly.Compute(False, True)
    return abs(area)


def geodesic_point_at(a: Point, b: Point, fraction: float) -> Point:
    """Point a given fraction of the way along the geodesic from a to b."""
    line = _GEOD.InverseLine(a[1], a[0], b[1], b[0])
    pos = line.Position(line.s13 * fraction)
    return pos["lon2"], pos["lat2"]
