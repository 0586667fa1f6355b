"""
Travel duration and time-stamped waypoints for convoy animation.

Durations are always clamped to the configured [min, max] window. With a
path, each connector becomes a waypoint whose arrival time is proportional to
the weighted distance covered so far, so the final waypoint arrives exactly
``travel_seconds`` after departure.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from shapely.geometry import LineString

from ..common import config, clamp, great_circle_m, Point
from .graph_cache import Coords
from .pathfinding import PathResult


@dataclass(frozen=True)
class Waypoint:
    """Position plus absolute arrival time in epoch milliseconds."""

    coord: Point
    arrive_at_ms: int

    @property
    def arrive_at(self) -> str:
        """ISO-8601 UTC timestamp."""
        ts = datetime.fromtimestamp(self.arrive_at_ms / 1000, tz=timezone.utc)
        return ts.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        return {"coord": [self.coord[0], self.coord[1]], "arrive_at": self.arrive_at}


def clamp_travel(
    seconds: float, min_s: Optional[float] = None, max_s: Optional[float] = None
) -> float:
    lower = config.routing.min_travel_s if min_s is None else min_s
    upper = config.routing.max_travel_s if max_s is None else max_s
    return clamp(seconds, lower, upper)


def travel_seconds(
    path_result: PathResult,
    speed_mps: Optional[float] = None,
    min_s: Optional[float] = None,
    max_s: Optional[float] = None,
) -> float:
    """Weighted path distance over speed, clamped."""
    speed = speed_mps or config.routing.travel_speed_mps
    return clamp_travel(path_result.total_weighted_distance / speed, min_s, max_s)


def fallback_travel_seconds(
    source: Point,
    destination: Point,
    speed_mps: Optional[float] = None,
    multiplier: Optional[float] = None,
    min_s: Optional[float] = None,
    max_s: Optional[float] = None,
) -> float:
    """Straight-line estimate: great-circle x multiplier / speed, clamped."""
    speed = speed_mps or config.routing.travel_speed_mps
    mult = config.routing.distance_multiplier if multiplier is None else multiplier
    return clamp_travel(great_circle_m(source, destination) * mult / speed, min_s, max_s)


def iter_waypoints(
    path_result: PathResult,
    coords: Coords,
    depart_at_ms: int,
    speed_mps: Optional[float] = None,
    actual_start: Optional[Point] = None,
    actual_end: Optional[Point] = None,
    min_s: Optional[float] = None,
    max_s: Optional[float] = None,
) -> Iterator[Waypoint]:
    """
    Yield one waypoint per connector of the path.

    The first and last coordinates are replaced by ``actual_start`` and
    ``actual_end`` when given. A single-connector path yields a start and an
    end waypoint when both are given.
    """
    total_ms = travel_seconds(path_result, speed_mps, min_s, max_s) * 1000
    ids = [c for c in path_result.connector_ids if c in coords]
    if not ids:
        return

    if len(ids) == 1:
        coord = coords[ids[0]]
        if actual_start is not None and actual_end is not None:
            yield Waypoint(actual_start, int(depart_at_ms))
            yield Waypoint(actual_end, int(round(depart_at_ms + total_ms)))
        else:
            yield Waypoint(actual_start or actual_end or coord, int(depart_at_ms))
        return

    weights = path_result.segment_weights()
    if len(weights) != len(ids) - 1:
        # Fall back to connector spacing when segment detail is missing
        weights = [great_circle_m(coords[a], coords[b]) for a, b in zip(ids, ids[1:])]
    total_weight = sum(weights)

    covered = 0.0
    last = len(ids) - 1
    for i, connector_id in enumerate(ids):
        if i > 0:
            covered += weights[i - 1]
        if total_weight > 0:
            fraction = covered / total_weight
        else:
            fraction = i / last

        coord = coords[connector_id]
        if i == 0 and actual_start is not None:
            coord = actual_start
        elif i == last and actual_end is not None:
            coord = actual_end

        yield Waypoint(coord, int(round(depart_at_ms + total_ms * fraction)))


def build_waypoints(
    path_result: Optional[PathResult],
    coords: Coords,
    depart_at_ms: int,
    speed_mps: Optional[float] = None,
    actual_start: Optional[Point] = None,
    actual_end: Optional[Point] = None,
) -> List[Waypoint]:
    """
    Materialise the waypoint sequence for a path.

    Without a path there are no waypoints; callers animate directly using the
    fallback duration.
    """
    if path_result is None:
        return []
    return list(
        iter_waypoints(
            path_result,
            coords,
            depart_at_ms,
            speed_mps,
            actual_start=actual_start,
            actual_end=actual_end,
        )
    )


# Metres per degree of latitude on the mean-radius sphere
METERS_PER_DEGREE = 111_195.0


def simplify_waypoints(waypoints: Sequence[Waypoint], epsilon_m: float = 10.0) -> List[Waypoint]:
    """
    Douglas-Peucker simplification of a waypoint sequence via shapely.

    Longitudes are scaled by cos(latitude) around the path so the tolerance is
    isotropic in metres. Endpoints are always kept and surviving waypoints keep
    their arrival times.
    """
    points = list(waypoints)
    if len(points) <= 2:
        return points

    scale = math.cos(math.radians(sum(p.coord[1] for p in points) / len(points)))
    projected = [(p.coord[0] * scale, p.coord[1]) for p in points]
    line = LineString(projected).simplify(epsilon_m / METERS_PER_DEGREE, preserve_topology=False)

    kept: List[Waypoint] = []
    index = 0
    for vertex in line.coords:
        while index < len(projected) and projected[index] != tuple(vertex):
            index += 1
        if index == len(projected):
            break
        kept.append(points[index])
        index += 1

    if not kept or kept[0] is not points[0]:
        kept.insert(0, points[0])
    if kept[-1] is not points[-1]:
        kept.append(points[-1])
    return kept
