"""
Travel planning for resource convoys.

Composes graph cache, connector snapping, path search and waypoint building.
Every failure mode degrades to the straight-line estimate; nothing here
raises for a missing graph, connector or path.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common import config, get_logger, log_route_query, TimedLogger, Point
from .graph_cache import GraphCache, get_graph_cache
from .pathfinding import find_nearest_connector, find_path
from .waypoints import (
    Waypoint,
    build_waypoints,
    fallback_travel_seconds,
    simplify_waypoints,
    travel_seconds,
)

logger = get_logger("routing.travel")

NO_GRAPH = "no_graph"
NO_CONNECTOR = "no_connector"
NO_PATH = "no_path"


@dataclass
class TravelPlan:
    """Duration and waypoints for one convoy trip."""

    travel_seconds: float
    waypoints: List[Waypoint] = field(default_factory=list)
    fallback_reason: Optional[str] = None

    @property
    def routed(self) -> bool:
        return self.fallback_reason is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "travel_seconds": self.travel_seconds,
            "waypoints": [w.to_dict() for w in self.waypoints],
            "fallback_reason": self.fallback_reason,
        }


def plan_travel(
    region_id: str,
    source: Point,
    destination: Point,
    depart_at_ms: int,
    cache: Optional[GraphCache] = None,
    simplify_epsilon_m: Optional[float] = None,
) -> TravelPlan:
    """
    Plan a convoy trip between two (lng, lat) points.

    Args:
        region_id: Region whose road graph to use
        source: Departure point
        destination: Arrival point
        depart_at_ms: Departure time in epoch milliseconds
        cache: Graph cache (defaults to the process-wide cache)
        simplify_epsilon_m: Simplify waypoints with this tolerance when set

    Returns:
        TravelPlan; ``fallback_reason`` names why the straight-line estimate
        was used, or is None for a routed trip
    """
    routing = config.routing
    cache = cache or get_graph_cache()

    def fallback(reason: str) -> TravelPlan:
        seconds = fallback_travel_seconds(source, destination)
        logger.info(
            f"Route fallback for {region_id}: {reason}",
            extra=log_route_query(region_id, "fallback", seconds, fallback_reason=reason),
        )
        return TravelPlan(travel_seconds=seconds, fallback_reason=reason)

    with TimedLogger(logger, "plan_travel", region_id=region_id):
        region_graph = cache.get(region_id)
        if region_graph is None:
            return fallback(NO_GRAPH)

        coords = region_graph.coords
        start = find_nearest_connector(coords, source, routing.max_snap_distance_m)
        end = find_nearest_connector(coords, destination, routing.max_snap_distance_m)
        if start is None or end is None:
            return fallback(NO_CONNECTOR)

        path = find_path(region_graph.network, coords, start, end)
        if path is None:
            return fallback(NO_PATH)

        seconds = travel_seconds(path, routing.travel_speed_mps)
        waypoints = build_waypoints(
            path,
            coords,
            depart_at_ms,
            routing.travel_speed_mps,
            actual_start=source,
            actual_end=destination,
        )
        if simplify_epsilon_m is not None:
            waypoints = simplify_waypoints(waypoints, simplify_epsilon_m)

        logger.info(
            f"Routed trip in {region_id}",
            extra=log_route_query(
                region_id,
                "routed",
                seconds,
                connectors=len(path.connector_ids),
                distance_m=path.total_distance,
            ),
        )
        return TravelPlan(travel_seconds=seconds, waypoints=waypoints)
