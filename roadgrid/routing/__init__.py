"""
Runtime routing for the roadgrid routing substrate.

This package provides the region graph cache, nearest-connector lookup and
health-weighted path search, waypoint/ETA building and the travel planner
used by the gameplay layer.
"""

from .graph_cache import (
    GraphEdge,
    RegionGraph,
    build_network,
    GraphCache,
    fetch_region_graph,
    get_graph_cache,
    load_graph_for_region,
)
from .pathfinding import (
    PathResult,
    health_penalty,
    edge_weight,
    find_nearest_connector,
    find_path,
    connected_components,
)
from .waypoints import (
    Waypoint,
    travel_seconds,
    fallback_travel_seconds,
    iter_waypoints,
    build_waypoints,
    simplify_waypoints,
)
from .travel import TravelPlan, plan_travel

__all__ = [
    # Graph cache
    "GraphEdge",
    "RegionGraph",
    "build_network",
    "GraphCache",
    "fetch_region_graph",
    "get_graph_cache",
    "load_graph_for_region",
    # Path engine
    "PathResult",
    "health_penalty",
    "edge_weight",
    "find_nearest_connector",
    "find_path",
    "connected_components",
    # Waypoints
    "Waypoint",
    "travel_seconds",
    "fallback_travel_seconds",
    "iter_waypoints",
    "build_waypoints",
    "simplify_waypoints",
    # Planner
    "TravelPlan",
    "plan_travel",
]
