"""
Path engine: nearest-connector lookup and health-weighted A* search.

Searches run on the networkx MultiDiGraph cached with each region graph;
plain adjacency maps are converted on the fly.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Union

import networkx as nx

from ..common import config, clamp, great_circle_m, Point
from .graph_cache import Coords, Graph, build_network


def health_penalty(health: float, factor: Optional[float] = None) -> float:
    """
    Cost multiplier for a segment: 1 at full health, 1 + k at zero.

    cost = length * (1 + k * (1 - health / 100)), health clamped to [0, 100].
    """
    k = config.routing.health_penalty_factor if factor is None else factor
    if k < 0:
        raise ValueError(f"Health penalty factor must be non-negative, got {k}")
    return 1.0 + k * (1.0 - clamp(health, 0.0, 100.0) / 100.0)


def edge_weight(length_meters: float, health: float, factor: Optional[float] = None) -> float:
    return length_meters * health_penalty(health, factor)


def find_nearest_connector(
    coords: Coords, point: Point, max_distance_m: Optional[float] = None
) -> Optional[str]:
    """
    Connector closest to a point by great-circle distance.

    Uses the same distance as edge lengths, so a snapped connector is the one
    the path engine would also consider nearest.

    Args:
        coords: Connector id -> (lng, lat)
        point: Query point as (lng, lat)
        max_distance_m: Ignore connectors farther than this

    Returns:
        Connector id, or None if coords is empty or nothing is close enough
    """
    if not coords:
        return None

    best_id, best_distance = min(
        ((connector_id, great_circle_m(coord, point)) for connector_id, coord in coords.items()),
        key=lambda item: item[1],
    )
    if max_distance_m is not None and best_distance > max_distance_m:
        return None
    return best_id


@dataclass
class PathResult:
    """Ordered connector path with per-segment detail."""

    connector_ids: List[str]
    segment_ids: List[str] = field(default_factory=list)
    segment_lengths: List[float] = field(default_factory=list)
    segment_healths: List[float] = field(default_factory=list)
    total_distance: float = 0.0
    total_weighted_distance: float = 0.0

    def segment_weights(self, factor: Optional[float] = None) -> List[float]:
        return [
            edge_weight(length, health, factor)
            for length, health in zip(self.segment_lengths, self.segment_healths)
        ]


def _as_network(graph: Union[Graph, nx.MultiDiGraph], nodes: Iterable[str]) -> nx.MultiDiGraph:
    if isinstance(graph, nx.MultiDiGraph):
        return graph
    return build_network(graph, nodes)


def _weight_function(factor: Optional[float]) -> Callable:
    # Between two connectors the cheapest parallel segment is the one taken
    def weight(u, v, parallel):
        return min(edge_weight(d["length"], d["health"], factor) for d in parallel.values())

    return weight


def find_path(
    graph: Union[Graph, nx.MultiDiGraph],
    coords: Coords,
    start: str,
    end: str,
    penalty_factor: Optional[float] = None,
) -> Optional[PathResult]:
    """
    A* over health-weighted edges with a great-circle heuristic.

    Edge lengths are great-circle distances between their connectors and the
    health penalty is at least 1, so the heuristic never overestimates.

    Args:
        graph: Region MultiDiGraph, or an adjacency map
        coords: Connector id -> (lng, lat)
        start: Source connector
        end: Target connector
        penalty_factor: Health penalty k (defaults to configured value)

    Returns:
        PathResult, or None when either endpoint is unknown or unreachable
    """
    if start not in coords or end not in coords:
        return None

    network = _as_network(graph, coords)
    weight = _weight_function(penalty_factor)

    def heuristic(u, v):
        return great_circle_m(coords[u], coords[v])

    try:
        nodes = nx.astar_path(network, start, end, heuristic=heuristic, weight=weight)
    except (nx.NetworkXNoPath, nx.NodeNotFound):
        return None

    result = PathResult(connector_ids=list(nodes))
    for u, v in zip(nodes, nodes[1:]):
        data = min(
            network[u][v].values(),
            key=lambda d: edge_weight(d["length"], d["health"], penalty_factor),
        )
        result.segment_ids.append(data["segment_id"])
        result.segment_lengths.append(data["length"])
        result.segment_healths.append(data["health"])
    result.total_distance = sum(result.segment_lengths)
    result.total_weighted_distance = sum(result.segment_weights(penalty_factor))
    return result


def connected_components(
    graph: Union[Graph, nx.MultiDiGraph], nodes: Iterable[str]
) -> List[List[str]]:
    """
    Weakly connected components of the road network, largest first.

    Every node in ``nodes`` lands in exactly one component; each component is
    sorted by connector id.
    """
    network = _as_network(graph, nodes)
    components = [sorted(c) for c in nx.weakly_connected_components(network)]
    components.sort(key=lambda c: (-len(c), c[0]))
    return components
