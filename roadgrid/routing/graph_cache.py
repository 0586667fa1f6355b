"""
Runtime road graph cache.

Loads a region's connectors and edges (with live segment health) into an
adjacency map and keeps it for a fixed TTL. Reloads replace the cached entry
wholesale; concurrent cold callers each load independently.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import networkx as nx

from ..common import config, get_logger, get_core_connection, SnowflakeConnection, Point

logger = get_logger("routing.graph_cache")


@dataclass(frozen=True)
class GraphEdge:
    """Outgoing edge as seen by the path engine."""

    segment_id: str
    to_connector: str
    length_meters: float
    health: float


Graph = Dict[str, List[GraphEdge]]
Coords = Dict[str, Point]


@dataclass
class RegionGraph:
    """
    Adjacency map plus connector coordinates for one region.

    ``network`` is the same graph as a networkx MultiDiGraph, built once per
    load so path searches reuse it until the entry expires.
    """

    region_id: str
    graph: Graph
    coords: Coords
    loaded_at: float = field(default=0.0, compare=False)
    network: Optional[nx.MultiDiGraph] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if self.network is None:
            self.network = build_network(self.graph, self.coords)

    @property
    def edge_count(self) -> int:
        return sum(len(edges) for edges in self.graph.values())


def build_network(graph: Graph, nodes: Iterable[str]) -> nx.MultiDiGraph:
    """
    MultiDiGraph over the given connectors.

    Parallel segments between two connectors stay separate edges keyed by
    segment id. Edges touching a connector outside ``nodes`` are dropped.
    """
    network = nx.MultiDiGraph()
    network.add_nodes_from(nodes)
    for from_id, edges in graph.items():
        if from_id not in network:
            continue
        for edge in edges:
            if edge.to_connector not in network:
                continue
            network.add_edge(
                from_id,
                edge.to_connector,
                key=edge.segment_id,
                segment_id=edge.segment_id,
                length=edge.length_meters,
                health=edge.health,
            )
    return network


def fetch_region_graph(
    region_id: str, connection: Optional[SnowflakeConnection] = None
) -> Optional[RegionGraph]:
    """
    Read a region graph from the warehouse.

    Returns None when the region has no connectors. Storage errors propagate.
    """
    conn = connection or get_core_connection()

    connectors = conn.execute_query(
        "SELECT CONNECTOR_ID, LNG, LAT FROM ROAD_CONNECTORS WHERE REGION_ID = %s",
        (region_id,),
        fetch=True,
    )
    if not connectors:
        return None

    coords: Coords = {
        row["CONNECTOR_ID"]: (float(row["LNG"]), float(row["LAT"])) for row in connectors
    }

    edges = conn.execute_query(
        """
        SELECT e.FROM_CONNECTOR, e.TO_CONNECTOR, e.SEGMENT_ID, e.LENGTH_METERS,
               COALESCE(fs.HEALTH, 100) AS HEALTH
        FROM ROAD_EDGES e
        LEFT JOIN FEATURE_STATE fs ON fs.FEATURE_ID = e.SEGMENT_ID
        WHERE e.FROM_CONNECTOR IN (
            SELECT CONNECTOR_ID FROM ROAD_CONNECTORS WHERE REGION_ID = %s
        )
        """,
        (region_id,),
        fetch=True,
    )

    graph: Graph = {}
    for row in edges or []:
        graph.setdefault(row["FROM_CONNECTOR"], []).append(
            GraphEdge(
                segment_id=row["SEGMENT_ID"],
                to_connector=row["TO_CONNECTOR"],
                length_meters=float(row["LENGTH_METERS"]),
                health=float(row["HEALTH"]),
            )
        )

    return RegionGraph(region_id=region_id, graph=graph, coords=coords)


class GraphCache:
    """Per-region graph cache with a fixed time-to-live."""

    def __init__(
        self,
        loader: Optional[Callable[[str], Optional[RegionGraph]]] = None,
        ttl_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            loader: Function reading a region graph (defaults to the warehouse)
            ttl_s: Seconds an entry stays valid
            clock: Monotonic time source
        """
        self.loader = loader or fetch_region_graph
        self.ttl_s = config.routing.graph_cache_ttl_s if ttl_s is None else ttl_s
        self.clock = clock
        self._entries: Dict[str, RegionGraph] = {}

    def get(self, region_id: str) -> Optional[RegionGraph]:
        """
        Cached graph for a region, reloading on miss or expiry.

        Returns None for a region without connectors or when loading fails;
        neither outcome is cached.
        """
        now = self.clock()
        cached = self._entries.get(region_id)
        if cached is not None and now - cached.loaded_at < self.ttl_s:
            return cached

        try:
            loaded = self.loader(region_id)
        except Exception as e:
            logger.warning(
                f"Graph load failed for {region_id}: {e}",
                extra={"region_id": region_id, "error_type": type(e).__name__},
            )
            return None

        if loaded is None:
            return None

        loaded.loaded_at = now
        self._entries[region_id] = loaded
        logger.info(
            f"Loaded graph for {region_id}",
            extra={
                "region_id": region_id,
                "connectors": len(loaded.coords),
                "edges": loaded.edge_count,
            },
        )
        return loaded

    def invalidate(self, region_id: Optional[str] = None) -> None:
        if region_id is None:
            self._entries.clear()
        else:
            self._entries.pop(region_id, None)


_default_cache: Optional[GraphCache] = None


def get_graph_cache() -> GraphCache:
    """Process-wide graph cache."""
    global _default_cache
    if _default_cache is None:
        _default_cache = GraphCache()
    return _default_cache


def load_graph_for_region(region_id: str) -> Optional[RegionGraph]:
    """Graph and coordinates for a region, or None."""
    return get_graph_cache().get(region_id)
