"""
Road graph construction for the roadgrid routing substrate.

Derives connectors (graph nodes) from the positions Overture records along
each road segment and joins consecutive connectors with bidirectional edges.
"""

import h3
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from ..common import (
    config,
    get_logger,
    TimedLogger,
    geodesic_point_at,
    great_circle_m,
    log_data_processing,
    Point,
)
from ..ingest import RoadSegment

logger = get_logger("transform.road_graph")


@dataclass
class Connector:
    """Graph node at an intersection or segment endpoint."""

    connector_id: str
    lng: float
    lat: float
    hex_id: str

    @property
    def coord(self) -> Point:
        return self.lng, self.lat


@dataclass(frozen=True)
class Edge:
    """Directed edge between two connectors along one segment."""

    segment_id: str
    from_connector: str
    to_connector: str
    length_meters: float
    hex_id: str

    @property
    def key(self) -> Tuple[str, str, str]:
        return self.segment_id, self.from_connector, self.to_connector

    def reversed(self) -> "Edge":
        return Edge(
            segment_id=self.segment_id,
            from_connector=self.to_connector,
            to_connector=self.from_connector,
            length_meters=self.length_meters,
            hex_id=self.hex_id,
        )


class ConnectorRegistry:
    """
    Connector positions for one graph build.

    The first segment to mention a connector id fixes its position; later
    mentions return the registered connector unchanged.
    """

    def __init__(self, resolution: int):
        self.resolution = resolution
        self._connectors: Dict[str, Connector] = {}

    def register(self, connector_id: str, coord: Point) -> Connector:
        existing = self._connectors.get(connector_id)
        if existing is not None:
            return existing
        lng, lat = coord
        connector = Connector(
            connector_id=connector_id,
            lng=lng,
            lat=lat,
            hex_id=h3.latlng_to_cell(lat, lng, self.resolution),
        )
        self._connectors[connector_id] = connector
        return connector

    def get(self, connector_id: str) -> Optional[Connector]:
        return self._connectors.get(connector_id)

    def __contains__(self, connector_id: str) -> bool:
        return connector_id in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)

    def __iter__(self) -> Iterator[Connector]:
        return iter(self._connectors.values())

    def ids(self) -> Set[str]:
        return set(self._connectors)


def interpolate_along(coords: Sequence[Point], fraction: float) -> Point:
    """
    Point at a fraction of a polyline's length.

    Pieces are weighted by great-circle length; within the piece the position
    follows the geodesic between its vertices.
    """
    if not coords:
        raise ValueError("Cannot interpolate along an empty line")
    if fraction <= 0 or len(coords) == 1:
        return coords[0]
    if fraction >= 1:
        return coords[-1]

    pieces = [great_circle_m(a, b) for a, b in zip(coords, coords[1:])]
    total = sum(pieces)
    if total == 0:
        return coords[0]

    target = total * fraction
    walked = 0.0
    for (a, b), piece in zip(zip(coords, coords[1:]), pieces):
        if piece > 0 and walked + piece >= target:
            return geodesic_point_at(a, b, (target - walked) / piece)
        walked += piece
    return coords[-1]


def find_asymmetric_edges(edges: Iterable[Edge], tolerance: float = 1e-6) -> List[Edge]:
    """Edges with no reverse counterpart of equal length on the same segment."""
    edges = list(edges)
    by_key = {e.key: e for e in edges}
    missing = []
    for edge in edges:
        reverse = by_key.get((edge.segment_id, edge.to_connector, edge.from_connector))
        if reverse is None or abs(reverse.length_meters - edge.length_meters) > tolerance:
            missing.append(edge)
    return missing


@dataclass
class GraphBuild:
    """Result of building the graph for one region."""

    region_id: str
    registry: ConnectorRegistry
    edges: List[Edge] = field(default_factory=list)
    segments_used: int = 0
    segments_skipped: int = 0
    segments_not_live: int = 0

    @property
    def connectors(self) -> List[Connector]:
        return list(self.registry)


class RoadGraphBuilder:
    """Builds connectors and bidirectional edges from road segments."""

    def __init__(self, region_id: str, resolution: Optional[int] = None):
        """
        Args:
            region_id: Region the graph belongs to
            resolution: H3 resolution for connector and edge hexes
        """
        self.region_id = region_id
        self.resolution = config.hex.resolution if resolution is None else resolution
        self.logger = logger

    def build(
        self,
        segments: Iterable[RoadSegment],
        live_segment_ids: Optional[Set[str]] = None,
        registry: Optional[ConnectorRegistry] = None,
    ) -> GraphBuild:
        """
        Build the graph for a set of segments.

        Args:
            segments: Road segments with connector references
            live_segment_ids: Segment ids still present after pruning; others
                are ignored so no edge points at a removed feature
            registry: Existing registry to extend (a fresh one by default)

        Returns:
            GraphBuild with registered connectors and directed edges
        """
        result = GraphBuild(
            region_id=self.region_id,
            registry=registry if registry is not None else ConnectorRegistry(self.resolution),
        )

        with TimedLogger(self.logger, "build_road_graph", region_id=self.region_id):
            for segment in sorted(segments, key=lambda s: s.segment_id):
                if live_segment_ids is not None and segment.segment_id not in live_segment_ids:
                    result.segments_not_live += 1
                    continue

                edges = self.process_segment(segment, result.registry)
                if edges:
                    result.edges.extend(edges)
                    result.segments_used += 1
                else:
                    result.segments_skipped += 1

        self.logger.info(
            f"Built road graph for {self.region_id}",
            extra=log_data_processing(
                stage="build_road_graph",
                records_processed=result.segments_used,
                records_failed=result.segments_skipped,
                connectors=len(result.registry),
                edges=len(result.edges),
                segments_not_live=result.segments_not_live,
            ),
        )
        return result

    def process_segment(self, segment: RoadSegment, registry: ConnectorRegistry) -> List[Edge]:
        """
        Edges for one segment, forward and reverse, between consecutive connectors.

        Returns an empty list when fewer than two distinct connectors remain.
        """
        if len(segment.coords) < 2:
            return []

        ordered: List[Tuple[str, float]] = []
        seen: Set[str] = set()
        for connector_id, at in sorted(segment.connectors, key=lambda c: c[1]):
            if connector_id in seen:
                continue
            seen.add(connector_id)
            ordered.append((connector_id, at))

        if len(ordered) < 2:
            return []

        nodes = [
            registry.register(connector_id, interpolate_along(segment.coords, at))
            for connector_id, at in ordered
        ]

        edges: List[Edge] = []
        for a, b in zip(nodes, nodes[1:]):
            mid_lng, mid_lat = geodesic_point_at(a.coord, b.coord, 0.5)
            forward = Edge(
                segment_id=segment.segment_id,
                from_connector=a.connector_id,
                to_connector=b.connector_id,
                length_meters=great_circle_m(a.coord, b.coord),
                hex_id=h3.latlng_to_cell(mid_lat, mid_lng, self.resolution),
            )
            edges.append(forward)
            edges.append(forward.reversed())
        return edges
