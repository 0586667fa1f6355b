"""
Feature ingestor for roads and buildings.

Turns region-filtered Overture rows into world features restricted to the hex
coverage polygon, assigns each to every hex its extent touches, and prepares
road segments for graph building and buildings for resource generation.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pandas as pd
from shapely.geometry import LineString, MultiPolygon, Polygon
from shapely.strtree import STRtree

from ..common import (
    config,
    get_logger,
    log_data_processing,
    line_length_m,
    ring_area_m2,
    Point,
)
from ..h3 import HexCoverage, bbox_to_cells
from .resources import (
    BuildingCandidate,
    assign_resources,
    score_candidates,
    apply_hex_cap,
    match_resource,
    primary_category,
    resource_flags,
)

logger = get_logger("ingest.features")

BBox = Tuple[float, float, float, float]


@dataclass
class WorldFeature:
    """A road or building ready for upsert."""

    feature_id: str
    feature_type: str
    region_id: str
    bbox: BBox
    cells: List[str]
    road_class: Optional[str] = None
    length_meters: Optional[float] = None
    place_category: Optional[str] = None
    resource_type: Optional[str] = None
    area_m2: Optional[float] = None
    properties: Dict[str, Any] = field(default_factory=dict)

    def flags(self) -> Dict[str, bool]:
        return resource_flags(self.resource_type)


@dataclass
class RoadSegment:
    """Road geometry plus its connector references, for graph building."""

    segment_id: str
    coords: List[Point]
    connectors: List[Tuple[str, float]]


@dataclass
class IngestBatch:
    """Features produced by one ingest pass."""

    feature_type: str
    features: List[WorldFeature] = field(default_factory=list)
    segments: List[RoadSegment] = field(default_factory=list)
    records_failed: int = 0
    records_excluded: int = 0
    records_rejected: int = 0

    @property
    def cells(self) -> Set[str]:
        return {cell for f in self.features for cell in f.cells}

    @property
    def feature_ids(self) -> List[str]:
        return [f.feature_id for f in self.features]


def parse_connectors(raw: Any) -> List[Tuple[str, float]]:
    """
    Normalise an Overture ``connectors`` value to (connector_id, at) pairs.

    Entries without an id or a finite position are dropped; positions are
    clamped to [0, 1].
    """
    if raw is None:
        return []
    parsed = []
    for item in list(raw):
        if not isinstance(item, dict):
            continue
        connector_id = item.get("connector_id")
        at = item.get("at")
        if not connector_id or at is None:
            continue
        try:
            at = float(at)
        except (TypeError, ValueError):
            continue
        if math.isnan(at):
            continue
        parsed.append((str(connector_id), min(1.0, max(0.0, at))))
    return parsed


def footprint_area_m2(geometry) -> Optional[float]:
    """Geodesic footprint area of a (multi)polygon, holes subtracted."""
    if isinstance(geometry, Polygon):
        polygons = [geometry]
    elif isinstance(geometry, MultiPolygon):
        polygons = list(geometry.geoms)
    else:
        return None
    area = 0.0
    for poly in polygons:
        area += ring_area_m2(list(poly.exterior.coords))
        for hole in poly.interiors:
            area -= ring_area_m2(list(hole.coords))
    return max(area, 0.0)


def _row_bbox(row) -> BBox:
    return (float(row.xmin), float(row.ymin), float(row.xmax), float(row.ymax))


class FeatureIngestor:
    """Builds world features for one region coverage."""

    def __init__(
        self,
        region_id: str,
        coverage: HexCoverage,
        road_classes: Optional[Iterable[str]] = None,
        building_cap: Optional[int] = None,
    ):
        """
        Args:
            region_id: Region the features belong to
            coverage: Hex coverage whose polygon bounds ingestion
            road_classes: Road classes to keep (defaults to configured list)
            building_cap: Buildings per hex per resource type
        """
        self.region_id = region_id
        self.coverage = coverage
        self.resolution = coverage.resolution
        self.road_classes = set(road_classes or config.ingest.road_classes)
        self.building_cap = building_cap or config.ingest.building_cap_per_hex

    def ingest_roads(self, segments: pd.DataFrame) -> IngestBatch:
        """
        Filter segment rows to drivable roads fully inside the coverage.

        Args:
            segments: Rows from OvertureReader with subtype, class, connectors

        Returns:
            IngestBatch of road features and their RoadSegments
        """
        batch = IngestBatch(feature_type="road", records_failed=segments.attrs.get("records_failed", 0))
        seen: Set[str] = set()

        # "class" is not a valid namedtuple field
        rows = segments.rename(columns={"class": "road_class"})
        for row in rows.itertuples(index=False):
            if getattr(row, "subtype", "road") != "road":
                continue
            road_class = getattr(row, "road_class", None)
            if road_class not in self.road_classes:
                continue
            if row.id in seen:
                continue

            bbox = _row_bbox(row)
            if not self.coverage.contains_bbox(bbox):
                batch.records_excluded += 1
                continue

            geometry = row.geometry
            if not isinstance(geometry, LineString) or len(geometry.coords) < 2:
                batch.records_failed += 1
                continue

            coords = [(float(c[0]), float(c[1])) for c in geometry.coords]
            seen.add(row.id)
            batch.features.append(
                WorldFeature(
                    feature_id=row.id,
                    feature_type="road",
                    region_id=self.region_id,
                    bbox=bbox,
                    cells=bbox_to_cells(bbox, self.resolution),
                    road_class=road_class,
                    length_meters=line_length_m(coords),
                    properties={"original_class": road_class},
                )
            )
            batch.segments.append(
                RoadSegment(
                    segment_id=row.id,
                    coords=coords,
                    connectors=parse_connectors(getattr(row, "connectors", None)),
                )
            )

        logger.info(
            f"Prepared {len(batch.features)} roads",
            extra=log_data_processing(
                stage="ingest_roads",
                records_processed=len(batch.features),
                records_failed=batch.records_failed,
                records_excluded=batch.records_excluded,
            ),
        )
        return batch

    def ingest_buildings(
        self, buildings: pd.DataFrame, places: Optional[pd.DataFrame] = None
    ) -> IngestBatch:
        """
        Filter buildings to the coverage, classify resources and apply the cap.

        Args:
            buildings: Building rows from OvertureReader
            places: Place rows with a ``categories`` column, joined by containment

        Returns:
            IngestBatch of kept building features
        """
        batch = IngestBatch(
            feature_type="building", records_failed=buildings.attrs.get("records_failed", 0)
        )
        accepted: Dict[str, Tuple[BBox, Any, float]] = {}

        for row in buildings.itertuples(index=False):
            if row.id in accepted:
                continue
            bbox = _row_bbox(row)
            if not self.coverage.contains_bbox(bbox):
                batch.records_excluded += 1
                continue
            area = footprint_area_m2(row.geometry)
            if area is None:
                batch.records_failed += 1
                continue
            accepted[row.id] = (bbox, row.geometry, area)

        ids = list(accepted)
        categories = self.join_places([accepted[i][1] for i in ids], places)

        candidates = []
        for feature_id, category in zip(ids, categories):
            bbox, _, area = accepted[feature_id]
            candidates.append(
                BuildingCandidate(
                    feature_id=feature_id,
                    cells=bbox_to_cells(bbox, self.resolution),
                    area_m2=area,
                    category=category,
                )
            )

        assign_resources(candidates)
        score_candidates(candidates)
        kept, rejected = apply_hex_cap(candidates, self.building_cap)
        batch.records_rejected = len(rejected)

        for c in sorted(kept, key=lambda c: c.feature_id):
            bbox = accepted[c.feature_id][0]
            batch.features.append(
                WorldFeature(
                    feature_id=c.feature_id,
                    feature_type="building",
                    region_id=self.region_id,
                    bbox=bbox,
                    cells=list(c.cells),
                    place_category=c.category,
                    resource_type=c.resource_type,
                    area_m2=c.area_m2,
                    properties={"category": c.category, "category_match": c.matched},
                )
            )

        logger.info(
            f"Prepared {len(batch.features)} buildings",
            extra=log_data_processing(
                stage="ingest_buildings",
                records_processed=len(batch.features),
                records_failed=batch.records_failed,
                records_excluded=batch.records_excluded,
                records_rejected=batch.records_rejected,
            ),
        )
        return batch

    @staticmethod
    def join_places(geometries: List[Any], places: Optional[pd.DataFrame]) -> List[Optional[str]]:
        """
        Primary category of the place contained in each building footprint.

        When several places fall inside one building, the first (by place id)
        whose category maps to a resource wins, else the first by id.
        """
        result: List[Optional[str]] = [None] * len(geometries)
        if places is None or places.empty or not geometries:
            return result

        place_rows = places.sort_values("id")
        place_geoms = place_rows["geometry"].to_numpy()
        place_cats = [primary_category(c) for c in place_rows["categories"]]

        tree = STRtree(geometries)
        place_idx, building_idx = tree.query(place_geoms, predicate="within")

        matches: Dict[int, List[str]] = {}
        for p, b in sorted(zip(place_idx.tolist(), building_idx.tolist())):
            if place_cats[p]:
                matches.setdefault(b, []).append(place_cats[p])

        for b, cats in matches.items():
            result[b] = next((c for c in cats if match_resource(c)), cats[0])
        return result
