"""
H3 hex coverage generation for the roadgrid routing substrate.

Computes the set of fixed-resolution cells covering a region bounding box and
the polygon of their union, which is the authoritative ingestion boundary.
"""

import h3
import pandas as pd
from typing import FrozenSet, List, Optional, Set, Tuple
from dataclasses import dataclass, field
from shapely.geometry import MultiPoint, Polygon, box, shape
from shapely.geometry.base import BaseGeometry
from shapely.prepared import prep

from ..common import config, get_logger, TimedLogger, Point
from .cells import cell_center, cell_polygon, expand_ring, distance_from_center

logger = get_logger("h3.grid")


@dataclass
class RegionBounds:
    """Region boundary definition."""

    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    @classmethod
    def from_bbox(cls, bbox: List[float]) -> "RegionBounds":
        """Create RegionBounds from [min_lat, min_lng, max_lat, max_lng]."""
        if len(bbox) != 4:
            raise ValueError(
                "Bounding box must have 4 values: [min_lat, min_lng, max_lat, max_lng]"
            )
        return cls(min_lat=bbox[0], min_lng=bbox[1], max_lat=bbox[2], max_lng=bbox[3])

    def to_polygon(self) -> Polygon:
        """Convert bounds to Shapely polygon in (lng, lat) order."""
        return box(self.min_lng, self.min_lat, self.max_lng, self.max_lat)

    def to_xy(self) -> Tuple[float, float, float, float]:
        """Bounds as (xmin, ymin, xmax, ymax)."""
        return self.min_lng, self.min_lat, self.max_lng, self.max_lat

    def center(self) -> Point:
        """Center of the bounds as (lng, lat)."""
        return (self.min_lng + self.max_lng) / 2, (self.min_lat + self.max_lat) / 2


@dataclass
class HexCoverage:
    """Cells covering a region and the polygon of their union."""

    cells: FrozenSet[str]
    polygon: BaseGeometry
    resolution: int
    _prepared: object = field(default=None, init=False, repr=False, compare=False)

    @property
    def wkt(self) -> str:
        return self.polygon.wkt

    @property
    def centroid(self) -> Point:
        c = self.polygon.centroid
        return c.x, c.y

    def contains(self, geometry: BaseGeometry) -> bool:
        """Strict containment test against the coverage polygon."""
        if self._prepared is None:
            self._prepared = prep(self.polygon)
        return self._prepared.contains(geometry)

    def contains_bbox(self, bbox: Tuple[float, float, float, float]) -> bool:
        """True when a whole (xmin, ymin, xmax, ymax) extent lies inside."""
        xmin, ymin, xmax, ymax = bbox
        # Envelope collapses to a point or line for degenerate extents
        return self.contains(MultiPoint([(xmin, ymin), (xmax, ymax)]).envelope)


class HexCoverageGenerator:
    """Generates the hex coverage for a region bounding box."""

    def __init__(self, resolution: Optional[int] = None):
        """
        Initialize the coverage generator.

        Args:
            resolution: H3 resolution level (defaults to configured resolution)
        """
        self.resolution = config.hex.resolution if resolution is None else resolution
        self.logger = logger

        if not (0 <= self.resolution <= 15):
            raise ValueError(
                f"H3 resolution must be between 0 and 15, got {self.resolution}"
            )

    def generate_coverage(self, bounds: RegionBounds) -> HexCoverage:
        """
        Compute cells overlapping the bounds and their union polygon.

        Starting from the cells centred inside the box, neighbours are added
        ring by ring while their polygons overlap the box with positive area,
        so cells centred outside the box that still straddle it are included.

        Args:
            bounds: Region bounding box

        Returns:
            HexCoverage with cell set and union polygon
        """
        with TimedLogger(self.logger, "generate_coverage", resolution=self.resolution):
            bbox_polygon = bounds.to_polygon()
            cells, examined = self._grow(self._center_cells(bounds), bbox_polygon)

            if cells:
                polygon = self._union(cells)
            else:
                polygon = bbox_polygon

            self.logger.info(
                "Generated hex coverage",
                extra={
                    "resolution": self.resolution,
                    "hex_count": len(cells),
                    "candidate_count": examined,
                    "bounds": {
                        "min_lat": bounds.min_lat,
                        "min_lng": bounds.min_lng,
                        "max_lat": bounds.max_lat,
                        "max_lng": bounds.max_lng,
                    },
                },
            )

            return HexCoverage(cells=cells, polygon=polygon, resolution=self.resolution)

    def _center_cells(self, bounds: RegionBounds) -> Set[str]:
        """Cells whose centres fall inside the box, or the single centre cell."""
        ring = [
            (bounds.min_lat, bounds.min_lng),
            (bounds.min_lat, bounds.max_lng),
            (bounds.max_lat, bounds.max_lng),
            (bounds.max_lat, bounds.min_lng),
        ]
        cells = set(h3.polygon_to_cells(h3.LatLngPoly(ring), self.resolution))
        if not cells:
            lng, lat = bounds.center()
            cells.add(h3.latlng_to_cell(lat, lng, self.resolution))
        return cells

    def _grow(self, seeds: Set[str], bbox_polygon: Polygon) -> Tuple[FrozenSet[str], int]:
        """Flood outward from the seeds over cells that overlap the box."""
        examined = set(seeds)
        frontier = {cell for cell in seeds if self._overlaps(cell, bbox_polygon)}
        kept = set(frontier)
        while frontier:
            ring = expand_ring(frontier, 1) - examined
            examined |= ring
            frontier = {cell for cell in ring if self._overlaps(cell, bbox_polygon)}
            kept |= frontier
        return frozenset(kept), len(examined)

    @staticmethod
    def _overlaps(cell: str, bbox_polygon: Polygon) -> bool:
        hexagon = cell_polygon(cell)
        if not hexagon.intersects(bbox_polygon):
            return False
        return hexagon.intersection(bbox_polygon).area > 0

    @staticmethod
    def _union(cells: FrozenSet[str]) -> BaseGeometry:
        """Union of the cells, built topologically by H3 so shared edges dissolve."""
        h3_shape = h3.cells_to_h3shape(sorted(cells))
        return shape(h3_shape.__geo_interface__)

    def to_dataframe(self, coverage: HexCoverage, region_id: str, center: Point) -> pd.DataFrame:
        """
        Tabulate coverage cells for loading or CSV export.

        Returns:
            DataFrame with columns: hex_id, region_id, resolution, centroid_lat,
            centroid_lng, distance_from_center
        """
        rows = []
        for hex_id in sorted(coverage.cells):
            lng, lat = cell_center(hex_id)
            rows.append(
                {
                    "hex_id": hex_id,
                    "region_id": region_id,
                    "resolution": self.resolution,
                    "centroid_lat": lat,
                    "centroid_lng": lng,
                    "distance_from_center": distance_from_center(hex_id, center),
                }
            )
        return pd.DataFrame(
            rows,
            columns=[
                "hex_id",
                "region_id",
                "resolution",
                "centroid_lat",
                "centroid_lng",
                "distance_from_center",
            ],
        )


# Convenience functions
def get_coverage_generator(resolution: Optional[int] = None) -> HexCoverageGenerator:
    """Get a coverage generator with default or specified resolution."""
    return HexCoverageGenerator(resolution=resolution)


def coverage_from_config() -> HexCoverage:
    """Generate coverage for the configured region."""
    bounds = RegionBounds.from_bbox(config.region.bbox)
    return get_coverage_generator().generate_coverage(bounds)
