"""
Per-hex land ratio and initial rust levels.
"""

from typing import Dict, Iterable, Mapping, Optional, Sequence

from shapely.geometry import MultiPolygon, Polygon
from shapely.ops import unary_union
from shapely.strtree import STRtree

from ..common import clamp, get_logger, log_data_processing
from ..h3 import cell_polygon

logger = get_logger("transform.land")

MAX_INITIAL_RUST = 0.3


def land_ratios(cells: Iterable[str], land_geometries: Optional[Sequence] = None) -> Dict[str, float]:
    """
    Fraction of each cell covered by land polygons.

    Without land data every cell is treated as fully land (1.0). Non-areal
    land features (peaks, ridges) are ignored.
    """
    cells = sorted(set(cells))
    if land_geometries is None:
        return {cell: 1.0 for cell in cells}

    polygons = [g for g in land_geometries if isinstance(g, (Polygon, MultiPolygon))]
    if not polygons:
        return {cell: 0.0 for cell in cells}

    tree = STRtree(polygons)
    ratios: Dict[str, float] = {}
    for cell in cells:
        hexagon = cell_polygon(cell)
        hits = tree.query(hexagon, predicate="intersects")
        if len(hits) == 0:
            ratios[cell] = 0.0
            continue
        covered = unary_union([polygons[i] for i in hits]).intersection(hexagon).area
        ratios[cell] = clamp(covered / hexagon.area, 0.0, 1.0) if hexagon.area > 0 else 0.0

    logger.info(
        "Computed land ratios",
        extra=log_data_processing(stage="land_ratio", records_processed=len(ratios)),
    )
    return ratios


def initial_rust(distance_m: float, max_distance_m: float) -> float:
    """Rust grows linearly from the centre to MAX_INITIAL_RUST at the edge."""
    if max_distance_m <= 0:
        return 0.0
    return min(MAX_INITIAL_RUST, distance_m / max_distance_m * MAX_INITIAL_RUST)


def rust_seeds(distances: Mapping[str, float]) -> Dict[str, float]:
    """Initial rust level per hex from its distance to the region centre."""
    max_distance = max(distances.values(), default=0.0)
    return {hex_id: initial_rust(d, max_distance) for hex_id, d in distances.items()}
