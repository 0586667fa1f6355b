"""
H3 cell helpers for the roadgrid routing substrate.

Provides ring expansion around cells and the bbox-to-cell membership rule
used to associate world features with every hex their extent touches.
"""

import h3
from typing import Iterable, List, Set, Tuple
from shapely.geometry import Polygon

from ..common import config, great_circle_m, Point

# (xmin, ymin, xmax, ymax) in degrees
BBox = Tuple[float, float, float, float]


def cell_polygon(cell: str) -> Polygon:
    """Shapely polygon of a cell in (lng, lat) order."""
    boundary = h3.cell_to_boundary(cell)
    return Polygon([(lng, lat) for lat, lng in boundary])


def cell_center(cell: str) -> Point:
    lat, lng = h3.cell_to_latlng(cell)
    return lng, lat


def expand_ring(cells: Iterable[str], k: int = 1) -> Set[str]:
    """
    Return the cells plus every cell within k grid steps of them.

    Args:
        cells: Seed cells
        k: Ring distance

    Returns:
        Set containing the seeds and their neighbours
    """
    expanded: Set[str] = set()
    for cell in cells:
        expanded.update(h3.grid_disk(cell, k))
    return expanded


def bbox_to_cells(bbox: BBox, resolution: int = None) -> List[str]:
    """
    Cells whose centres fall inside a feature bbox.

    Small features (most buildings, short road stubs) contain no cell centre;
    those fall back to the single cell holding the bbox centroid, so every
    feature maps to at least one hex.

    Args:
        bbox: Feature extent as (xmin, ymin, xmax, ymax)
        resolution: H3 resolution (defaults to configured resolution)

    Returns:
        Sorted list of cell ids, never empty
    """
    res = config.hex.resolution if resolution is None else resolution
    xmin, ymin, xmax, ymax = bbox

    if xmax > xmin and ymax > ymin:
        ring = [(ymin, xmin), (ymin, xmax), (ymax, xmax), (ymax, xmin)]
        try:
            cells = h3.polygon_to_cells(h3.LatLngPoly(ring), res)
        except (ValueError, h3.H3BaseException):
            cells = []
        if cells:
            return sorted(cells)

    return [h3.latlng_to_cell((ymin + ymax) / 2, (xmin + xmax) / 2, res)]


def distance_from_center(cell: str, center: Point) -> float:
    """Great-circle metres from the cell centre to a region centre."""
    return great_circle_m(cell_center(cell), center)
