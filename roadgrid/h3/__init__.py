"""
H3 hexagonal grid utilities for the roadgrid routing substrate.

This package provides region hex coverage and the cell membership rules used
to associate features, connectors and edges with hexes.
"""

from .grid import (
    HexCoverageGenerator,
    HexCoverage,
    RegionBounds,
    get_coverage_generator,
    coverage_from_config,
)

from .cells import (
    bbox_to_cells,
    cell_center,
    cell_polygon,
    distance_from_center,
    expand_ring,
)

__all__ = [
    "HexCoverageGenerator",
    "HexCoverage",
    "RegionBounds",
    "get_coverage_generator",
    "coverage_from_config",
    "bbox_to_cells",
    "cell_center",
    "cell_polygon",
    "distance_from_center",
    "expand_ring",
]
