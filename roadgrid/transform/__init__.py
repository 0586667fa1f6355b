"""
Data transformation utilities for the roadgrid routing substrate.

This package provides road graph construction, hub selection, land ratio and
initial rust computation over ingested features.
"""

from .road_graph import (
    Connector,
    Edge,
    ConnectorRegistry,
    GraphBuild,
    RoadGraphBuilder,
    interpolate_along,
    find_asymmetric_edges,
)
from .hubs import HubCandidate, HubAssignment, assign_hubs, hub_score
from .land import land_ratios, initial_rust, rust_seeds

__all__ = [
    # Road graph
    "Connector",
    "Edge",
    "ConnectorRegistry",
    "GraphBuild",
    "RoadGraphBuilder",
    "interpolate_along",
    "find_asymmetric_edges",
    # Hubs
    "HubCandidate",
    "HubAssignment",
    "assign_hubs",
    "hub_score",
    # Land and rust
    "land_ratios",
    "initial_rust",
    "rust_seeds",
]
