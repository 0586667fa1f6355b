"""
Data ingestion utilities for the roadgrid routing substrate.

This package provides Overture Maps dataset access, the feature ingestor for
roads and buildings, and resource-generation classification.
"""

from .overture import (
    OvertureDataset,
    OvertureDownloader,
    OvertureReader,
    SEGMENTS,
    BUILDINGS,
    PLACES,
    LAND,
    region_data_dir,
    resolve_dataset_path,
)
from .features import (
    FeatureIngestor,
    WorldFeature,
    RoadSegment,
    IngestBatch,
    parse_connectors,
    footprint_area_m2,
)
from .resources import (
    RESOURCE_TYPES,
    BuildingCandidate,
    ResourceTally,
    assign_resources,
    apply_hex_cap,
    match_resource,
)

__all__ = [
    # Overture
    "OvertureDataset",
    "OvertureDownloader",
    "OvertureReader",
    "SEGMENTS",
    "BUILDINGS",
    "PLACES",
    "LAND",
    "region_data_dir",
    "resolve_dataset_path",
    # Features
    "FeatureIngestor",
    "WorldFeature",
    "RoadSegment",
    "IngestBatch",
    "parse_connectors",
    "footprint_area_m2",
    # Resources
    "RESOURCE_TYPES",
    "BuildingCandidate",
    "ResourceTally",
    "assign_resources",
    "apply_hex_cap",
    "match_resource",
]
