"""
Data loading utilities for the roadgrid routing substrate.

This package provides Snowflake MERGE/replace loaders for regions, hex cells,
world features and the road graph, plus the schema DDL.
"""

from pathlib import Path

from .snowflake_load import (
    LoadResult,
    RegionLoader,
    HexCellLoader,
    FeatureLoader,
    GraphLoader,
    merge_boundary,
)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

__all__ = [
    "LoadResult",
    "RegionLoader",
    "HexCellLoader",
    "FeatureLoader",
    "GraphLoader",
    "merge_boundary",
    "SCHEMA_PATH",
]
