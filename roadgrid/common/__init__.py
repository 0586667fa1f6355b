"""
Common utilities for the roadgrid routing substrate.

This package provides shared configuration, logging, geodesy and warehouse
utilities used across ingestion and runtime routing.
"""

from .config import config, AppConfig, load_config, resolve_region, PREDEFINED_REGIONS
from .logging import (
    logger,
    get_logger,
    setup_logging,
    TimedLogger,
    log_data_processing,
    log_database_operation,
    log_route_query,
)
from .geo import (
    Point,
    great_circle_m,
    clamp,
    line_length_m,
    ring_area_m2,
    geodesic_point_at,
)
from .snowflake import (
    SnowflakeConnection,
    get_core_connection,
    execute_sql_file,
    split_sql_statements,
    execute_values,
    in_placeholders,
    chunked,
)

__all__ = [
    "config",
    "AppConfig",
    "load_config",
    "resolve_region",
    "PREDEFINED_REGIONS",
    "logger",
    "get_logger",
    "setup_logging",
    "TimedLogger",
    "log_data_processing",
    "log_database_operation",
    "log_route_query",
    "Point",
    "great_circle_m",
    "clamp",
    "line_length_m",
    "ring_area_m2",
    "geodesic_point_at",
    "SnowflakeConnection",
    "get_core_connection",
    "execute_sql_file",
    "split_sql_statements",
    "execute_values",
    "in_placeholders",
    "chunked",
]
