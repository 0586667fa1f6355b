"""
Configuration management for the roadgrid routing substrate.

This module provides centralized configuration loading and validation using Pydantic.
All environment variables are loaded and validated at startup.
"""

import os
from typing import Optional, List
from pydantic import BaseModel, validator, Field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


# Predefined playable regions, bbox as [min_lat, min_lng, max_lat, max_lng]
PREDEFINED_REGIONS = {
    "boston_ma_usa": {
        "region_name": "Boston, MA, USA",
        "bbox": [42.2279, -71.1912, 42.3974, -70.9201],
    },
    "bar_harbor_me_usa_demo": {
        "region_name": "Bar Harbor, ME, USA (Demo)",
        "bbox": [44.35, -68.30, 44.42, -68.20],
    },
}

DEFAULT_REGION_ID = "boston_ma_usa"

DEFAULT_ROAD_CLASSES = [
    "motorway",
    "trunk",
    "primary",
    "secondary",
    "tertiary",
    "residential",
    "service",
]


class SnowflakeConfig(BaseModel):
    """Snowflake database configuration."""

    account: str = Field(..., description="Snowflake account identifier")
    user: str = Field(..., description="Snowflake username")
    password: Optional[str] = Field(None, description="Snowflake password")
    private_key_path: Optional[str] = Field(
        None, description="Path to private key file for keypair auth"
    )
    role: str = Field(default="SYSADMIN", description="Snowflake role")
    warehouse: str = Field(default="COMPUTE_WH", description="Snowflake warehouse")
    database: str = Field(default="ROADGRID", description="Snowflake database")
    schema_core: str = Field(default="CORE", description="World and graph schema")

    @validator("private_key_path", always=True)
    def validate_auth_method(cls, v, values):
        """Ensure either password or private key is provided."""
        if not values.get("password") and not v:
            raise ValueError("Either password or private_key_path must be provided")
        return v


class HexConfig(BaseModel):
    """H3 grid configuration."""

    resolution: int = Field(default=7, description="H3 resolution level")

    @validator("resolution")
    def validate_resolution(cls, v):
        if not (0 <= v <= 15):
            raise ValueError(f"H3 resolution must be between 0 and 15, got {v}")
        return v


class RegionConfig(BaseModel):
    """Playable region selected for ingestion."""

    region_id: str = Field(..., description="Stable region identifier")
    region_name: str = Field(..., description="Human readable region name")
    bbox: List[float] = Field(
        ..., description="Region bounding box [min_lat, min_lng, max_lat, max_lng]"
    )

    @validator("bbox")
    def validate_bbox(cls, v):
        """Validate bounding box format."""
        if len(v) != 4:
            raise ValueError(
                "Bounding box must have 4 values: [min_lat, min_lng, max_lat, max_lng]"
            )
        if v[0] >= v[2] or v[1] >= v[3]:
            raise ValueError(
                "Invalid bounding box: min values must be less than max values"
            )
        return v


class IngestConfig(BaseModel):
    """Offline ingestion configuration."""

    data_dir: str = Field(
        default="data/overture", description="Root directory for Overture extracts"
    )
    batch_size: int = Field(default=1000, description="Rows per warehouse statement")
    building_cap_per_hex: int = Field(
        default=10, description="Max resource buildings per hex per resource type"
    )
    road_classes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ROAD_CLASSES),
        description="Road classes kept from the segment dataset",
    )
    download_attempts: int = Field(
        default=3, description="Attempts for the overturemaps download"
    )

    @validator("batch_size", "building_cap_per_hex")
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v


class RoutingConfig(BaseModel):
    """Runtime routing and travel-time configuration."""

    travel_speed_mps: float = Field(default=10.0, description="Convoy speed in m/s")
    min_travel_s: float = Field(default=4.0, description="Lower travel time clamp")
    max_travel_s: float = Field(default=45.0, description="Upper travel time clamp")
    distance_multiplier: float = Field(
        default=1.25, description="Straight-line inflation for the fallback estimate"
    )
    graph_cache_ttl_s: float = Field(
        default=300.0, description="Seconds a loaded region graph stays cached"
    )
    health_penalty_factor: float = Field(
        default=2.0, description="k in length * (1 + k * (1 - health / 100))"
    )
    max_snap_distance_m: Optional[float] = Field(
        None, description="Max distance when snapping a point to a connector"
    )

    @validator("travel_speed_mps", "min_travel_s", "distance_multiplier")
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @validator("health_penalty_factor", "graph_cache_ttl_s")
    def validate_non_negative(cls, v):
        # A negative factor would make damaged roads cheaper than healthy ones
        if v < 0:
            raise ValueError("must be non-negative")
        return v

    @validator("max_travel_s")
    def validate_window(cls, v, values):
        if "min_travel_s" in values and v < values["min_travel_s"]:
            raise ValueError("max_travel_s must be >= min_travel_s")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Logging level")
    format_str: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )
    enable_structured_logging: bool = Field(
        default=True, description="Enable structured JSON logging"
    )


class AppConfig(BaseModel):
    """Main application configuration."""

    snowflake: SnowflakeConfig
    hex: HexConfig
    region: RegionConfig
    ingest: IngestConfig
    routing: RoutingConfig
    logging: LoggingConfig

    # Environment
    environment: str = Field(default="development", description="Environment name")


def _parse_float_list(raw: str, name: str) -> List[float]:
    try:
        return [float(x.strip()) for x in raw.split(",")]
    except (ValueError, AttributeError):
        raise ValueError(
            f"{name} must be comma-separated floats: 'min_lat,min_lng,max_lat,max_lng'"
        )


def resolve_region(region_id: str, bbox: Optional[str] = None, name: Optional[str] = None) -> dict:
    """Resolve a region id to its name and bbox, explicit values taking precedence."""
    if bbox:
        return {
            "region_id": region_id,
            "region_name": name or region_id,
            "bbox": _parse_float_list(bbox, "REGION_BBOX"),
        }

    predefined = PREDEFINED_REGIONS.get(region_id)
    if not predefined:
        available = ", ".join(sorted(PREDEFINED_REGIONS))
        raise ValueError(
            f"Unknown region '{region_id}'. Available regions: {available}"
        )
    return {"region_id": region_id, **predefined}


def load_config() -> AppConfig:
    """Load and validate configuration from environment variables."""

    # Required environment variables
    required_vars = ["SNOWFLAKE_ACCOUNT", "SNOWFLAKE_USER"]

    missing_vars = [var for var in required_vars if not os.getenv(var)]
    if missing_vars:
        raise ValueError(f"Missing required environment variables: {missing_vars}")

    road_classes = os.getenv("ROAD_CLASSES")
    max_snap = os.getenv("MAX_SNAP_DISTANCE_M")

    config_dict = {
        "snowflake": {
            "account": os.getenv("SNOWFLAKE_ACCOUNT"),
            "user": os.getenv("SNOWFLAKE_USER"),
            "password": os.getenv("SNOWFLAKE_PASSWORD"),
            "private_key_path": os.getenv("SNOWFLAKE_PRIVATE_KEY_PATH"),
            "role": os.getenv("SNOWFLAKE_ROLE", "SYSADMIN"),
            "warehouse": os.getenv("SNOWFLAKE_WAREHOUSE", "COMPUTE_WH"),
            "database": os.getenv("SNOWFLAKE_DATABASE", "ROADGRID"),
            "schema_core": os.getenv("SNOWFLAKE_SCHEMA_CORE", "CORE"),
        },
        "hex": {
            "resolution": int(os.getenv("H3_RESOLUTION", "7")),
        },
        "region": resolve_region(
            os.getenv("INGEST_REGION", DEFAULT_REGION_ID),
            bbox=os.getenv("REGION_BBOX"),
            name=os.getenv("REGION_NAME"),
        ),
        "ingest": {
            "data_dir": os.getenv("OVERTURE_DATA_DIR", "data/overture"),
            "batch_size": int(os.getenv("INGEST_BATCH_SIZE", "1000")),
            "building_cap_per_hex": int(os.getenv("BUILDING_CAP_PER_HEX", "10")),
            "road_classes": [c.strip() for c in road_classes.split(",") if c.strip()]
            if road_classes
            else list(DEFAULT_ROAD_CLASSES),
            "download_attempts": int(os.getenv("DOWNLOAD_ATTEMPTS", "3")),
        },
        "routing": {
            "travel_speed_mps": float(os.getenv("RESOURCE_TRAVEL_MPS", "10")),
            "min_travel_s": float(os.getenv("RESOURCE_TRAVEL_MIN_S", "4")),
            "max_travel_s": float(os.getenv("RESOURCE_TRAVEL_MAX_S", "45")),
            "distance_multiplier": float(
                os.getenv("RESOURCE_DISTANCE_MULTIPLIER", "1.25")
            ),
            "graph_cache_ttl_s": float(os.getenv("GRAPH_CACHE_TTL_S", "300")),
            "health_penalty_factor": float(os.getenv("HEALTH_PENALTY_FACTOR", "2.0")),
            "max_snap_distance_m": float(max_snap) if max_snap else None,
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "enable_structured_logging": os.getenv(
                "ENABLE_STRUCTURED_LOGGING", "true"
            ).lower()
            == "true",
        },
        "environment": os.getenv("ENVIRONMENT", "development"),
    }

    return AppConfig(**config_dict)


# Global configuration instance
config = load_config()
