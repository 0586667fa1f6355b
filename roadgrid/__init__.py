"""
roadgrid: geospatial world ingestion and runtime routing.

Offline, regions are ingested from Overture Maps into H3-indexed world
features and a road graph in Snowflake (see ``roadgrid.pipeline``). At
runtime, ``roadgrid.routing.plan_travel`` turns two points into a
health-aware travel time and time-stamped waypoints.
"""

__version__ = "0.1.0"
