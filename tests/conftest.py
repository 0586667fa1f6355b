"""Shared fixtures for the roadgrid test suite."""

import os

# Configuration is loaded at import time; provide the required settings first
os.environ.setdefault("SNOWFLAKE_ACCOUNT", "test_account")
os.environ.setdefault("SNOWFLAKE_USER", "test_user")
os.environ.setdefault("SNOWFLAKE_PASSWORD", "test_password")
os.environ.setdefault("ENABLE_STRUCTURED_LOGGING", "false")

from unittest.mock import MagicMock

import pytest

from roadgrid.common import great_circle_m
from roadgrid.routing import GraphEdge, RegionGraph


@pytest.fixture
def cursor():
    """Snowflake cursor double; SELECTs return no rows unless configured."""
    mock = MagicMock()
    mock.rowcount = 0
    mock.fetchall.return_value = []
    mock.fetchone.return_value = None
    return mock


@pytest.fixture
def make_graph():
    """
    Build a RegionGraph from coords and undirected (segment, a, b, health) edges.

    Edge lengths are the great-circle distance between the endpoints unless a
    fifth length element is given.
    """

    def _make(coords, edges, region_id="test_region"):
        graph = {}
        for row in edges:
            segment_id, a, b, health = row[:4]
            length = row[4] if len(row) > 4 else great_circle_m(coords[a], coords[b])
            graph.setdefault(a, []).append(GraphEdge(segment_id, b, length, health))
            graph.setdefault(b, []).append(GraphEdge(segment_id, a, length, health))
        return RegionGraph(region_id=region_id, graph=graph, coords=dict(coords))

    return _make
