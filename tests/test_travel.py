"""Tests for the graph cache and the travel planner."""

from unittest.mock import MagicMock

import pytest

from roadgrid.routing import (
    GraphCache,
    RegionGraph,
    fallback_travel_seconds,
    fetch_region_graph,
    plan_travel,
)
from roadgrid.routing.travel import NO_CONNECTOR, NO_GRAPH, NO_PATH

DEPART = 1_700_000_000_000
LAT_100M = 100 / 111195.0
SOURCE = (0.0, -0.00001)
DESTINATION = (0.0, 2 * LAT_100M + 0.00001)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def line_graph(make_graph):
    coords = {"s": (0.0, 0.0), "m": (0.0, LAT_100M), "e": (0.0, 2 * LAT_100M)}
    return make_graph(coords, [("sm", "s", "m", 100.0), ("me", "m", "e", 100.0)])


class TestGraphCache:
    def test_entries_expire_after_ttl(self, line_graph):
        loader = MagicMock(return_value=line_graph)
        clock = FakeClock()
        cache = GraphCache(loader=loader, ttl_s=300, clock=clock)

        assert cache.get("test_region") is line_graph
        clock.now = 299
        cache.get("test_region")
        assert loader.call_count == 1

        clock.now = 301
        cache.get("test_region")
        assert loader.call_count == 2

    def test_missing_region_is_not_cached(self):
        loader = MagicMock(return_value=None)
        cache = GraphCache(loader=loader, ttl_s=300, clock=FakeClock())
        assert cache.get("nowhere") is None
        assert cache.get("nowhere") is None
        assert loader.call_count == 2

    def test_load_failure_returns_none(self, line_graph):
        loader = MagicMock(side_effect=[RuntimeError("warehouse down"), line_graph])
        cache = GraphCache(loader=loader, ttl_s=300, clock=FakeClock())
        assert cache.get("test_region") is None
        assert cache.get("test_region") is line_graph

    def test_invalidate(self, line_graph):
        loader = MagicMock(return_value=line_graph)
        cache = GraphCache(loader=loader, ttl_s=300, clock=FakeClock())
        cache.get("test_region")
        cache.invalidate("test_region")
        cache.get("test_region")
        cache.invalidate()
        cache.get("test_region")
        assert loader.call_count == 3


class TestFetchRegionGraph:
    def test_builds_adjacency(self):
        connection = MagicMock()
        connection.execute_query.side_effect = [
            [
                {"CONNECTOR_ID": "a", "LNG": -68.25, "LAT": 44.38},
                {"CONNECTOR_ID": "b", "LNG": -68.25, "LAT": 44.381},
            ],
            [
                {"FROM_CONNECTOR": "a", "TO_CONNECTOR": "b", "SEGMENT_ID": "s", "LENGTH_METERS": 111.2, "HEALTH": 40},
                {"FROM_CONNECTOR": "b", "TO_CONNECTOR": "a", "SEGMENT_ID": "s", "LENGTH_METERS": 111.2, "HEALTH": 40},
            ],
        ]
        region_graph = fetch_region_graph("demo", connection)
        assert region_graph.coords == {"a": (-68.25, 44.38), "b": (-68.25, 44.381)}
        assert region_graph.edge_count == 2
        edge = region_graph.graph["a"][0]
        assert (edge.to_connector, edge.segment_id, edge.health) == ("b", "s", 40.0)

    def test_region_without_connectors(self):
        connection = MagicMock()
        connection.execute_query.return_value = []
        assert fetch_region_graph("empty", connection) is None


class TestPlanTravel:
    def _cache(self, region_graph):
        return GraphCache(loader=lambda region_id: region_graph, ttl_s=300, clock=FakeClock())

    def test_routed_trip(self, line_graph):
        plan = plan_travel("test_region", SOURCE, DESTINATION, DEPART, cache=self._cache(line_graph))
        assert plan.routed
        assert plan.fallback_reason is None
        assert plan.travel_seconds == pytest.approx(20.0, abs=0.1)
        assert plan.waypoints[0].coord == SOURCE
        assert plan.waypoints[-1].coord == DESTINATION
        assert plan.waypoints[0].arrive_at_ms == DEPART

    def test_no_graph_falls_back(self):
        plan = plan_travel("nowhere", SOURCE, DESTINATION, DEPART, cache=self._cache(None))
        assert plan.fallback_reason == NO_GRAPH
        assert plan.waypoints == []
        assert plan.travel_seconds == pytest.approx(fallback_travel_seconds(SOURCE, DESTINATION))

    def test_no_connector_falls_back(self):
        empty = RegionGraph(region_id="test_region", graph={}, coords={})
        plan = plan_travel("test_region", SOURCE, DESTINATION, DEPART, cache=self._cache(empty))
        assert plan.fallback_reason == NO_CONNECTOR
        assert plan.waypoints == []

    def test_no_path_falls_back(self, make_graph):
        disconnected = make_graph({"s": SOURCE, "e": DESTINATION}, [])
        plan = plan_travel("test_region", SOURCE, DESTINATION, DEPART, cache=self._cache(disconnected))
        assert plan.fallback_reason == NO_PATH
        assert plan.travel_seconds == pytest.approx(fallback_travel_seconds(SOURCE, DESTINATION))

    def test_simplified_waypoints_keep_endpoints(self, line_graph):
        plan = plan_travel(
            "test_region",
            SOURCE,
            DESTINATION,
            DEPART,
            cache=self._cache(line_graph),
            simplify_epsilon_m=5.0,
        )
        assert [w.coord for w in plan.waypoints] == [SOURCE, DESTINATION]

    def test_to_dict(self, line_graph):
        plan = plan_travel("test_region", SOURCE, DESTINATION, DEPART, cache=self._cache(line_graph))
        data = plan.to_dict()
        assert data["fallback_reason"] is None
        assert len(data["waypoints"]) == len(plan.waypoints)
