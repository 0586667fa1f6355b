"""Tests for travel durations and waypoint building."""

import pytest

from roadgrid.common import great_circle_m
from roadgrid.routing import (
    PathResult,
    Waypoint,
    build_waypoints,
    fallback_travel_seconds,
    find_path,
    simplify_waypoints,
    travel_seconds,
)
from roadgrid.routing.waypoints import clamp_travel

DEPART = 1_700_000_000_000
LAT_100M = 100 / 111195.0
LINE = {
    "s": (0.0, 0.0),
    "m": (0.0, LAT_100M),
    "e": (0.0, 2 * LAT_100M),
}


@pytest.fixture
def line_path(make_graph):
    g = make_graph(LINE, [("sm", "s", "m", 100.0), ("me", "m", "e", 100.0)])
    return find_path(g.graph, g.coords, "s", "e"), g.coords


class TestTravelSeconds:
    def test_clamp_window(self):
        assert clamp_travel(1.0, 4.0, 45.0) == 4.0
        assert clamp_travel(100.0, 4.0, 45.0) == 45.0
        assert clamp_travel(20.0, 4.0, 45.0) == 20.0

    def test_path_duration(self, line_path):
        path, _ = line_path
        assert travel_seconds(path, speed_mps=10.0) == pytest.approx(20.0, abs=0.05)

    def test_long_path_hits_max(self):
        path = PathResult(connector_ids=["a", "b"], total_weighted_distance=5000.0)
        assert travel_seconds(path, speed_mps=10.0, min_s=4.0, max_s=45.0) == 45.0

    def test_short_path_hits_min(self):
        path = PathResult(connector_ids=["a", "b"], total_weighted_distance=5.0)
        assert travel_seconds(path, speed_mps=10.0, min_s=4.0, max_s=45.0) == 4.0

    def test_fallback_formula(self):
        source, destination = (0.0, 0.0), (0.0, 2 * LAT_100M)
        expected = great_circle_m(source, destination) * 1.25 / 10.0
        assert fallback_travel_seconds(
            source, destination, speed_mps=10.0, multiplier=1.25, min_s=4.0, max_s=45.0
        ) == pytest.approx(expected)

    def test_fallback_is_clamped(self):
        far = fallback_travel_seconds((0.0, 0.0), (1.0, 1.0), 10.0, 1.25, 4.0, 45.0)
        near = fallback_travel_seconds((0.0, 0.0), (0.0, 0.0), 10.0, 1.25, 4.0, 45.0)
        assert far == 45.0
        assert near == 4.0


class TestBuildWaypoints:
    def test_one_waypoint_per_connector(self, line_path):
        path, coords = line_path
        waypoints = build_waypoints(path, coords, DEPART, speed_mps=10.0)
        assert [w.coord for w in waypoints] == [LINE["s"], LINE["m"], LINE["e"]]

    def test_times_are_monotonic_and_end_at_duration(self, line_path):
        path, coords = line_path
        waypoints = build_waypoints(path, coords, DEPART, speed_mps=10.0)
        times = [w.arrive_at_ms for w in waypoints]
        assert times == sorted(times)
        assert times[0] == DEPART
        assert times[-1] == pytest.approx(DEPART + travel_seconds(path, 10.0) * 1000, abs=1)
        assert times[1] - DEPART == pytest.approx((times[-1] - DEPART) / 2, abs=2)

    def test_actual_endpoints_replace_first_and_last(self, line_path):
        path, coords = line_path
        start, end = (0.0001, -0.0001), (0.0001, 2 * LAT_100M + 0.0001)
        waypoints = build_waypoints(path, coords, DEPART, 10.0, actual_start=start, actual_end=end)
        assert waypoints[0].coord == start
        assert waypoints[-1].coord == end
        assert waypoints[1].coord == LINE["m"]

    def test_clamped_duration_spreads_over_path(self, make_graph):
        coords = {"a": (0.0, 0.0), "b": (0.0, 0.01), "c": (0.0, 0.02)}
        g = make_graph(coords, [("ab", "a", "b", 100.0), ("bc", "b", "c", 100.0)])
        path = find_path(g.graph, g.coords, "a", "c")
        waypoints = build_waypoints(path, coords, DEPART, speed_mps=10.0)
        assert waypoints[-1].arrive_at_ms == DEPART + 45_000
        assert waypoints[1].arrive_at_ms == pytest.approx(DEPART + 22_500, abs=2)

    def test_damaged_segment_takes_longer(self, make_graph):
        g = make_graph(LINE, [("sm", "s", "m", 0.0), ("me", "m", "e", 100.0)])
        path = find_path(g.graph, g.coords, "s", "e", penalty_factor=2.0)
        waypoints = build_waypoints(path, g.coords, DEPART, speed_mps=10.0)
        first_leg = waypoints[1].arrive_at_ms - DEPART
        second_leg = waypoints[2].arrive_at_ms - waypoints[1].arrive_at_ms
        assert first_leg > second_leg

    def test_no_path_no_waypoints(self):
        assert build_waypoints(None, {}, DEPART) == []

    def test_single_connector_with_endpoints(self):
        path = PathResult(connector_ids=["a"])
        start, end = (0.0, 0.0), (0.0, 0.0001)
        waypoints = build_waypoints(path, {"a": (0.0, 0.00005)}, DEPART, 10.0, start, end)
        assert [w.coord for w in waypoints] == [start, end]
        assert waypoints[0].arrive_at_ms == DEPART
        assert waypoints[1].arrive_at_ms > DEPART

    def test_waypoint_serialisation(self):
        waypoint = Waypoint((1.5, 2.5), 1_000)
        assert waypoint.arrive_at == "1970-01-01T00:00:01.000Z"
        assert waypoint.to_dict() == {"coord": [1.5, 2.5], "arrive_at": "1970-01-01T00:00:01.000Z"}


class TestSimplify:
    def test_collinear_points_collapse(self):
        waypoints = [Waypoint((0.0, i * 0.0001), DEPART + i) for i in range(5)]
        simplified = simplify_waypoints(waypoints, epsilon_m=1.0)
        assert simplified == [waypoints[0], waypoints[-1]]

    def test_corner_is_kept(self):
        waypoints = [
            Waypoint((0.0, 0.0), DEPART),
            Waypoint((0.0, 0.001), DEPART + 1),
            Waypoint((0.001, 0.001), DEPART + 2),
        ]
        assert simplify_waypoints(waypoints, epsilon_m=5.0) == waypoints

    def test_short_sequences_unchanged(self):
        waypoints = [Waypoint((0.0, 0.0), DEPART), Waypoint((0.0, 0.001), DEPART + 1)]
        assert simplify_waypoints(waypoints) == waypoints

    def test_small_wiggle_dropped_and_times_kept(self):
        # ~1 m sideways jog on a 100 m leg, then a real 100 m turn
        waypoints = [
            Waypoint((0.0, 0.0), DEPART),
            Waypoint((0.00001, 0.00045), DEPART + 5),
            Waypoint((0.0, 0.0009), DEPART + 10),
            Waypoint((0.0009, 0.0009), DEPART + 20),
        ]
        simplified = simplify_waypoints(waypoints, epsilon_m=5.0)
        assert simplified == [waypoints[0], waypoints[2], waypoints[3]]
        assert [w.arrive_at_ms for w in simplified] == [DEPART, DEPART + 10, DEPART + 20]

    def test_tolerance_is_in_meters_at_high_latitude(self):
        # At 60 degrees a 0.0001 degree longitude jog is about 5.6 m
        waypoints = [
            Waypoint((0.0, 60.0), DEPART),
            Waypoint((0.0001, 60.0005), DEPART + 1),
            Waypoint((0.0, 60.001), DEPART + 2),
        ]
        assert simplify_waypoints(waypoints, epsilon_m=8.0) == [waypoints[0], waypoints[2]]
        assert simplify_waypoints(waypoints, epsilon_m=3.0) == waypoints
