"""Tests for resource classification and the per-hex building cap."""

import pytest

from roadgrid.ingest.resources import (
    RESOURCE_TYPES,
    BuildingCandidate,
    ResourceTally,
    apply_hex_cap,
    assign_resources,
    fallback_resource,
    match_resource,
    primary_category,
    resource_flags,
    score_candidates,
)


@pytest.mark.parametrize(
    "category,expected",
    [
        ("gas_station", "energy"),
        ("hardware_store", "equipment"),
        ("lumber_yard", "materials"),
        ("restaurant", "food"),
        ("Coffee_Shop", "food"),
        ("lawyer", None),
        (None, None),
        ("", None),
    ],
)
def test_match_resource(category, expected):
    assert match_resource(category) == expected


def test_priority_breaks_multi_matches():
    # fuel (energy) and market (food)
    assert match_resource("fuel_market") == "energy"
    # repair (equipment) and factory (materials)
    assert match_resource("factory_repair") == "equipment"


def test_primary_category_shapes():
    assert primary_category({"primary": "cafe", "alternate": ["bakery"]}) == "cafe"
    assert primary_category([{"primary": "bar"}]) == "bar"
    assert primary_category({"primary": None}) is None
    assert primary_category(None) is None


def test_every_building_gets_exactly_one_type():
    candidates = [BuildingCandidate(feature_id=f"b{i}", cells=["x"]) for i in range(20)]
    candidates[0].category = "gas_station"
    assign_resources(candidates)
    for c in candidates:
        assert c.resource_type in RESOURCE_TYPES
        assert sum(resource_flags(c.resource_type).values()) == 1
    assert candidates[0].matched is True
    assert candidates[1].matched is False


def test_fallback_balances_types():
    candidates = [BuildingCandidate(feature_id=f"bldg-{i:04d}", cells=["x"]) for i in range(200)]
    tally = assign_resources(candidates)
    assert sum(tally.counts.values()) == 200
    for resource_type in RESOURCE_TYPES:
        assert tally.counts[resource_type] >= 30


def test_fallback_favours_underrepresented_types():
    tally = ResourceTally()
    for _ in range(10):
        tally.add("food")
        tally.add("equipment")
    assert set(tally.least_represented(2)) == {"energy", "materials"}
    assert fallback_resource("anything", tally) in {"energy", "materials"}


def test_assignment_independent_of_input_order():
    ids = [f"b{i}" for i in range(30)]
    forward = [BuildingCandidate(feature_id=i, cells=["x"]) for i in ids]
    backward = [BuildingCandidate(feature_id=i, cells=["x"]) for i in reversed(ids)]
    assign_resources(forward)
    assign_resources(backward)
    assert {c.feature_id: c.resource_type for c in forward} == {
        c.feature_id: c.resource_type for c in backward
    }


def _matched(feature_id, area, cells=("x",), category="restaurant"):
    return BuildingCandidate(feature_id=feature_id, cells=list(cells), area_m2=area, category=category)


def test_score_prefers_matches_then_size():
    big_unmatched = _matched("a", 1000.0, category=None)
    small_matched = _matched("b", 10.0)
    candidates = [big_unmatched, small_matched]
    assign_resources(candidates)
    score_candidates(candidates)
    assert small_matched.weight > big_unmatched.weight
    assert 0.5 <= big_unmatched.weight < 0.5 + 1e-3


def test_cap_keeps_heaviest():
    candidates = [_matched("small", 10.0), _matched("large", 100.0), _matched("mid", 50.0)]
    assign_resources(candidates)
    score_candidates(candidates)
    kept, rejected = apply_hex_cap(candidates, cap=2)
    assert {c.feature_id for c in kept} == {"large", "mid"}
    assert [c.feature_id for c in rejected] == ["small"]


def test_cap_is_per_resource_type():
    candidates = [
        _matched("f1", 100.0),
        _matched("f2", 90.0),
        _matched("e1", 80.0, category="gas_station"),
    ]
    assign_resources(candidates)
    score_candidates(candidates)
    kept, rejected = apply_hex_cap(candidates, cap=1)
    assert {c.feature_id for c in kept} == {"f1", "e1"}
    assert [c.feature_id for c in rejected] == ["f2"]


def test_multi_hex_building_rejected_when_any_hex_full():
    candidates = [
        _matched("a", 100.0, cells=("y",)),
        _matched("b", 50.0, cells=("x", "y")),
        _matched("c", 10.0, cells=("x",)),
    ]
    assign_resources(candidates)
    score_candidates(candidates)
    kept, rejected = apply_hex_cap(candidates, cap=1)
    assert {c.feature_id for c in kept} == {"a", "c"}
    assert [c.feature_id for c in rejected] == ["b"]
