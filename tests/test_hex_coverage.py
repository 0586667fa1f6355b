"""Tests for region hex coverage and cell membership."""

import h3
import pytest
from shapely.geometry import LineString, Point as ShapelyPoint, box

from roadgrid.h3 import (
    HexCoverage,
    HexCoverageGenerator,
    RegionBounds,
    bbox_to_cells,
    cell_polygon,
    distance_from_center,
    expand_ring,
)

BAR_HARBOR = [44.35, -68.30, 44.42, -68.20]


@pytest.fixture(scope="module")
def coverage():
    return HexCoverageGenerator(resolution=7).generate_coverage(
        RegionBounds.from_bbox(BAR_HARBOR)
    )


def test_coverage_is_deterministic(coverage):
    again = HexCoverageGenerator(resolution=7).generate_coverage(
        RegionBounds.from_bbox(BAR_HARBOR)
    )
    assert again.cells == coverage.cells
    assert again.polygon.equals(coverage.polygon)


def test_coverage_polygon_covers_bbox(coverage):
    bbox_polygon = RegionBounds.from_bbox(BAR_HARBOR).to_polygon()
    assert coverage.polygon.buffer(1e-9).covers(bbox_polygon)


def test_every_cell_overlaps_bbox(coverage):
    bbox_polygon = RegionBounds.from_bbox(BAR_HARBOR).to_polygon()
    for cell in coverage.cells:
        assert cell_polygon(cell).intersection(bbox_polygon).area > 0
        assert h3.get_resolution(cell) == 7


def test_cells_touching_bbox_are_not_missed(coverage):
    bbox_polygon = RegionBounds.from_bbox(BAR_HARBOR).to_polygon()
    neighbours = expand_ring(coverage.cells, 1) - coverage.cells
    for cell in neighbours:
        assert cell_polygon(cell).intersection(bbox_polygon).area == 0


def test_tiny_bbox_still_gets_a_cell():
    bounds = RegionBounds(min_lat=44.38, min_lng=-68.25, max_lat=44.3801, max_lng=-68.2499)
    result = HexCoverageGenerator(resolution=5).generate_coverage(bounds)
    lng, lat = bounds.center()
    assert h3.latlng_to_cell(lat, lng, 5) in result.cells


def test_invalid_resolution_rejected():
    with pytest.raises(ValueError):
        HexCoverageGenerator(resolution=16)


def test_region_bounds_requires_four_values():
    with pytest.raises(ValueError):
        RegionBounds.from_bbox([1.0, 2.0, 3.0])


def test_contains_bbox_is_strict():
    cov = HexCoverage(cells=frozenset(), polygon=box(0, 0, 1, 1), resolution=7)
    assert cov.contains_bbox((0.2, 0.2, 0.8, 0.8))
    assert cov.contains_bbox((0.5, 0.5, 0.5, 0.5))
    assert not cov.contains_bbox((0.5, 0.5, 1.0001, 0.6))
    assert not cov.contains_bbox((-0.1, -0.1, -0.05, -0.05))


def test_contains_geometry():
    cov = HexCoverage(cells=frozenset(), polygon=box(0, 0, 1, 1), resolution=7)
    assert cov.contains(LineString([(0.1, 0.1), (0.9, 0.9)]))
    assert not cov.contains(ShapelyPoint(2, 2))


def test_bbox_to_cells_falls_back_to_centroid_cell():
    bbox = (-68.25, 44.38, -68.2499, 44.3801)
    cells = bbox_to_cells(bbox, 7)
    assert cells == [h3.latlng_to_cell(44.38005, -68.24995, 7)]


def test_bbox_to_cells_for_large_extent():
    bbox = (-68.30, 44.35, -68.20, 44.42)
    cells = bbox_to_cells(bbox, 7)
    assert len(cells) > 1
    assert cells == sorted(cells)


def test_to_dataframe(coverage):
    generator = HexCoverageGenerator(resolution=7)
    df = generator.to_dataframe(coverage, "bar_harbor_me_usa_demo", coverage.centroid)
    assert list(df.columns) == [
        "hex_id",
        "region_id",
        "resolution",
        "centroid_lat",
        "centroid_lng",
        "distance_from_center",
    ]
    assert len(df) == len(coverage.cells)
    assert (df["distance_from_center"] >= 0).all()


def test_distance_from_center_of_own_cell_is_zero():
    cell = h3.latlng_to_cell(44.38, -68.25, 7)
    lat, lng = h3.cell_to_latlng(cell)
    assert distance_from_center(cell, (lng, lat)) == pytest.approx(0.0, abs=1e-6)
