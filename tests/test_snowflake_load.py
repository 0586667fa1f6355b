"""Tests for the Snowflake loaders against a mocked cursor."""

import json

import pytest
from shapely import wkt
from shapely.geometry import box

from roadgrid.common import execute_values
from roadgrid.h3 import HexCoverage
from roadgrid.ingest import RoadSegment, WorldFeature
from roadgrid.load import FeatureLoader, GraphLoader, HexCellLoader, RegionLoader, merge_boundary
from roadgrid.transform import HubAssignment, RoadGraphBuilder


def _statements(cursor):
    return [" ".join(c.args[0].split()) for c in cursor.execute.call_args_list]


def _building(feature_id, resource_type="food", cells=("c1",)):
    return WorldFeature(
        feature_id=feature_id,
        feature_type="building",
        region_id="demo",
        bbox=(0.0, 0.0, 0.001, 0.001),
        cells=list(cells),
        place_category="bakery",
        resource_type=resource_type,
        area_m2=120.0,
        properties={"category": "bakery", "category_match": True},
    )


class TestMergeBoundary:
    def test_union_never_shrinks(self):
        stored = box(0, 0, 1, 1)
        merged = merge_boundary(stored.wkt, box(0.5, 0, 1.5, 1))
        assert merged.covers(stored)
        assert merged.area == pytest.approx(1.5)

    def test_regenerate_replaces(self):
        new = box(0.5, 0, 1.5, 1)
        assert merge_boundary(box(0, 0, 1, 1).wkt, new, regenerate=True).equals(new)

    def test_nothing_stored(self):
        new = box(0, 0, 1, 1)
        assert merge_boundary(None, new).equals(new)


class TestExecuteValues:
    def test_chunks_rows(self, cursor):
        rows = [(i, f"v{i}") for i in range(5)]
        sent = execute_values(cursor, "INSERT INTO T VALUES {values}", rows, chunk_size=2)
        assert sent == 5
        assert cursor.execute.call_count == 3
        sql, params = cursor.execute.call_args_list[0].args
        assert sql == "INSERT INTO T VALUES (%s, %s), (%s, %s)"
        assert params == [0, "v0", 1, "v1"]

    def test_no_rows_no_statement(self, cursor):
        assert execute_values(cursor, "INSERT INTO T VALUES {values}", []) == 0
        cursor.execute.assert_not_called()


class TestRegionLoader:
    def test_new_region_uses_coverage(self, cursor):
        coverage = HexCoverage(cells=frozenset(), polygon=box(0, 0, 1, 1), resolution=7)
        RegionLoader().upsert_region(cursor, "demo", "Demo", [0.0, 0.0, 1.0, 1.0], coverage)
        merge_call = cursor.execute.call_args_list[-1]
        params = merge_call.args[1]
        assert "MERGE INTO REGIONS" in " ".join(merge_call.args[0].split())
        assert params[6] == coverage.polygon.wkt
        assert params[7:] == (0.5, 0.5)

    def test_existing_boundary_is_unioned(self, cursor):
        cursor.fetchone.return_value = (box(-1, 0, 0, 1).wkt, 0.0, 0.0, 1.0, 1.0)
        coverage = HexCoverage(cells=frozenset(), polygon=box(0, 0, 1, 1), resolution=7)
        RegionLoader().upsert_region(cursor, "demo", "Demo", [0.0, 0.0, 1.0, 1.0], coverage)
        params = cursor.execute.call_args_list[-1].args[1]
        assert wkt.loads(params[6]).area == pytest.approx(2.0)

    def test_changed_bbox_regenerates(self, cursor):
        cursor.fetchone.return_value = (box(-1, 0, 0, 1).wkt, 0.0, -1.0, 1.0, 0.0)
        coverage = HexCoverage(cells=frozenset(), polygon=box(0, 0, 1, 1), resolution=7)
        RegionLoader().upsert_region(cursor, "demo", "Demo", [0.0, 0.0, 1.0, 1.0], coverage)
        params = cursor.execute.call_args_list[-1].args[1]
        assert params[6] == coverage.polygon.wkt


class TestHexCellLoader:
    def test_upsert_cells(self, cursor):
        result = HexCellLoader().upsert_cells(cursor, "demo", {"b": 20.0, "a": 10.0})
        assert result.records_loaded == 2
        params = cursor.execute.call_args.args[1]
        assert params == ["a", "demo", 10.0, "b", "demo", 20.0]

    def test_prune_only_stale_cells(self, cursor):
        cursor.fetchall.return_value = [("keep",), ("stale",)]
        result = HexCellLoader().prune_cells(cursor, "demo", {"keep"})
        assert result.records_loaded == 1
        deletes = [c for c in cursor.execute.call_args_list if c.args[0].startswith("DELETE")]
        assert len(deletes) == 2
        assert deletes[1].args[1] == ["demo", "stale"]

    def test_prune_nothing_stale(self, cursor):
        cursor.fetchall.return_value = [("keep",)]
        assert HexCellLoader().prune_cells(cursor, "demo", {"keep"}).operation_type == "SKIP"

    def test_rust_seeding_only_fills_nulls(self, cursor):
        HexCellLoader().seed_rust(cursor, {"a": 0.1})
        assert "WHEN MATCHED AND t.RUST_LEVEL IS NULL" in _statements(cursor)[0]

    def test_replace_hubs_clears_then_sets(self, cursor):
        hubs = {"c1": HubAssignment("c1", "b1", 0.9), "c2": HubAssignment("c2", "b1", 0.8)}
        result = HexCellLoader().replace_hubs(cursor, "demo", hubs)
        statements = _statements(cursor)
        assert statements[0].startswith("UPDATE HEX_CELLS SET HUB_BUILDING_ID = NULL")
        assert statements[1].startswith("UPDATE WORLD_FEATURES SET IS_HUB = FALSE")
        assert "IS_HUB = TRUE" in statements[-1]
        assert cursor.execute.call_args_list[-1].args[1] == ["b1"]
        assert result.records_loaded == 2


class TestFeatureLoader:
    def test_upsert_dedupes_and_replaces_associations(self, cursor):
        features = [_building("b1", cells=("c1", "c2")), _building("b1", cells=("c1", "c2")), _building("b2")]
        result = FeatureLoader().upsert_features(cursor, features)
        assert result.records_loaded == 2

        statements = _statements(cursor)
        assert "PARSE_JSON(COLUMN16) AS PROPERTIES" in statements[0]
        assert statements[1].startswith("DELETE FROM WORLD_FEATURE_HEX_CELLS")
        assert cursor.execute.call_args_list[2].args[1] == ["b1", "c1", "b1", "c2", "b2", "c1"]

    def test_feature_row_flags(self):
        row = FeatureLoader._feature_row(_building("b1", resource_type="energy"))
        # generates_food, generates_equipment, generates_energy, generates_materials
        assert row[11:15] == (False, False, True, False)
        assert json.loads(row[15]) == {"category": "bakery", "category_match": True}

    def test_feature_state_is_insert_only(self, cursor):
        FeatureLoader().seed_feature_state(cursor, ["r2", "r1", "r1"])
        sql = _statements(cursor)[0]
        assert "WHEN MATCHED" not in sql
        assert "VALUES (s.FEATURE_ID, 100, 'normal', CURRENT_TIMESTAMP())" in sql
        assert cursor.execute.call_args.args[1] == ["r1", "r2"]

    def test_prune_unseen(self, cursor):
        cursor.fetchall.return_value = [("r1",), ("gone",)]
        FeatureLoader().prune_features(cursor, "demo", {"r1"})
        statements = _statements(cursor)
        assert statements[1] == "DELETE FROM WORLD_FEATURE_HEX_CELLS WHERE FEATURE_ID IN (%s)"
        assert cursor.execute.call_args_list[1].args[1] == ["gone"]
        assert any(s.startswith("DELETE FROM FEATURE_STATE") for s in statements)


class TestGraphLoader:
    def test_replace_graph(self, cursor):
        segment = RoadSegment("s1", [(0.0, 0.0), (0.0, 0.001)], [("a", 0.0), ("b", 1.0)])
        build = RoadGraphBuilder("demo", resolution=9).build([segment])
        cursor.fetchall.return_value = [("a",), ("b",), ("old",)]

        result = GraphLoader().replace_graph(cursor, build)

        statements = _statements(cursor)
        assert statements[0].startswith("DELETE FROM ROAD_EDGES")
        assert statements[1].startswith("MERGE INTO ROAD_CONNECTORS")
        assert "WHEN MATCHED THEN UPDATE SET REGION_ID = s.REGION_ID, LNG = s.LNG, LAT = s.LAT, HEX_ID = s.HEX_ID" in statements[1]
        assert statements[2].startswith("INSERT INTO ROAD_EDGES")
        assert result.records_loaded == 2
        assert cursor.execute.call_args_list[-1].args[1] == ["demo", "old"]

    @staticmethod
    def _build(north_lat):
        segment = RoadSegment("s1", [(0.0, 0.0), (0.0, north_lat)], [("a", 0.0), ("b", 1.0)])
        return RoadGraphBuilder("demo", resolution=9).build([segment])

    @staticmethod
    def _calls(cursor, prefix):
        return [c for c in cursor.execute.call_args_list if " ".join(c.args[0].split()).startswith(prefix)]

    def test_reingest_of_same_input_writes_same_rows(self, cursor):
        loader = GraphLoader()
        loader.replace_graph(cursor, self._build(0.001))
        loader.replace_graph(cursor, self._build(0.001))

        merges = self._calls(cursor, "MERGE INTO ROAD_CONNECTORS")
        inserts = self._calls(cursor, "INSERT INTO ROAD_EDGES")
        assert len(merges) == len(inserts) == 2
        assert merges[0].args[1] == merges[1].args[1]
        assert inserts[0].args[1] == inserts[1].args[1]

    def test_reingest_moves_connector(self, cursor):
        loader = GraphLoader()
        loader.replace_graph(cursor, self._build(0.001))
        loader.replace_graph(cursor, self._build(0.002))

        first, second = (c.args[1] for c in self._calls(cursor, "MERGE INTO ROAD_CONNECTORS"))
        # Rows are (id, region, lng, lat, hex) sorted by id: a then b
        assert second[0:2] == ["a", "demo"] and second[5:7] == ["b", "demo"]
        assert second[3] == pytest.approx(first[3])
        assert first[8] == pytest.approx(0.001)
        assert second[8] == pytest.approx(0.002)

        old_edges, new_edges = (c.args[1] for c in self._calls(cursor, "INSERT INTO ROAD_EDGES"))
        # Edge rows are (segment, from, to, length, hex)
        assert new_edges[3] == pytest.approx(2 * old_edges[3], rel=1e-3)
