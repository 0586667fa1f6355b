"""
Snowflake loading utilities for the roadgrid routing substrate.

Provides loaders for regions, hex cells, world features and the road graph.
Every write is a MERGE upsert or a delete-then-insert keyed on stable ids, so
re-running an ingest is always safe. Loaders take an open cursor; the caller
owns the transaction.
"""

import json
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from shapely import wkt as shapely_wkt
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from ..common import (
    config,
    get_logger,
    TimedLogger,
    log_database_operation,
    execute_values,
    in_placeholders,
    chunked,
)
from ..h3 import HexCoverage
from ..ingest import WorldFeature, RESOURCE_TYPES
from ..transform import GraphBuild, HubAssignment

logger = get_logger("load.snowflake")


@dataclass
class LoadResult:
    """Result of a Snowflake load operation."""

    table_name: str
    records_loaded: int
    records_failed: int
    load_duration_ms: float
    operation_type: str  # MERGE, INSERT, DELETE, UPDATE, SKIP

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def _skip(table_name: str) -> LoadResult:
    return LoadResult(
        table_name=table_name,
        records_loaded=0,
        records_failed=0,
        load_duration_ms=0.0,
        operation_type="SKIP",
    )


def _execute_in(
    cursor, sql_template: str, ids: Sequence[str], leading: Sequence[Any] = ()
) -> int:
    """Run a statement with an ``{ids}`` IN-list marker once per chunk."""
    affected = 0
    for chunk in chunked(list(ids), config.ingest.batch_size):
        cursor.execute(
            sql_template.format(ids=in_placeholders(len(chunk))),
            list(leading) + list(chunk),
        )
        affected += cursor.rowcount or 0
    return affected


def merge_boundary(
    stored_wkt: Optional[str], coverage_polygon: BaseGeometry, regenerate: bool = False
) -> BaseGeometry:
    """
    Boundary to persist for a region.

    The stored boundary is unioned with the new coverage so it never shrinks,
    unless ``regenerate`` is set or nothing is stored yet.
    """
    if regenerate or not stored_wkt:
        return coverage_polygon
    return unary_union([shapely_wkt.loads(stored_wkt), coverage_polygon])


class RegionLoader:
    """Loader for CORE.REGIONS."""

    def __init__(self):
        self.table_name = "REGIONS"
        self.logger = logger

    def fetch_region(self, cursor, region_id: str) -> Optional[Dict[str, Any]]:
        cursor.execute(
            f"""
            SELECT ST_ASWKT(BOUNDARY), BBOX_MIN_LAT, BBOX_MIN_LNG, BBOX_MAX_LAT, BBOX_MAX_LNG
            FROM {self.table_name}
            WHERE REGION_ID = %s
            """,
            (region_id,),
        )
        row = cursor.fetchone()
        if not row:
            return None
        return {"boundary_wkt": row[0], "bbox": [float(v) for v in row[1:5]]}

    def upsert_region(
        self,
        cursor,
        region_id: str,
        region_name: str,
        bbox: List[float],
        coverage: HexCoverage,
        regenerate_boundary: bool = False,
    ) -> LoadResult:
        """
        Create or update the region row with its boundary and centroid.

        A changed bbox counts as an explicit regeneration.

        Args:
            cursor: Open cursor
            region_id: Region identifier
            region_name: Display name
            bbox: [min_lat, min_lng, max_lat, max_lng]
            coverage: Newly generated hex coverage
            regenerate_boundary: Replace rather than union the stored boundary
        """
        with TimedLogger(self.logger, f"upsert_region: {region_id}") as timer:
            existing = self.fetch_region(cursor, region_id)
            stored_wkt = existing["boundary_wkt"] if existing else None
            bbox_changed = bool(existing) and existing["bbox"] != [float(v) for v in bbox]

            boundary = merge_boundary(
                stored_wkt, coverage.polygon, regenerate_boundary or bbox_changed
            )
            centroid = boundary.centroid

            cursor.execute(
                f"""
                MERGE INTO {self.table_name} t
                USING (
                    SELECT %s AS REGION_ID, %s AS NAME,
                           %s AS BBOX_MIN_LAT, %s AS BBOX_MIN_LNG,
                           %s AS BBOX_MAX_LAT, %s AS BBOX_MAX_LNG,
                           TO_GEOGRAPHY(%s) AS BOUNDARY,
                           %s AS CENTER_LNG, %s AS CENTER_LAT
                ) s
                ON t.REGION_ID = s.REGION_ID
                WHEN MATCHED THEN UPDATE SET
                    NAME = s.NAME,
                    BBOX_MIN_LAT = s.BBOX_MIN_LAT, BBOX_MIN_LNG = s.BBOX_MIN_LNG,
                    BBOX_MAX_LAT = s.BBOX_MAX_LAT, BBOX_MAX_LNG = s.BBOX_MAX_LNG,
                    BOUNDARY = s.BOUNDARY,
                    CENTER_LNG = s.CENTER_LNG, CENTER_LAT = s.CENTER_LAT,
                    UPDATED_AT = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT (
                    REGION_ID, NAME, BBOX_MIN_LAT, BBOX_MIN_LNG, BBOX_MAX_LAT, BBOX_MAX_LNG,
                    BOUNDARY, CENTER_LNG, CENTER_LAT, UPDATED_AT
                ) VALUES (
                    s.REGION_ID, s.NAME, s.BBOX_MIN_LAT, s.BBOX_MIN_LNG, s.BBOX_MAX_LAT,
                    s.BBOX_MAX_LNG, s.BOUNDARY, s.CENTER_LNG, s.CENTER_LAT, CURRENT_TIMESTAMP()
                )
                """,
                (
                    region_id,
                    region_name,
                    *bbox,
                    boundary.wkt,
                    centroid.x,
                    centroid.y,
                ),
            )

            self.logger.info(
                f"Upserted region {region_id}",
                extra=log_database_operation(
                    operation="MERGE",
                    table=self.table_name,
                    rows_affected=1,
                    boundary_unioned=bool(stored_wkt) and not (regenerate_boundary or bbox_changed),
                ),
            )
            return LoadResult(
                table_name=self.table_name,
                records_loaded=1,
                records_failed=0,
                load_duration_ms=timer.elapsed_ms,
                operation_type="MERGE",
            )


class HexCellLoader:
    """Loader for CORE.HEX_CELLS."""

    def __init__(self):
        self.table_name = "HEX_CELLS"
        self.logger = logger

    def upsert_cells(
        self, cursor, region_id: str, distances: Mapping[str, float]
    ) -> LoadResult:
        """
        Upsert cells with their distance from the region centre.

        New cells start with no land ratio, rust level or hub.
        """
        if not distances:
            return _skip(self.table_name)

        rows = [(hex_id, region_id, float(d)) for hex_id, d in sorted(distances.items())]
        with TimedLogger(self.logger, f"upsert_cells: {len(rows)} records") as timer:
            sent = execute_values(
                cursor,
                f"""
                MERGE INTO {self.table_name} t
                USING (
                    SELECT COLUMN1 AS HEX_ID, COLUMN2 AS REGION_ID, COLUMN3 AS DISTANCE_FROM_CENTER
                    FROM VALUES {{values}}
                ) s
                ON t.HEX_ID = s.HEX_ID
                WHEN MATCHED THEN UPDATE SET
                    REGION_ID = s.REGION_ID,
                    DISTANCE_FROM_CENTER = s.DISTANCE_FROM_CENTER
                WHEN NOT MATCHED THEN INSERT (HEX_ID, REGION_ID, DISTANCE_FROM_CENTER)
                    VALUES (s.HEX_ID, s.REGION_ID, s.DISTANCE_FROM_CENTER)
                """,
                rows,
                table=self.table_name,
            )
            return LoadResult(self.table_name, sent, 0, timer.elapsed_ms, "MERGE")

    def prune_cells(self, cursor, region_id: str, keep: Set[str]) -> LoadResult:
        """Delete region cells (and their associations) not in ``keep``."""
        cursor.execute(
            f"SELECT HEX_ID FROM {self.table_name} WHERE REGION_ID = %s", (region_id,)
        )
        stale = sorted(row[0] for row in cursor.fetchall() if row[0] not in keep)
        if not stale:
            return _skip(self.table_name)

        with TimedLogger(self.logger, f"prune_cells: {len(stale)} records") as timer:
            _execute_in(
                cursor, "DELETE FROM WORLD_FEATURE_HEX_CELLS WHERE HEX_ID IN ({ids})", stale
            )
            deleted = _execute_in(
                cursor,
                f"DELETE FROM {self.table_name} WHERE REGION_ID = %s AND HEX_ID IN ({{ids}})",
                stale,
                leading=(region_id,),
            )
            self.logger.info(
                f"Pruned {len(stale)} hex cells",
                extra=log_database_operation(
                    operation="DELETE", table=self.table_name, rows_affected=deleted
                ),
            )
            return LoadResult(self.table_name, len(stale), 0, timer.elapsed_ms, "DELETE")

    def update_land_ratios(self, cursor, ratios: Mapping[str, float]) -> LoadResult:
        if not ratios:
            return _skip(self.table_name)
        rows = [(hex_id, float(r)) for hex_id, r in sorted(ratios.items())]
        with TimedLogger(self.logger, f"update_land_ratios: {len(rows)} records") as timer:
            sent = execute_values(
                cursor,
                f"""
                MERGE INTO {self.table_name} t
                USING (SELECT COLUMN1 AS HEX_ID, COLUMN2 AS LAND_RATIO FROM VALUES {{values}}) s
                ON t.HEX_ID = s.HEX_ID
                WHEN MATCHED THEN UPDATE SET LAND_RATIO = s.LAND_RATIO
                """,
                rows,
                table=self.table_name,
                operation="UPDATE",
            )
            return LoadResult(self.table_name, sent, 0, timer.elapsed_ms, "UPDATE")

    def seed_rust(self, cursor, seeds: Mapping[str, float]) -> LoadResult:
        """Set rust only where it is still NULL; existing levels are left alone."""
        if not seeds:
            return _skip(self.table_name)
        rows = [(hex_id, float(r)) for hex_id, r in sorted(seeds.items())]
        with TimedLogger(self.logger, f"seed_rust: {len(rows)} records") as timer:
            sent = execute_values(
                cursor,
                f"""
                MERGE INTO {self.table_name} t
                USING (SELECT COLUMN1 AS HEX_ID, COLUMN2 AS RUST_LEVEL FROM VALUES {{values}}) s
                ON t.HEX_ID = s.HEX_ID
                WHEN MATCHED AND t.RUST_LEVEL IS NULL THEN UPDATE SET RUST_LEVEL = s.RUST_LEVEL
                """,
                rows,
                table=self.table_name,
                operation="UPDATE",
            )
            return LoadResult(self.table_name, sent, 0, timer.elapsed_ms, "UPDATE")

    def replace_hubs(
        self, cursor, region_id: str, hubs: Mapping[str, HubAssignment]
    ) -> LoadResult:
        """Clear every hub flag and link in the region, then set the new ones."""
        with TimedLogger(self.logger, f"replace_hubs: {len(hubs)} records") as timer:
            cursor.execute(
                f"UPDATE {self.table_name} SET HUB_BUILDING_ID = NULL WHERE REGION_ID = %s",
                (region_id,),
            )
            cursor.execute(
                "UPDATE WORLD_FEATURES SET IS_HUB = FALSE WHERE REGION_ID = %s AND IS_HUB",
                (region_id,),
            )
            if not hubs:
                return LoadResult(self.table_name, 0, 0, timer.elapsed_ms, "UPDATE")

            rows = [(h.hex_id, h.feature_id) for h in sorted(hubs.values(), key=lambda h: h.hex_id)]
            execute_values(
                cursor,
                f"""
                MERGE INTO {self.table_name} t
                USING (SELECT COLUMN1 AS HEX_ID, COLUMN2 AS HUB_BUILDING_ID FROM VALUES {{values}}) s
                ON t.HEX_ID = s.HEX_ID
                WHEN MATCHED THEN UPDATE SET HUB_BUILDING_ID = s.HUB_BUILDING_ID
                """,
                rows,
                table=self.table_name,
                operation="UPDATE",
            )
            hub_ids = sorted({h.feature_id for h in hubs.values()})
            _execute_in(
                cursor,
                "UPDATE WORLD_FEATURES SET IS_HUB = TRUE WHERE FEATURE_ID IN ({ids})",
                hub_ids,
            )
            return LoadResult(self.table_name, len(rows), 0, timer.elapsed_ms, "UPDATE")


class FeatureLoader:
    """Loader for CORE.WORLD_FEATURES, its hex associations and feature state."""

    def __init__(self):
        self.table_name = "WORLD_FEATURES"
        self.logger = logger

    @staticmethod
    def _feature_row(f: WorldFeature) -> Tuple[Any, ...]:
        flags = f.flags()
        return (
            f.feature_id,
            f.feature_type,
            f.region_id,
            *f.bbox,
            f.road_class,
            f.length_meters,
            f.place_category,
            f.area_m2,
            *(flags[f"generates_{t}"] for t in RESOURCE_TYPES),
            json.dumps(f.properties, sort_keys=True),
        )

    def upsert_features(self, cursor, features: Sequence[WorldFeature]) -> LoadResult:
        """MERGE features on id and replace each one's hex associations."""
        if not features:
            return _skip(self.table_name)

        flag_cols = [f"GENERATES_{t.upper()}" for t in RESOURCE_TYPES]
        columns = [
            "FEATURE_ID",
            "FEATURE_TYPE",
            "REGION_ID",
            "BBOX_XMIN",
            "BBOX_YMIN",
            "BBOX_XMAX",
            "BBOX_YMAX",
            "ROAD_CLASS",
            "LENGTH_METERS",
            "PLACE_CATEGORY",
            "AREA_M2",
            *flag_cols,
            "PROPERTIES",
        ]
        select_list = ", ".join(
            f"PARSE_JSON(COLUMN{i}) AS {c}" if c == "PROPERTIES" else f"COLUMN{i} AS {c}"
            for i, c in enumerate(columns, start=1)
        )
        update_list = ", ".join(f"{c} = s.{c}" for c in columns[1:])
        insert_cols = ", ".join(columns)
        insert_vals = ", ".join(f"s.{c}" for c in columns)

        # One row per id so MERGE never sees duplicate source keys
        unique = list({f.feature_id: f for f in features}.values())

        with TimedLogger(self.logger, f"upsert_features: {len(unique)} records") as timer:
            sent = execute_values(
                cursor,
                f"""
                MERGE INTO {self.table_name} t
                USING (SELECT {select_list} FROM VALUES {{values}}) s
                ON t.FEATURE_ID = s.FEATURE_ID
                WHEN MATCHED THEN UPDATE SET {update_list}, UPDATED_AT = CURRENT_TIMESTAMP()
                WHEN NOT MATCHED THEN INSERT ({insert_cols}, IS_HUB, UPDATED_AT)
                    VALUES ({insert_vals}, FALSE, CURRENT_TIMESTAMP())
                """,
                [self._feature_row(f) for f in unique],
                table=self.table_name,
            )
            self.replace_associations(cursor, unique)
            return LoadResult(self.table_name, sent, 0, timer.elapsed_ms, "MERGE")

    def replace_associations(self, cursor, features: Sequence[WorldFeature]) -> int:
        """Delete-then-insert the hex links of each feature."""
        ids = [f.feature_id for f in features]
        _execute_in(cursor, "DELETE FROM WORLD_FEATURE_HEX_CELLS WHERE FEATURE_ID IN ({ids})", ids)
        rows = sorted({(f.feature_id, cell) for f in features for cell in f.cells})
        return execute_values(
            cursor,
            "INSERT INTO WORLD_FEATURE_HEX_CELLS (FEATURE_ID, HEX_ID) VALUES {values}",
            rows,
            table="WORLD_FEATURE_HEX_CELLS",
            operation="INSERT",
        )

    def seed_feature_state(self, cursor, road_ids: Iterable[str]) -> LoadResult:
        """Insert full-health state for roads that have none; never overwrite."""
        rows = [(rid,) for rid in sorted(set(road_ids))]
        if not rows:
            return _skip("FEATURE_STATE")
        with TimedLogger(self.logger, f"seed_feature_state: {len(rows)} records") as timer:
            sent = execute_values(
                cursor,
                """
                MERGE INTO FEATURE_STATE t
                USING (SELECT COLUMN1 AS FEATURE_ID FROM VALUES {values}) s
                ON t.FEATURE_ID = s.FEATURE_ID
                WHEN NOT MATCHED THEN INSERT (FEATURE_ID, HEALTH, STATUS, UPDATED_AT)
                    VALUES (s.FEATURE_ID, 100, 'normal', CURRENT_TIMESTAMP())
                """,
                rows,
                table="FEATURE_STATE",
            )
            return LoadResult("FEATURE_STATE", sent, 0, timer.elapsed_ms, "MERGE")

    def fetch_feature_ids(
        self, cursor, region_id: str, feature_type: Optional[str] = None
    ) -> Set[str]:
        if feature_type:
            cursor.execute(
                f"SELECT FEATURE_ID FROM {self.table_name} WHERE REGION_ID = %s AND FEATURE_TYPE = %s",
                (region_id, feature_type),
            )
        else:
            cursor.execute(
                f"SELECT FEATURE_ID FROM {self.table_name} WHERE REGION_ID = %s",
                (region_id,),
            )
        return {row[0] for row in cursor.fetchall()}

    def prune_features(self, cursor, region_id: str, seen_ids: Set[str]) -> LoadResult:
        """
        Drop features of the region this run did not produce.

        Unseen features lose their associations; any region feature left with
        no association is then deleted along with its state row.
        """
        with TimedLogger(self.logger, f"prune_features: {region_id}") as timer:
            unseen = sorted(self.fetch_feature_ids(cursor, region_id) - set(seen_ids))
            _execute_in(
                cursor, "DELETE FROM WORLD_FEATURE_HEX_CELLS WHERE FEATURE_ID IN ({ids})", unseen
            )
            cursor.execute(
                f"""
                DELETE FROM {self.table_name}
                WHERE REGION_ID = %s
                  AND FEATURE_ID NOT IN (SELECT FEATURE_ID FROM WORLD_FEATURE_HEX_CELLS)
                """,
                (region_id,),
            )
            deleted = cursor.rowcount or 0
            cursor.execute(
                f"""
                DELETE FROM FEATURE_STATE
                WHERE FEATURE_ID NOT IN (SELECT FEATURE_ID FROM {self.table_name})
                """
            )
            self.logger.info(
                f"Pruned {deleted} features",
                extra=log_database_operation(
                    operation="DELETE",
                    table=self.table_name,
                    rows_affected=deleted,
                    unseen=len(unseen),
                ),
            )
            return LoadResult(self.table_name, deleted, 0, timer.elapsed_ms, "DELETE")


class GraphLoader:
    """Loader for CORE.ROAD_CONNECTORS and CORE.ROAD_EDGES."""

    def __init__(self):
        self.connectors_table = "ROAD_CONNECTORS"
        self.edges_table = "ROAD_EDGES"
        self.logger = logger

    def replace_graph(self, cursor, build: GraphBuild) -> LoadResult:
        """
        Persist a graph build for its region.

        Region edges are deleted and re-inserted. Connectors are upserted, so a
        re-ingest moves a connector to its current position and region and the
        stored coordinates always agree with the new edge lengths. Connectors no
        longer referenced by the build are pruned.
        """
        region_id = build.region_id
        with TimedLogger(self.logger, f"replace_graph: {region_id}") as timer:
            cursor.execute(
                f"""
                DELETE FROM {self.edges_table}
                WHERE FROM_CONNECTOR IN (
                        SELECT CONNECTOR_ID FROM {self.connectors_table} WHERE REGION_ID = %s)
                   OR SEGMENT_ID IN (
                        SELECT FEATURE_ID FROM WORLD_FEATURES WHERE REGION_ID = %s)
                """,
                (region_id, region_id),
            )

            connector_rows = [
                (c.connector_id, region_id, c.lng, c.lat, c.hex_id)
                for c in sorted(build.connectors, key=lambda c: c.connector_id)
            ]
            execute_values(
                cursor,
                f"""
                MERGE INTO {self.connectors_table} t
                USING (
                    SELECT COLUMN1 AS CONNECTOR_ID, COLUMN2 AS REGION_ID, COLUMN3 AS LNG,
                           COLUMN4 AS LAT, COLUMN5 AS HEX_ID
                    FROM VALUES {{values}}
                ) s
                ON t.CONNECTOR_ID = s.CONNECTOR_ID
                WHEN MATCHED THEN UPDATE SET
                    REGION_ID = s.REGION_ID, LNG = s.LNG, LAT = s.LAT, HEX_ID = s.HEX_ID
                WHEN NOT MATCHED THEN INSERT (CONNECTOR_ID, REGION_ID, LNG, LAT, HEX_ID)
                    VALUES (s.CONNECTOR_ID, s.REGION_ID, s.LNG, s.LAT, s.HEX_ID)
                """,
                connector_rows,
                table=self.connectors_table,
            )

            edge_rows = sorted(
                (e.segment_id, e.from_connector, e.to_connector, e.length_meters, e.hex_id)
                for e in build.edges
            )
            inserted = execute_values(
                cursor,
                f"""
                INSERT INTO {self.edges_table}
                    (SEGMENT_ID, FROM_CONNECTOR, TO_CONNECTOR, LENGTH_METERS, HEX_ID)
                VALUES {{values}}
                """,
                edge_rows,
                table=self.edges_table,
                operation="INSERT",
            )

            self.prune_connectors(cursor, region_id, build.registry.ids())
            return LoadResult(self.edges_table, inserted, 0, timer.elapsed_ms, "INSERT")

    def prune_connectors(self, cursor, region_id: str, keep: Set[str]) -> int:
        cursor.execute(
            f"SELECT CONNECTOR_ID FROM {self.connectors_table} WHERE REGION_ID = %s",
            (region_id,),
        )
        stale = sorted(row[0] for row in cursor.fetchall() if row[0] not in keep)
        deleted = _execute_in(
            cursor,
            f"DELETE FROM {self.connectors_table} WHERE REGION_ID = %s AND CONNECTOR_ID IN ({{ids}})",
            stale,
            leading=(region_id,),
        )
        if stale:
            self.logger.info(
                f"Pruned {len(stale)} connectors",
                extra=log_database_operation(
                    operation="DELETE", table=self.connectors_table, rows_affected=deleted
                ),
            )
        return len(stale)
