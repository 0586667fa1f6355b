"""
Phase-sequenced region ingest.

Runs coverage -> roads -> buildings -> pruning -> land ratio -> rust seed ->
hub assignment -> graph build. Each phase commits in its own transaction; a
failure rolls back that phase, marks the run failed and aborts. Every write is
an upsert or delete-then-insert, so re-running from scratch is always safe.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from .common import config, get_logger, TimedLogger, get_core_connection, SnowflakeConnection
from .h3 import HexCoverage, HexCoverageGenerator, RegionBounds, distance_from_center
from .ingest import (
    FeatureIngestor,
    IngestBatch,
    OvertureDownloader,
    OvertureReader,
    SEGMENTS,
    BUILDINGS,
    PLACES,
    LAND,
    region_data_dir,
)
from .load import FeatureLoader, GraphLoader, HexCellLoader, RegionLoader
from .state import IngestRun, StateStore, create_ingest_run
from .transform import HubCandidate, RoadGraphBuilder, assign_hubs, land_ratios, rust_seeds

logger = get_logger("pipeline")

PHASES = (
    "coverage",
    "roads",
    "buildings",
    "pruning",
    "land_ratio",
    "rust_seed",
    "hub_assignment",
    "graph_build",
)


class IngestPhaseError(RuntimeError):
    """An ingest phase failed and was rolled back."""

    def __init__(self, phase: str, cause: BaseException):
        self.phase = phase
        self.cause = cause
        super().__init__(f"Ingest phase '{phase}' failed: {cause}")


class RegionIngestPipeline:
    """Ingests one region from Overture extracts into the warehouse."""

    def __init__(
        self,
        region_id: str,
        region_name: str,
        bbox: List[float],
        resolution: Optional[int] = None,
        data_dir: Optional[Path] = None,
        connection: Optional[SnowflakeConnection] = None,
        state_store: Optional[StateStore] = None,
        reader: Optional[OvertureReader] = None,
    ):
        """
        Args:
            region_id: Region identifier
            region_name: Display name
            bbox: [min_lat, min_lng, max_lat, max_lng]
            resolution: H3 resolution (defaults to configured resolution)
            data_dir: Overture extract directory for this region
            connection: Warehouse connection (defaults to the core schema)
            state_store: Run tracker (defaults to one on the same connection)
            reader: Dataset reader (defaults to the extracts under data_dir)
        """
        self.region_id = region_id
        self.region_name = region_name
        self.bbox = list(bbox)
        self.bounds = RegionBounds.from_bbox(self.bbox)
        self.resolution = config.hex.resolution if resolution is None else resolution
        self.data_dir = Path(data_dir) if data_dir else region_data_dir(region_id)
        self.connection = connection or get_core_connection()
        self.state_store = state_store or StateStore(self.connection)
        self.logger = logger

        self.regions = RegionLoader()
        self.cells = HexCellLoader()
        self.features = FeatureLoader()
        self.graph = GraphLoader()

        self.run_state: Optional[IngestRun] = None
        self.coverage: Optional[HexCoverage] = None
        self.reader = reader
        self.roads: Optional[IngestBatch] = None
        self.buildings: Optional[IngestBatch] = None
        self.kept_cells: Set[str] = set()
        self.regenerate_boundary = False

    @contextmanager
    def _phase(self, name: str):
        """Run a phase in its own transaction, recording success or failure."""
        self.run_state.start_phase(name)
        self.state_store.save_run(self.run_state)
        try:
            with self.connection.transaction(f"ingest {self.region_id}: {name}") as cursor:
                yield cursor
        except Exception as e:
            self.run_state.fail(e)
            self.state_store.save_run(self.run_state)
            raise IngestPhaseError(name, e) from e

    def _steps(self) -> List[Tuple[str, Callable]]:
        return [
            ("coverage", self.run_coverage),
            ("roads", self.run_roads),
            ("buildings", self.run_buildings),
            ("pruning", self.run_pruning),
            ("land_ratio", self.run_land_ratio),
            ("rust_seed", self.run_rust_seed),
            ("hub_assignment", self.run_hub_assignment),
            ("graph_build", self.run_graph_build),
        ]

    def run(
        self, clean: bool = False, regenerate_boundary: bool = False, download: bool = True
    ) -> IngestRun:
        """
        Execute every phase in order.

        Args:
            clean: Discard cached Overture extracts before downloading
            regenerate_boundary: Replace the stored region boundary
            download: Fetch missing extracts with the overturemaps CLI

        Returns:
            The completed IngestRun

        Raises:
            IngestPhaseError: A phase failed; earlier phases stay committed
        """
        self.run_state = create_ingest_run(self.region_id)
        self.regenerate_boundary = regenerate_boundary
        self.state_store.save_run(self.run_state)

        with TimedLogger(self.logger, f"ingest region {self.region_id}", run_id=self.run_state.run_id):
            try:
                if download:
                    OvertureDownloader(self.data_dir, self.bounds.to_xy()).ensure(clean=clean)
                if self.reader is None:
                    self.reader = OvertureReader(self.data_dir, self.bounds.to_xy())
            except Exception as e:
                self.run_state.fail(e)
                self.state_store.save_run(self.run_state)
                raise IngestPhaseError("download", e) from e

            for name, step in self._steps():
                with self._phase(name) as cursor:
                    records = step(cursor)
                self.run_state.finish_phase(name, records)
                self.state_store.save_run(self.run_state)

            self.run_state.complete()
            self.state_store.save_run(self.run_state)

        self.logger.info(
            f"Ingest complete for {self.region_id}",
            extra={"run_id": self.run_state.run_id, "phase_counts": self.run_state.phase_counts},
        )
        return self.run_state

    def _distances(self, cells: Set[str]) -> Dict[str, float]:
        center = self.coverage.centroid
        return {cell: distance_from_center(cell, center) for cell in cells}

    def run_coverage(self, cursor) -> int:
        self.coverage = HexCoverageGenerator(self.resolution).generate_coverage(self.bounds)
        self.regions.upsert_region(
            cursor,
            self.region_id,
            self.region_name,
            self.bbox,
            self.coverage,
            regenerate_boundary=self.regenerate_boundary,
        )
        return len(self.coverage.cells)

    def _ingestor(self) -> FeatureIngestor:
        return FeatureIngestor(self.region_id, self.coverage)

    def run_roads(self, cursor) -> int:
        segments = self.reader.read(SEGMENTS, columns=["subtype", "class", "connectors"])
        self.roads = self._ingestor().ingest_roads(segments)
        self.cells.upsert_cells(cursor, self.region_id, self._distances(self.roads.cells))
        self.features.upsert_features(cursor, self.roads.features)
        self.features.seed_feature_state(cursor, self.roads.feature_ids)
        return len(self.roads.features)

    def run_buildings(self, cursor) -> int:
        buildings = self.reader.read(BUILDINGS)
        places = self.reader.read(PLACES, columns=["categories"]) if self.reader.has(PLACES) else None
        self.buildings = self._ingestor().ingest_buildings(buildings, places)
        self.cells.upsert_cells(cursor, self.region_id, self._distances(self.buildings.cells))
        self.features.upsert_features(cursor, self.buildings.features)
        return len(self.buildings.features)

    def run_pruning(self, cursor) -> int:
        seen = set(self.roads.feature_ids) | set(self.buildings.feature_ids)
        self.kept_cells = self.roads.cells | self.buildings.cells
        pruned = self.features.prune_features(cursor, self.region_id, seen)
        cells = self.cells.prune_cells(cursor, self.region_id, self.kept_cells)
        return pruned.records_loaded + cells.records_loaded

    def run_land_ratio(self, cursor) -> int:
        land = None
        if self.reader.has(LAND):
            land = list(self.reader.read(LAND)["geometry"])
        else:
            self.logger.info("No land dataset; every cell gets land ratio 1.0")
        ratios = land_ratios(self.kept_cells, land)
        return self.cells.update_land_ratios(cursor, ratios).records_loaded

    def run_rust_seed(self, cursor) -> int:
        seeds = rust_seeds(self._distances(self.kept_cells))
        return self.cells.seed_rust(cursor, seeds).records_loaded

    def run_hub_assignment(self, cursor) -> int:
        candidates = [
            HubCandidate(
                feature_id=f.feature_id,
                center=((f.bbox[0] + f.bbox[2]) / 2, (f.bbox[1] + f.bbox[3]) / 2),
                area_m2=f.area_m2 or 0.0,
                cells=f.cells,
            )
            for f in self.buildings.features
        ]
        hubs = assign_hubs(candidates)
        return self.cells.replace_hubs(cursor, self.region_id, hubs).records_loaded

    def run_graph_build(self, cursor) -> int:
        live = self.features.fetch_feature_ids(cursor, self.region_id, "road")
        build = RoadGraphBuilder(self.region_id, self.resolution).build(
            self.roads.segments, live_segment_ids=live
        )
        self.graph.replace_graph(cursor, build)
        return len(build.edges)
