"""
Overture Maps dataset access for region ingestion.

Resolves GeoParquet extracts on disk, downloads missing ones with the
``overturemaps`` CLI, and reads rows that lie strictly inside a region bbox
with their WKB geometry decoded to shapely objects.
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import shapely
from tenacity import (
    Retrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ..common import config, get_logger, TimedLogger, log_data_processing

logger = get_logger("ingest.overture")

BBOX_COLUMNS = ["xmin", "ymin", "xmax", "ymax"]


@dataclass(frozen=True)
class OvertureDataset:
    """One Overture theme/type pair."""

    type: str
    theme: Optional[str] = None

    @property
    def hint(self) -> str:
        return f"{self.theme}/{self.type}" if self.theme else self.type


SEGMENTS = OvertureDataset("segment", "transportation")
BUILDINGS = OvertureDataset("building", "buildings")
PLACES = OvertureDataset("place", "places")
LAND = OvertureDataset("land", "base")

REQUIRED_DATASETS = (SEGMENTS, BUILDINGS, PLACES)
ALL_DATASETS = REQUIRED_DATASETS + (LAND,)


class DownloadError(RuntimeError):
    """overturemaps exited with a non-zero status."""


def region_data_dir(region_id: str, root: Optional[str] = None) -> Path:
    return Path(root or config.ingest.data_dir) / region_id


def dataset_candidates(data_dir: Path, dataset: OvertureDataset) -> List[Path]:
    """On-disk layouts produced by the various Overture download tools."""
    candidates = []
    if dataset.theme:
        candidates.append(data_dir / f"theme={dataset.theme}" / f"type={dataset.type}")
        candidates.append(data_dir / dataset.theme / dataset.type)
    candidates.append(data_dir / f"{dataset.type}.parquet")
    candidates.append(data_dir / f"type={dataset.type}.parquet")
    candidates.append(data_dir / f"type={dataset.type}")
    candidates.append(data_dir / dataset.type)
    return candidates


def dataset_exists(data_dir: Path, dataset: OvertureDataset) -> bool:
    return any(path.exists() for path in dataset_candidates(data_dir, dataset))


def resolve_dataset_path(data_dir: Path, dataset: OvertureDataset) -> Path:
    """
    First existing file or directory for a dataset.

    Raises:
        FileNotFoundError: No candidate layout exists under data_dir
    """
    for candidate in dataset_candidates(data_dir, dataset):
        if candidate.is_dir() or candidate.is_file():
            return candidate
    raise FileNotFoundError(f"Overture data not found for {dataset.hint} in {data_dir}")


class OvertureDownloader:
    """Fetches region extracts with the overturemaps CLI."""

    def __init__(
        self,
        data_dir: Path,
        bbox: Tuple[float, float, float, float],
        attempts: Optional[int] = None,
        binary: str = "overturemaps",
    ):
        """
        Args:
            data_dir: Region data directory
            bbox: Region extent as (xmin, ymin, xmax, ymax)
            attempts: Download attempts per dataset
            binary: overturemaps executable
        """
        self.data_dir = Path(data_dir)
        self.bbox = bbox
        self.attempts = attempts or config.ingest.download_attempts
        self.binary = binary

    def ensure(
        self, datasets: Sequence[OvertureDataset] = ALL_DATASETS, clean: bool = False
    ) -> Path:
        """
        Make every dataset available locally, downloading what is missing.

        Args:
            datasets: Datasets to fetch
            clean: Discard cached extracts first

        Returns:
            The data directory
        """
        if clean and self.data_dir.exists():
            shutil.rmtree(self.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        missing = [d for d in datasets if not dataset_exists(self.data_dir, d)]
        if not missing:
            logger.info("Using cached Overture data", extra={"data_dir": str(self.data_dir)})
            return self.data_dir

        for dataset in missing:
            with TimedLogger(logger, f"download {dataset.type}", dataset=dataset.hint):
                for attempt in Retrying(
                    stop=stop_after_attempt(self.attempts),
                    wait=wait_exponential(multiplier=1, min=4, max=30),
                    retry=retry_if_exception_type(DownloadError),
                    reraise=True,
                ):
                    with attempt:
                        self._download(dataset)

        return self.data_dir

    def _download(self, dataset: OvertureDataset) -> None:
        xmin, ymin, xmax, ymax = self.bbox
        output = self.data_dir / f"{dataset.type}.parquet"
        args = [
            self.binary,
            "download",
            f"--bbox={xmin},{ymin},{xmax},{ymax}",
            "-o",
            str(output),
            "-f",
            "geoparquet",
            f"--type={dataset.type}",
        ]
        try:
            completed = subprocess.run(args, check=False)
        except FileNotFoundError:
            raise RuntimeError(
                "overturemaps binary not found. Install with: pip install overturemaps"
            )
        if completed.returncode != 0:
            raise DownloadError(
                f"overturemaps exited with code {completed.returncode} for {dataset.type}"
            )


def _expand_bbox(frame: pd.DataFrame) -> pd.DataFrame:
    """Flatten the bbox struct column into xmin/ymin/xmax/ymax floats."""
    if all(col in frame.columns for col in BBOX_COLUMNS):
        return frame
    structs = [b if isinstance(b, dict) else {} for b in frame["bbox"]]
    bounds = pd.DataFrame(structs, index=frame.index).reindex(columns=BBOX_COLUMNS)
    return pd.concat([frame.drop(columns=["bbox"]), bounds.astype(float)], axis=1)


def filter_inside_bbox(
    frame: pd.DataFrame, bbox: Tuple[float, float, float, float]
) -> pd.DataFrame:
    """Rows whose extent lies strictly inside (xmin, ymin, xmax, ymax)."""
    xmin, ymin, xmax, ymax = bbox
    mask = (
        (frame["xmin"] > xmin)
        & (frame["xmax"] < xmax)
        & (frame["ymin"] > ymin)
        & (frame["ymax"] < ymax)
    )
    return frame.loc[mask]


def decode_geometry(frame: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    """
    Decode the WKB geometry column; rows that fail to decode are dropped.

    Returns:
        Frame with shapely geometries and the number of dropped rows
    """
    raw = frame["geometry"].to_numpy()
    geoms = np.empty(len(raw), dtype=object)
    for i, value in enumerate(raw):
        if isinstance(value, (bytes, bytearray, memoryview)):
            geoms[i] = shapely.from_wkb(bytes(value), on_invalid="ignore")
        elif isinstance(value, shapely.Geometry):
            geoms[i] = value
        else:
            geoms[i] = None

    valid = np.array([g is not None and not g.is_empty for g in geoms], dtype=bool)
    decoded = frame.loc[valid].copy()
    decoded["geometry"] = geoms[valid]
    return decoded, int((~valid).sum())


class OvertureReader:
    """Reads region-filtered rows from local Overture extracts."""

    def __init__(self, data_dir: Path, bbox: Tuple[float, float, float, float]):
        self.data_dir = Path(data_dir)
        self.bbox = bbox

    def has(self, dataset: OvertureDataset) -> bool:
        return dataset_exists(self.data_dir, dataset)

    def read(
        self, dataset: OvertureDataset, columns: Optional[Iterable[str]] = None
    ) -> pd.DataFrame:
        """
        Load a dataset restricted to rows strictly inside the region bbox.

        Args:
            dataset: Dataset to read
            columns: Extra columns besides id, bbox and geometry

        Returns:
            DataFrame with id, xmin, ymin, xmax, ymax, geometry and the extra
            columns; ``attrs["records_failed"]`` counts undecodable rows
        """
        path = resolve_dataset_path(self.data_dir, dataset)
        wanted = ["id", "bbox", "geometry"] + list(columns or [])

        with TimedLogger(logger, f"read {dataset.type}", path=str(path)):
            frame = pd.read_parquet(path, columns=wanted, engine="pyarrow")
            frame = _expand_bbox(frame)
            frame = filter_inside_bbox(frame, self.bbox)
            frame, failed = decode_geometry(frame)
            frame = frame.reset_index(drop=True)
            frame.attrs["records_failed"] = failed

        logger.info(
            f"Read {len(frame)} {dataset.type} rows",
            extra=log_data_processing(
                stage=f"read_{dataset.type}",
                records_processed=len(frame),
                records_failed=failed,
            ),
        )
        return frame
