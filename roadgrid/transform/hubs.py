"""
Logistics hub selection: one building per occupied hex.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from ..common import get_logger, great_circle_m, log_data_processing, Point
from ..h3 import cell_center

logger = get_logger("transform.hubs")

CLOSENESS_WEIGHT = 0.7
SIZE_WEIGHT = 0.3


@dataclass
class HubCandidate:
    feature_id: str
    center: Point
    area_m2: float
    cells: Sequence[str]


@dataclass
class HubAssignment:
    hex_id: str
    feature_id: str
    score: float


def hub_score(distance_m: float, max_distance_m: float, area_m2: float, max_area_m2: float) -> float:
    """0.7 x closeness-to-centre + 0.3 x footprint size, both hex-normalised."""
    closeness = 1 - distance_m / max_distance_m if max_distance_m > 0 else 1.0
    size = area_m2 / max_area_m2 if max_area_m2 > 0 else 0.0
    return CLOSENESS_WEIGHT * closeness + SIZE_WEIGHT * size


def assign_hubs(candidates: Iterable[HubCandidate]) -> Dict[str, HubAssignment]:
    """
    Pick the best-scoring building for every hex that has one.

    A building may win several hexes. Ties go to the lowest feature id.

    Returns:
        hex id -> HubAssignment
    """
    by_hex: Dict[str, List[HubCandidate]] = {}
    for candidate in candidates:
        for cell in candidate.cells:
            by_hex.setdefault(cell, []).append(candidate)

    hubs: Dict[str, HubAssignment] = {}
    for hex_id, members in by_hex.items():
        center = cell_center(hex_id)
        distances = [great_circle_m(center, m.center) for m in members]
        max_distance = max(distances)
        max_area = max(m.area_m2 or 0.0 for m in members)

        scored = sorted(
            (
                (hub_score(d, max_distance, m.area_m2 or 0.0, max_area), m.feature_id)
                for d, m in zip(distances, members)
            ),
            key=lambda s: (-s[0], s[1]),
        )
        best_score, best_id = scored[0]
        hubs[hex_id] = HubAssignment(hex_id=hex_id, feature_id=best_id, score=best_score)

    logger.info(
        "Assigned hub buildings",
        extra=log_data_processing(stage="assign_hubs", records_processed=len(hubs)),
    )
    return hubs
