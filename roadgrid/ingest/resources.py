"""
Resource-generation classification for buildings.

Each building receives exactly one resource type. Place categories are
matched against keyword lists; unmatched buildings get a hash-based fallback
that balances the per-type totals. Per-hex, per-type counts are then capped.
"""

import hashlib
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

RESOURCE_TYPES = ("food", "equipment", "energy", "materials")

# Rarest first; the earliest type wins when a category matches several lists
RESOURCE_PRIORITY = ("energy", "equipment", "materials", "food")

RESOURCE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "energy": (
        "gas_station",
        "fuel",
        "power",
        "energy",
        "electric",
        "utility",
        "solar",
        "charging",
    ),
    "equipment": (
        "hardware",
        "tool",
        "electronics",
        "automotive",
        "repair",
        "rental",
        "machinery",
        "appliance",
        "equipment",
        "sporting_goods",
    ),
    "materials": (
        "industrial",
        "factory",
        "warehouse",
        "manufacturing",
        "construction",
        "lumber",
        "building_supply",
        "recycling",
        "quarry",
    ),
    "food": (
        "restaurant",
        "cafe",
        "coffee",
        "bar",
        "food",
        "bakery",
        "grocery",
        "supermarket",
        "market",
        "farm",
        "brewery",
        "deli",
    ),
}

MATCH_BONUS = 1.0
FOOTPRINT_BONUS = 0.5
TIEBREAK_SCALE = 1e-3


def stable_hash(key: str) -> int:
    """Process-independent integer hash of a string."""
    return int(hashlib.md5(key.encode("utf-8")).hexdigest(), 16)


def primary_category(categories: Any) -> Optional[str]:
    """
    Primary place category from an Overture ``categories`` value.

    Accepts the struct form ``{"primary": ..., "alternate": [...]}`` or a
    list whose first element has that shape.
    """
    if categories is None:
        return None
    if isinstance(categories, dict):
        primary = categories.get("primary")
        return primary if isinstance(primary, str) and primary else None
    if isinstance(categories, (list, tuple)) and categories:
        return primary_category(categories[0])
    return None


def match_resource(category: Optional[str]) -> Optional[str]:
    """Resource type whose keywords appear in the category, by priority."""
    if not category:
        return None
    cat = category.lower()
    for resource_type in RESOURCE_PRIORITY:
        if any(keyword in cat for keyword in RESOURCE_KEYWORDS[resource_type]):
            return resource_type
    return None


@dataclass
class ResourceTally:
    """Running per-type building counts for the fallback balancing rule."""

    counts: Counter = field(default_factory=Counter)

    def add(self, resource_type: str) -> None:
        self.counts[resource_type] += 1

    def least_represented(self, n: int = 2) -> List[str]:
        ordered = sorted(
            RESOURCE_TYPES,
            key=lambda t: (self.counts[t], RESOURCE_PRIORITY.index(t)),
        )
        return ordered[:n]


def fallback_resource(feature_id: str, tally: ResourceTally) -> str:
    """Pick one of the two least-represented types by hashing the id."""
    candidates = tally.least_represented(2)
    return candidates[stable_hash(feature_id) % len(candidates)]


@dataclass
class BuildingCandidate:
    """A building awaiting resource assignment and cap filtering."""

    feature_id: str
    cells: Sequence[str]
    area_m2: float = 0.0
    category: Optional[str] = None
    resource_type: Optional[str] = None
    matched: bool = False
    weight: float = 0.0


def assign_resources(candidates: Iterable[BuildingCandidate]) -> ResourceTally:
    """
    Give every candidate exactly one resource type.

    Matches are tallied first; fallbacks are then assigned in id order so the
    result does not depend on input order.

    Returns:
        Final per-type tally
    """
    tally = ResourceTally()
    unmatched: List[BuildingCandidate] = []

    for candidate in candidates:
        resource_type = match_resource(candidate.category)
        if resource_type:
            candidate.resource_type = resource_type
            candidate.matched = True
            tally.add(resource_type)
        else:
            unmatched.append(candidate)

    for candidate in sorted(unmatched, key=lambda c: c.feature_id):
        candidate.resource_type = fallback_resource(candidate.feature_id, tally)
        candidate.matched = False
        tally.add(candidate.resource_type)

    return tally


def score_candidates(candidates: Sequence[BuildingCandidate]) -> None:
    """Set weight = match bonus + footprint bonus + deterministic tiebreak."""
    max_area = max((c.area_m2 for c in candidates), default=0.0)
    for c in candidates:
        footprint = c.area_m2 / max_area if max_area > 0 else 0.0
        tiebreak = (stable_hash(c.feature_id) % 1000) / 1000 * TIEBREAK_SCALE
        c.weight = (MATCH_BONUS if c.matched else 0.0) + FOOTPRINT_BONUS * footprint + tiebreak


def apply_hex_cap(
    candidates: Sequence[BuildingCandidate], cap: int
) -> Tuple[List[BuildingCandidate], List[BuildingCandidate]]:
    """
    Keep at most ``cap`` buildings per hex per resource type.

    Candidates are taken in descending weight; a building touching several
    hexes is rejected when any of them is already full for its type.

    Returns:
        (kept, rejected)
    """
    counts: Dict[Tuple[str, str], int] = {}
    kept: List[BuildingCandidate] = []
    rejected: List[BuildingCandidate] = []

    for c in sorted(candidates, key=lambda c: (-c.weight, c.feature_id)):
        keys = [(cell, c.resource_type) for cell in c.cells]
        if any(counts.get(key, 0) >= cap for key in keys):
            rejected.append(c)
            continue
        for key in keys:
            counts[key] = counts.get(key, 0) + 1
        kept.append(c)

    return kept, rejected


def resource_flags(resource_type: Optional[str]) -> Dict[str, bool]:
    """generates_<type> column values for a building."""
    return {f"generates_{t}": t == resource_type for t in RESOURCE_TYPES}
