"""
Amenity Scoring Engine: a 0-100 "livability" figure for a coordinate.

Each nearby amenity earns its category's points scaled by a linear distance
decay (full points at the query point, zero at the radius edge). Category
totals are capped so no single category can saturate the score, then summed
and clamped to [0, 100].

The weight table is plain data. Pass another ``WeightTable`` to the engine to
change the balance without touching the logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from amenities.enums import AmenityCategory
from amenities.logging_config import logger
from amenities.schemas import AmenityScoreOut
from amenities.services.amenity_store import AmenityStore, NearbyAmenity, clamp_radius

DEFAULT_RADIUS_KM = 2.0
SCORING_LIMIT = 100


@dataclass(frozen=True)
class CategoryWeight:
    points_per_amenity: float
    cap: float


WeightTable = Mapping[AmenityCategory, CategoryWeight]

# Caps sum to 100: a location saturating every category scores exactly 100.
DEFAULT_WEIGHTS: WeightTable = {
    AmenityCategory.EDUCATION: CategoryWeight(points_per_amenity=7.5, cap=15),
    AmenityCategory.HEALTHCARE: CategoryWeight(points_per_amenity=7.5, cap=15),
    AmenityCategory.TRANSPORT: CategoryWeight(points_per_amenity=7.5, cap=15),
    AmenityCategory.SECURITY: CategoryWeight(points_per_amenity=5.0, cap=8),
    AmenityCategory.BANKING: CategoryWeight(points_per_amenity=5.0, cap=8),
    AmenityCategory.SHOPPING: CategoryWeight(points_per_amenity=5.0, cap=8),
    AmenityCategory.UTILITIES: CategoryWeight(points_per_amenity=3.0, cap=6),
    AmenityCategory.FOOD: CategoryWeight(points_per_amenity=2.5, cap=5),
    AmenityCategory.ENTERTAINMENT: CategoryWeight(points_per_amenity=2.5, cap=5),
    AmenityCategory.RELIGIOUS: CategoryWeight(points_per_amenity=2.5, cap=5),
    AmenityCategory.GOVERNMENT: CategoryWeight(points_per_amenity=2.5, cap=5),
    AmenityCategory.SPORTS: CategoryWeight(points_per_amenity=2.5, cap=5),
}


def distance_decay(distance_km: float, radius_km: float) -> float:
    """1.0 at the centre, falling linearly to 0.0 at ``radius_km``."""
    if radius_km <= 0:
        return 0.0
    return max(0.0, 1.0 - distance_km / radius_km)


class AmenityScoringEngine:
    """
    Scores a location from the amenities around it.

    Dimensions are the amenity categories. Each amenity contributes
    ``points_per_amenity * decay`` to its category; a category contributes at
    most its ``cap`` to the total.
    """

    def __init__(self, store: AmenityStore, weights: Optional[WeightTable] = None):
        self.store = store
        self.weights = dict(weights or DEFAULT_WEIGHTS)

    # ── Pure scoring ─────────────────────────────────────────────

    def score_amenities(
        self, nearby: list[NearbyAmenity], radius_km: float = DEFAULT_RADIUS_KM
    ) -> AmenityScoreOut:
        if not nearby:
            return AmenityScoreOut(score=0, breakdown={}, total_amenities=0)

        raw: dict[AmenityCategory, float] = {}
        for item in nearby:
            weight = self.weights.get(item.amenity.category)
            if weight is None:
                continue
            points = weight.points_per_amenity * distance_decay(item.distance, radius_km)
            raw[item.amenity.category] = raw.get(item.amenity.category, 0.0) + points

        capped = sum(min(points, self.weights[category].cap) for category, points in raw.items())
        score = int(round(min(100.0, max(0.0, capped))))

        return AmenityScoreOut(
            score=score,
            breakdown={category.value: round(points, 2) for category, points in raw.items()},
            total_amenities=len(nearby),
        )

    # ── Live scoring ─────────────────────────────────────────────

    async def score_location(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        radius_km: float = DEFAULT_RADIUS_KM,
    ) -> AmenityScoreOut:
        """Score a coordinate from a fresh proximity query."""
        radius_km = clamp_radius(radius_km)
        nearby = await self.store.find_nearby(
            db, latitude, longitude, radius_km, limit=SCORING_LIMIT
        )
        result = self.score_amenities(nearby, radius_km)
        logger.debug(
            f"Scored ({latitude:.5f}, {longitude:.5f}) r={radius_km}km: "
            f"{result.score} from {result.total_amenities} amenities"
        )
        return result
