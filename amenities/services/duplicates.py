"""
Duplicate detection: find records that are probably the same real-world
place entered twice (manual + discovered, or by two providers).

Records are bucketed by (normalized name, type, grid cell). A record is only
compared with records in its own and neighbouring cells, so the precise
haversine check never runs across the whole dataset.
"""

from __future__ import annotations

import math
import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Generic, Iterable, Optional, Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from amenities.config import get_settings
from amenities.db.models import Amenity
from amenities.enums import LifecycleState
from amenities.logging_config import logger
from amenities.services.geo import distance_km

_WHITESPACE = re.compile(r"\s+")
KM_PER_DEGREE = 111.32


class Locatable(Protocol):
    name: str
    type: object
    latitude: float
    longitude: float


T = TypeVar("T", bound=Locatable)


def normalize_name(name: Optional[str]) -> str:
    """Case-insensitive, whitespace-collapsed form of a place name."""
    return _WHITESPACE.sub(" ", (name or "").casefold()).strip()


def _type_key(value) -> str:
    return getattr(value, "value", value) or ""


@dataclass
class DuplicateGroup(Generic[T]):
    name: str
    type: object
    duplicates: list[T] = field(default_factory=list)


class _DisjointSet:
    def __init__(self, size: int):
        self.parent = list(range(size))

    def find(self, i: int) -> int:
        while self.parent[i] != i:
            self.parent[i] = self.parent[self.parent[i]]
            i = self.parent[i]
        return i

    def union(self, a: int, b: int):
        ra, rb = self.find(a), self.find(b)
        if ra != rb:
            self.parent[max(ra, rb)] = min(ra, rb)


class DuplicateDetector:
    def __init__(
        self,
        threshold_km: Optional[float] = None,
        cell_size_deg: Optional[float] = None,
    ):
        settings = get_settings()
        self.threshold_km = threshold_km if threshold_km is not None else settings.duplicate_distance_km
        self.cell_size_deg = cell_size_deg if cell_size_deg is not None else settings.duplicate_cell_size_deg

    # ── Bucketing ────────────────────────────────────────────────

    def _cell(self, latitude: float, longitude: float) -> tuple[int, int]:
        return (
            math.floor(latitude / self.cell_size_deg),
            math.floor(longitude / self.cell_size_deg),
        )

    def _neighbour_cells(self, latitude: float, longitude: float) -> Iterable[tuple[int, int]]:
        """Cells that may hold a point within the threshold of this one."""
        row, col = self._cell(latitude, longitude)
        lat_span = math.ceil(self.threshold_km / KM_PER_DEGREE / self.cell_size_deg)
        cos_lat = max(math.cos(math.radians(latitude)), 0.01)
        lon_span = math.ceil(self.threshold_km / (KM_PER_DEGREE * cos_lat) / self.cell_size_deg)
        for dr in range(-lat_span, lat_span + 1):
            for dc in range(-lon_span, lon_span + 1):
                yield (row + dr, col + dc)

    def _index(self, items: list) -> dict[tuple, list[int]]:
        buckets: dict[tuple, list[int]] = defaultdict(list)
        for i, item in enumerate(items):
            key = (normalize_name(item.name), _type_key(item.type))
            buckets[key + self._cell(item.latitude, item.longitude)].append(i)
        return buckets

    def _is_close(self, a, b) -> bool:
        return distance_km(a.latitude, a.longitude, b.latitude, b.longitude) < self.threshold_km

    def _candidates_near(self, item, buckets: dict[tuple, list[int]]) -> Iterable[int]:
        key = (normalize_name(item.name), _type_key(item.type))
        for cell in self._neighbour_cells(item.latitude, item.longitude):
            yield from buckets.get(key + cell, ())

    # ── Public API ───────────────────────────────────────────────

    def group(self, items: Iterable[T]) -> list[DuplicateGroup[T]]:
        """Clusters of two or more records within the threshold of each other."""
        items = list(items)
        buckets = self._index(items)
        clusters = _DisjointSet(len(items))

        for i, item in enumerate(items):
            for j in self._candidates_near(item, buckets):
                if j > i and self._is_close(item, items[j]):
                    clusters.union(i, j)

        members: dict[int, list[int]] = defaultdict(list)
        for i in range(len(items)):
            members[clusters.find(i)].append(i)

        groups = []
        for indexes in members.values():
            if len(indexes) < 2:
                continue
            first = items[indexes[0]]
            groups.append(
                DuplicateGroup(
                    name=first.name,
                    type=first.type,
                    duplicates=[items[i] for i in indexes],
                )
            )
        return groups

    def unique(self, items: Iterable[T]) -> list[T]:
        """Keep the first record of every duplicate cluster, preserving order."""
        items = list(items)
        kept: list[T] = []
        buckets: dict[tuple, list[int]] = defaultdict(list)

        for item in items:
            if any(self._is_close(item, kept[j]) for j in self._candidates_near(item, buckets)):
                continue
            key = (normalize_name(item.name), _type_key(item.type))
            buckets[key + self._cell(item.latitude, item.longitude)].append(len(kept))
            kept.append(item)
        return kept

    def exclude_matches(self, items: Iterable[T], existing: Iterable[Locatable]) -> list[T]:
        """Drop items that duplicate any record in ``existing``."""
        existing = list(existing)
        buckets = self._index(existing)
        return [
            item
            for item in items
            if not any(self._is_close(item, existing[j]) for j in self._candidates_near(item, buckets))
        ]

    async def find_duplicates(
        self, db: AsyncSession, county: Optional[str] = None
    ) -> list[DuplicateGroup[Amenity]]:
        """Duplicate groups among active amenities, optionally within one county."""
        stmt = select(Amenity).where(Amenity.lifecycle == LifecycleState.ACTIVE)
        if county:
            stmt = stmt.where(Amenity.county == county)
        result = await db.execute(stmt.order_by(Amenity.id))
        amenities = list(result.scalars().all())

        groups = self.group(amenities)
        logger.info(
            f"Duplicate scan: {len(amenities)} active amenities, {len(groups)} groups"
            + (f" in {county}" if county else "")
        )
        return groups
