"""
Discovery Orchestrator: ask one or more providers what is around a point,
merge their answers, drop what we already know, and optionally save the rest.

Provider calls for one location run concurrently, each under a hard timeout.
A failing provider is logged and counted, never fatal: the caller gets
whatever the other providers returned.

Batch runs share one database session, so properties inside a batch are
processed one after another; batches are separated by a delay to respect
provider rate limits.
"""

from __future__ import annotations

import asyncio
import datetime
import time
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from amenities.config import get_settings
from amenities.db.models import Property
from amenities.enums import DiscoveryProvider
from amenities.errors import (
    AmenityError,
    ExternalProviderError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from amenities.logging_config import logger
from amenities.schemas import (
    MAX_DISCOVERY_RADIUS_M,
    MIN_DISCOVERY_RADIUS_M,
    AdapterConfigStatus,
    BatchDiscoveryResult,
    CountyDiscoveryResult,
    DiscoveryCandidate,
    DiscoveryConfigOut,
    DiscoveryResult,
    PropertyDiscoveryResult,
)
from amenities.services.amenity_store import AmenityStore
from amenities.services.discovery_adapters import DiscoveryAdapter
from amenities.services.duplicates import DuplicateDetector
from amenities.services.geo import Coordinate, bounding_box, is_valid_coordinate
from amenities.services.metrics import MetricsReporter
from amenities.services.osm_client import OverpassAdapter
from amenities.services.places_client import GooglePlacesAdapter
from amenities.services.scoring import AmenityScoringEngine

settings = get_settings()

Sleep = Callable[[float], Awaitable[None]]
ShouldContinue = Callable[[], bool]

PROPERTY_CACHE_LIMIT = 50


def default_adapters() -> dict[DiscoveryProvider, DiscoveryAdapter]:
    return {
        DiscoveryProvider.GOOGLE: GooglePlacesAdapter(),
        DiscoveryProvider.OSM: OverpassAdapter(),
    }


def _parse_sources(
    sources: Optional[Iterable[Union[str, DiscoveryProvider]]]
) -> list[DiscoveryProvider]:
    if sources is None:
        return list(DiscoveryProvider)
    parsed: list[DiscoveryProvider] = []
    for source in sources:
        try:
            provider = DiscoveryProvider(source)
        except ValueError:
            raise ValidationError(f"Unknown discovery source: {source!r}") from None
        if provider not in parsed:
            parsed.append(provider)
    if not parsed:
        raise ValidationError("At least one discovery source is required")
    return parsed


class DiscoveryOrchestrator:
    def __init__(
        self,
        store: AmenityStore,
        adapters: Optional[dict[DiscoveryProvider, DiscoveryAdapter]] = None,
        scoring: Optional[AmenityScoringEngine] = None,
        detector: Optional[DuplicateDetector] = None,
        metrics: Optional[MetricsReporter] = None,
        sleep: Sleep = asyncio.sleep,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.adapters = adapters if adapters is not None else default_adapters()
        self.scoring = scoring or AmenityScoringEngine(store)
        self.detector = detector or store.detector
        self.metrics = metrics or store.metrics
        self.sleep = sleep
        self.timeout = timeout if timeout is not None else settings.discovery_timeout_seconds

    # ── Configuration ────────────────────────────────────────────

    def _configured(self, provider: DiscoveryProvider) -> bool:
        adapter = self.adapters.get(provider)
        return adapter is not None and adapter.is_configured

    def config_status(self) -> AdapterConfigStatus:
        return AdapterConfigStatus(
            google_places_configured=self._configured(DiscoveryProvider.GOOGLE),
            osm_enabled=self._configured(DiscoveryProvider.OSM),
        )

    def get_config(self) -> DiscoveryConfigOut:
        status = self.config_status()
        return DiscoveryConfigOut(
            google_places_configured=status.google_places_configured,
            osm_enabled=status.osm_enabled,
            min_radius_m=MIN_DISCOVERY_RADIUS_M,
            max_radius_m=MAX_DISCOVERY_RADIUS_M,
            default_radius_m=settings.default_discovery_radius_m,
        )

    async def close(self):
        for adapter in self.adapters.values():
            await adapter.close()

    # ── Single location ──────────────────────────────────────────

    async def _run_adapter(
        self, provider: DiscoveryProvider, latitude: float, longitude: float, radius_m: int
    ) -> tuple[DiscoveryProvider, list[DiscoveryCandidate], Optional[str]]:
        adapter = self.adapters.get(provider)
        if adapter is None:
            return provider, [], f"{provider.value}: no adapter registered"

        started = time.monotonic()
        try:
            candidates = await asyncio.wait_for(
                adapter.discover_near(latitude, longitude, radius_m), timeout=self.timeout
            )
        except ExternalProviderError as exc:
            error = str(exc)
        except asyncio.TimeoutError:
            error = f"{provider.value}: timed out after {self.timeout:g}s"
        except httpx.HTTPError as exc:
            error = f"{provider.value}: {type(exc).__name__}: {exc}"
        except Exception as exc:
            logger.exception(f"Discovery source {provider.value} raised unexpectedly")
            error = f"{provider.value}: unexpected {type(exc).__name__}: {exc}"
        else:
            self.metrics.observe(
                "discovery_adapter_seconds", time.monotonic() - started, provider=provider.value
            )
            self.metrics.increment("discovery_candidates", len(candidates), provider=provider.value)
            return provider, candidates, None

        logger.warning(f"Discovery source failed: {error}")
        self.metrics.increment("discovery_adapter_failures", provider=provider.value)
        return provider, [], error

    async def _save_candidates(
        self, db: AsyncSession, candidates: list[DiscoveryCandidate]
    ) -> tuple[int, list[str]]:
        saved = 0
        errors: list[str] = []
        for candidate in candidates:
            try:
                async with db.begin_nested():
                    await self.store.create_discovered(db, candidate, commit=False)
                saved += 1
            except (ValidationError, PersistenceError) as exc:
                errors.append(f"save '{candidate.name}': {exc}")
                logger.warning(f"Could not save discovered amenity '{candidate.name}': {exc}")
        await self.store.commit(db, "save discovered amenities")
        return saved, errors

    async def discover_nearby(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        radius_m: Optional[int] = None,
        sources: Optional[Iterable[Union[str, DiscoveryProvider]]] = None,
        auto_save: bool = False,
        skip_existing: bool = True,
    ) -> DiscoveryResult:
        """
        Query the requested providers around a point.

        With ``auto_save`` off nothing is written. ``errors`` counts failed
        providers plus candidates that could not be saved.
        """
        if not is_valid_coordinate(latitude, longitude):
            raise ValidationError(f"Invalid coordinates: ({latitude}, {longitude})")
        radius_m = settings.default_discovery_radius_m if radius_m is None else radius_m
        if not MIN_DISCOVERY_RADIUS_M <= radius_m <= MAX_DISCOVERY_RADIUS_M:
            raise ValidationError(
                f"Radius must be between {MIN_DISCOVERY_RADIUS_M} and "
                f"{MAX_DISCOVERY_RADIUS_M} meters, got {radius_m}"
            )
        providers = _parse_sources(sources)

        logger.info(
            f"Discovery at ({latitude:.5f}, {longitude:.5f}) r={radius_m}m "
            f"sources={[p.value for p in providers]} auto_save={auto_save}"
        )
        outcomes = await asyncio.gather(
            *(self._run_adapter(p, latitude, longitude, radius_m) for p in providers)
        )

        answered: list[str] = []
        failed: list[str] = []
        error_details: list[str] = []
        merged: list[DiscoveryCandidate] = []
        for provider, candidates, error in outcomes:
            if error is None:
                answered.append(provider.value)
                merged.extend(candidates)
            else:
                failed.append(provider.value)
                error_details.append(error)

        candidates = self.detector.unique(merged)
        if skip_existing and candidates:
            box = bounding_box(
                Coordinate(latitude, longitude),
                radius_m / 1000 + self.detector.threshold_km,
            )
            existing = await self.store.find_in_box(db, box)
            candidates = self.detector.exclude_matches(candidates, existing)

        saved = 0
        if auto_save and candidates:
            saved, save_errors = await self._save_candidates(db, candidates)
            error_details.extend(save_errors)

        logger.info(
            f"Discovery done: {len(merged)} raw, {len(candidates)} new, {saved} saved, "
            f"{len(error_details)} errors"
        )
        self.metrics.increment("discovery_runs")
        return DiscoveryResult(
            discovered=candidates,
            saved=saved,
            errors=len(error_details),
            sources=answered,
            failed_sources=failed,
            error_details=error_details,
        )

    # ── Properties ───────────────────────────────────────────────

    async def _get_property(self, db: AsyncSession, property_id: int) -> Property:
        prop = await db.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        if prop.latitude is None or prop.longitude is None:
            raise ValidationError(f"Property {property_id} has no coordinates")
        return prop

    async def refresh_property_cache(
        self, db: AsyncSession, prop: Property, radius_km: float
    ):
        """Rewrite the property's nearby-amenities snapshot and score from live data."""
        nearby = await self.store.find_nearby(
            db, prop.latitude, prop.longitude, radius_km, limit=PROPERTY_CACHE_LIMIT
        )
        score = self.scoring.score_amenities(nearby, radius_km)
        prop.nearby_amenities = [
            {
                "id": item.amenity.id,
                "name": item.amenity.name,
                "type": item.amenity.type.value,
                "category": item.amenity.category.value,
                "distance": round(item.distance, 3),
                "walking_time": item.walking_time,
                "driving_time": item.driving_time,
            }
            for item in nearby
        ]
        prop.amenity_score = score.score
        prop.amenities_refreshed_at = datetime.datetime.utcnow()
        await self.store.commit(db, f"update property {prop.id} amenity cache")

    async def discover_property_amenities(
        self,
        db: AsyncSession,
        property_id: int,
        radius_m: Optional[int] = None,
        auto_save: bool = True,
        update_property_cache: bool = True,
    ) -> PropertyDiscoveryResult:
        """Discover around a property; the cache is only rewritten when ``auto_save`` is on."""
        prop = await self._get_property(db, property_id)
        radius_m = settings.default_discovery_radius_m if radius_m is None else radius_m
        result = await self.discover_nearby(
            db, prop.latitude, prop.longitude, radius_m, auto_save=auto_save
        )

        updated = False
        if update_property_cache and auto_save:
            await self.refresh_property_cache(db, prop, radius_m / 1000)
            updated = True

        return PropertyDiscoveryResult(
            **result.model_dump(), property_id=property_id, property_updated=updated
        )

    async def batch_discover_property_amenities(
        self,
        db: AsyncSession,
        property_ids: Sequence[int],
        radius_m: Optional[int] = None,
        batch_size: int = 5,
        delay_ms: int = 1000,
        should_continue: Optional[ShouldContinue] = None,
    ) -> BatchDiscoveryResult:
        """
        Run property discovery in batches of ``batch_size`` with ``delay_ms``
        between batches. A failing property is recorded and skipped. When
        ``should_continue`` returns False no further batch starts.
        """
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1")
        result = BatchDiscoveryResult()
        ids = list(dict.fromkeys(property_ids))

        for batch_no, start in enumerate(range(0, len(ids), batch_size)):
            if batch_no and delay_ms:
                await self.sleep(delay_ms / 1000)
            if should_continue is not None and not should_continue():
                logger.warning(f"Batch discovery halted after {result.processed} properties")
                result.stopped = True
                break

            batch = ids[start:start + batch_size]
            logger.info(f"Discovery batch {batch_no + 1}: properties {batch}")
            for property_id in batch:
                try:
                    outcome = await self.discover_property_amenities(db, property_id, radius_m)
                except AmenityError as exc:
                    await db.rollback()
                    result.errors.append(f"Property {property_id}: {exc}")
                    logger.error(f"Discovery failed for property {property_id}: {exc}")
                    continue
                except Exception as exc:
                    await db.rollback()
                    result.errors.append(f"Property {property_id}: {type(exc).__name__}: {exc}")
                    logger.exception(f"Unexpected discovery failure for property {property_id}")
                    continue
                result.processed += 1
                result.total_discovered += len(outcome.discovered)
                result.total_saved += outcome.saved

        logger.info(
            f"Batch discovery: {result.processed}/{len(ids)} processed, "
            f"{result.total_saved} saved, {len(result.errors)} errors"
        )
        return result

    async def discover_county_amenities(
        self,
        db: AsyncSession,
        county: str,
        radius_m: Optional[int] = None,
        batch_size: int = 3,
        delay_ms: int = 2000,
        should_continue: Optional[ShouldContinue] = None,
    ) -> CountyDiscoveryResult:
        rows = await db.execute(
            select(Property.id)
            .where(
                Property.county == county,
                Property.status == "active",
                Property.latitude.is_not(None),
                Property.longitude.is_not(None),
            )
            .order_by(Property.id)
        )
        property_ids = list(rows.scalars().all())
        if not property_ids:
            logger.info(f"No active properties found in {county}")
            return CountyDiscoveryResult(county=county)

        logger.info(f"Starting amenity discovery for {len(property_ids)} properties in {county}")
        result = await self.batch_discover_property_amenities(
            db, property_ids, radius_m, batch_size, delay_ms, should_continue
        )
        return CountyDiscoveryResult(county=county, **result.model_dump())
