"""
Auto-Population Service: the operational surface over discovery for keeping
amenity data fresh across the whole property portfolio.

The service is a two-state machine, IDLE and PROCESSING. Only one run can be
in PROCESSING at a time. ``emergency_stop`` clears the queue and forces IDLE;
the run in flight finishes its current property and schedules nothing more.
"""

from __future__ import annotations

import datetime
import enum
from collections import Counter
from typing import Awaitable, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from amenities.config import get_settings
from amenities.db.models import Amenity, Property
from amenities.enums import LifecycleState
from amenities.errors import ConflictError, NotFoundError
from amenities.logging_config import logger
from amenities.schemas import (
    AutoDiscoveryStats,
    AutoPopulationRunResult,
    BatchDiscoveryResult,
    DataValidationReport,
    EmergencyStopResult,
    HealthStatus,
    PropertyHookResult,
)
from amenities.services.discovery import DiscoveryOrchestrator
from amenities.services.geo import Coordinate, distance
from amenities.services.metrics import MetricsReporter

settings = get_settings()

QUEUE_CHUNK_SIZE = 5
QUEUE_BATCH_SIZE = 3
QUEUE_BATCH_DELAY_MS = 1500
QUEUE_CHUNK_PAUSE_S = 2.0


class ServiceState(str, enum.Enum):
    IDLE = "idle"
    PROCESSING = "processing"


def _run_result(batch: BatchDiscoveryResult) -> AutoPopulationRunResult:
    return AutoPopulationRunResult(
        processed=batch.processed,
        discovered=batch.total_discovered,
        saved=batch.total_saved,
        errors=batch.errors,
        stopped=batch.stopped,
    )


class AutoPopulationService:
    def __init__(
        self,
        orchestrator: DiscoveryOrchestrator,
        metrics: Optional[MetricsReporter] = None,
    ):
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.metrics = metrics or orchestrator.metrics
        self.state = ServiceState.IDLE
        self._queue: dict[int, None] = {}
        self._run_id = 0

    # ── State machine ────────────────────────────────────────────

    @property
    def is_processing(self) -> bool:
        return self.state == ServiceState.PROCESSING

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def _begin(self, label: str) -> int:
        if self.is_processing:
            raise ConflictError(f"Auto-population is already processing; cannot start {label}")
        self._run_id += 1
        self.state = ServiceState.PROCESSING
        logger.info(f"Auto-population run {self._run_id} started: {label}")
        return self._run_id

    def _finish(self, run_id: int):
        if self._run_id == run_id and self.is_processing:
            self.state = ServiceState.IDLE
            logger.info(f"Auto-population run {run_id} finished")

    def _continue_check(self, run_id: int) -> Callable[[], bool]:
        return lambda: self.is_processing and self._run_id == run_id

    async def _exclusive(
        self, label: str, job: Callable[[Callable[[], bool]], Awaitable[AutoPopulationRunResult]]
    ) -> AutoPopulationRunResult:
        run_id = self._begin(label)
        try:
            return await job(self._continue_check(run_id))
        finally:
            self._finish(run_id)

    def emergency_stop(self) -> EmergencyStopResult:
        """Clear the queue and force IDLE. Safe to call in any state."""
        cleared = len(self._queue)
        was_processing = self.is_processing
        self._queue.clear()
        self.state = ServiceState.IDLE

        logger.warning(
            f"Emergency stop triggered for auto-population service "
            f"(cleared={cleared}, was_processing={was_processing})"
        )
        self.metrics.increment("auto_population_emergency_stops")
        return EmergencyStopResult(
            state=self.state.value, cleared=cleared, was_processing=was_processing
        )

    def get_health_status(self) -> HealthStatus:
        return HealthStatus(
            state=self.state.value,
            queue_size=self.queue_size,
            is_processing=self.is_processing,
            config_status=self.orchestrator.config_status(),
        )

    # ── Reporting ────────────────────────────────────────────────

    async def get_auto_discovery_stats(
        self, db: AsyncSession, county: Optional[str] = None
    ) -> AutoDiscoveryStats:
        filters = [Amenity.lifecycle == LifecycleState.ACTIVE, Amenity.is_auto_discovered.is_(True)]
        if county:
            filters.append(Amenity.county == county)

        result = await db.execute(
            select(Amenity.source, Amenity.category, Amenity.verified, func.count(Amenity.id))
            .where(*filters)
            .group_by(Amenity.source, Amenity.category, Amenity.verified)
        )
        sources: Counter[str] = Counter()
        categories: Counter[str] = Counter()
        total = verified = 0
        for source, category, is_verified, count in result.all():
            sources[source.value] += count
            categories[category.value] += count
            total += count
            if is_verified:
                verified += count

        return AutoDiscoveryStats(
            total_auto_discovered=total,
            source_breakdown=dict(sources),
            verification_rate=round(verified / total * 100) if total else 0,
            category_counts=dict(categories),
        )

    async def validate_amenity_data(
        self, db: AsyncSession, county: Optional[str] = None
    ) -> DataValidationReport:
        """Data-quality counts over active amenities, with improvement suggestions."""
        stmt = select(Amenity.verified, Amenity.contact, Amenity.operating_hours).where(
            Amenity.lifecycle == LifecycleState.ACTIVE
        )
        if county:
            stmt = stmt.where(Amenity.county == county)
        rows = (await db.execute(stmt)).all()

        total = len(rows)
        unverified = sum(1 for verified, _, _ in rows if not verified)
        missing_contact = sum(
            1
            for _, contact, _ in rows
            if not contact or not contact.get("phone") or not contact.get("email")
        )
        missing_hours = sum(1 for _, _, hours in rows if not hours)
        duplicates = await self.store.find_duplicates(db, county)

        suggestions: list[str] = []
        if unverified > total * 0.3:
            suggestions.append(
                f"{unverified} amenities need verification ({round(unverified / total * 100)}%)"
            )
        if missing_contact > total * 0.5:
            suggestions.append(f"{missing_contact} amenities missing contact information")
        if missing_hours > total * 0.4:
            suggestions.append(f"{missing_hours} amenities missing operating hours")
        if duplicates:
            suggestions.append(f"{len(duplicates)} potential duplicate groups found")
        if total < 100 and not county:
            suggestions.append("Consider running discovery for more counties to improve coverage")

        return DataValidationReport(
            total_amenities=total,
            unverified_count=unverified,
            missing_contact_count=missing_contact,
            missing_hours_count=missing_hours,
            duplicates_count=len(duplicates),
            suggestions=suggestions,
        )

    # ── Fleet-wide runs ──────────────────────────────────────────

    def _property_query(self, county: Optional[str], max_properties: int):
        stmt = select(Property.id).where(
            Property.status == "active",
            Property.latitude.is_not(None),
            Property.longitude.is_not(None),
        )
        if county:
            stmt = stmt.where(Property.county == county)
        return stmt.order_by(Property.id).limit(max_properties)

    async def discover_missing_amenities(
        self,
        db: AsyncSession,
        county: Optional[str] = None,
        batch_size: int = 10,
        max_properties: int = 100,
    ) -> AutoPopulationRunResult:
        """Run discovery for active properties that have never had amenity data."""

        async def job(should_continue):
            stmt = self._property_query(county, max_properties).where(
                Property.amenities_refreshed_at.is_(None)
            )
            property_ids = list((await db.execute(stmt)).scalars().all())
            if not property_ids:
                logger.info("No properties found without amenities")
                return AutoPopulationRunResult()

            logger.info(f"Found {len(property_ids)} properties without amenities")
            batch = await self.orchestrator.batch_discover_property_amenities(
                db,
                property_ids,
                batch_size=batch_size,
                delay_ms=settings.batch_delay_ms,
                should_continue=should_continue,
            )
            return _run_result(batch)

        result = await self._exclusive("discover missing amenities", job)
        self.metrics.increment("auto_population_runs", kind="missing")
        return result

    async def refresh_stale_amenities(
        self,
        db: AsyncSession,
        days_old: int = 30,
        county: Optional[str] = None,
        batch_size: int = 5,
        max_properties: int = 50,
    ) -> AutoPopulationRunResult:
        """Re-run discovery for properties whose cached data predates ``days_old`` days ago."""
        cutoff = datetime.datetime.utcnow() - datetime.timedelta(days=days_old)

        async def job(should_continue):
            stmt = self._property_query(county, max_properties).where(
                Property.amenities_refreshed_at < cutoff
            )
            property_ids = list((await db.execute(stmt)).scalars().all())
            if not property_ids:
                logger.info("No properties found with stale amenities")
                return AutoPopulationRunResult()

            logger.info(
                f"Found {len(property_ids)} properties with stale amenities "
                f"(older than {days_old} days)"
            )
            batch = await self.orchestrator.batch_discover_property_amenities(
                db,
                property_ids,
                batch_size=batch_size,
                delay_ms=settings.batch_delay_ms,
                should_continue=should_continue,
            )
            return _run_result(batch)

        result = await self._exclusive("refresh stale amenities", job)
        self.metrics.increment("auto_population_runs", kind="stale")
        return result

    # ── Property lifecycle hooks ─────────────────────────────────

    def _enqueue(self, property_id: int):
        self._queue[property_id] = None
        logger.info(f"Added property {property_id} to amenity discovery queue")

    async def handle_property_created(self, db: AsyncSession, property_id: int) -> PropertyHookResult:
        prop = await db.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")
        scheduled = prop.latitude is not None and prop.longitude is not None
        if scheduled:
            self._enqueue(property_id)
        else:
            logger.info(f"Property {property_id} has no coordinates yet; discovery not scheduled")
        return PropertyHookResult(
            property_id=property_id, scheduled=scheduled, queue_size=self.queue_size
        )

    async def handle_property_location_updated(
        self,
        db: AsyncSession,
        property_id: int,
        old: Optional[Coordinate],
        new: Coordinate,
    ) -> PropertyHookResult:
        """
        Schedule re-discovery when a property moved more than the relocation
        threshold, or gained coordinates for the first time. A relocated
        property's cached snapshot is cleared before it is queued.
        """
        prop = await db.get(Property, property_id)
        if prop is None:
            raise NotFoundError(f"Property {property_id} not found")

        if old is None:
            self._enqueue(property_id)
            return PropertyHookResult(
                property_id=property_id, scheduled=True, queue_size=self.queue_size
            )

        moved_km = distance(old, new)
        scheduled = moved_km > settings.relocation_threshold_km
        if scheduled:
            prop.nearby_amenities = []
            prop.amenity_score = None
            prop.amenities_refreshed_at = None
            await self.store.commit(db, f"clear property {property_id} amenity cache")
            logger.info(f"Cleared amenities cache for property {property_id} (moved {moved_km:.3f} km)")
            self._enqueue(property_id)
        else:
            logger.debug(f"Property {property_id} moved {moved_km:.3f} km; no re-discovery")

        return PropertyHookResult(
            property_id=property_id,
            scheduled=scheduled,
            distance_moved_km=round(moved_km, 4),
            queue_size=self.queue_size,
        )

    async def process_queue(self, db: AsyncSession) -> AutoPopulationRunResult:
        """Drain the queue in small chunks until it is empty or an emergency stop lands."""

        async def job(should_continue):
            total = AutoPopulationRunResult()
            while self._queue and should_continue():
                chunk = list(self._queue)[:QUEUE_CHUNK_SIZE]
                for property_id in chunk:
                    self._queue.pop(property_id, None)

                logger.info(f"Processing amenity discovery for {len(chunk)} queued properties")
                batch = await self.orchestrator.batch_discover_property_amenities(
                    db,
                    chunk,
                    batch_size=QUEUE_BATCH_SIZE,
                    delay_ms=QUEUE_BATCH_DELAY_MS,
                    should_continue=should_continue,
                )
                total.processed += batch.processed
                total.discovered += batch.total_discovered
                total.saved += batch.total_saved
                total.errors.extend(batch.errors)
                if batch.stopped:
                    total.stopped = True
                    break
                if self._queue:
                    await self.orchestrator.sleep(QUEUE_CHUNK_PAUSE_S)

            if not should_continue():
                total.stopped = True
            return total

        return await self._exclusive("process queue", job)
