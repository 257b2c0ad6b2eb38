"""
FastAPI router for amenities: proximity queries and scoring, manual
curation and moderation, discovery, and the auto-population control surface.

Handlers stay thin: they translate the request into a service call and the
result into a response model. Domain errors propagate to the exception
handlers registered in ``amenities.main``.
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from amenities.db.models import Property
from amenities.db.session import async_session_factory, get_db
from amenities.enums import AmenityCategory, AmenitySource, AmenityType, ApprovalStatus
from amenities.errors import NotFoundError, ValidationError
from amenities.logging_config import logger
from amenities.schemas import (
    AmenityCreate,
    AmenityMetadata,
    AmenityOut,
    AmenityPage,
    AmenityScoreOut,
    AmenityUpdate,
    ApprovalStatsOut,
    ApproveRequest,
    AreaStatsOut,
    AutoDiscoveryStats,
    AutoPopulationRunResult,
    BatchDiscoverRequest,
    BatchDiscoveryResult,
    BulkApproveRequest,
    BulkApproveResult,
    BulkImportResult,
    CountyDiscoverRequest,
    CountyDiscoveryResult,
    DataValidationReport,
    DiscoverMissingRequest,
    DiscoverRequest,
    DiscoveryConfigOut,
    DiscoveryResult,
    DuplicateGroupOut,
    EmergencyStopResult,
    GroupedAmenitiesOut,
    HealthStatus,
    NearbyAmenityOut,
    PropertyDiscoverRequest,
    PropertyDiscoveryResult,
    PropertyHookResult,
    PropertyMovedRequest,
    RefreshStaleRequest,
    RejectRequest,
    VerificationStatsOut,
    VerifyRequest,
)
from amenities.services.amenity_store import AmenityStore, NearbyAmenity
from amenities.services.auto_population import AutoPopulationService
from amenities.services.discovery import DiscoveryOrchestrator
from amenities.services.geo import Coordinate
from amenities.services.metrics import LoggingMetrics
from amenities.services.scoring import AmenityScoringEngine

router = APIRouter()

# ── Singleton service instances ──────────────────────────────────
_metrics = LoggingMetrics()
_store = AmenityStore(metrics=_metrics)
_scoring = AmenityScoringEngine(_store)
_orchestrator = DiscoveryOrchestrator(_store, scoring=_scoring, metrics=_metrics)
_auto_population = AutoPopulationService(_orchestrator, metrics=_metrics)

PROPERTY_VIEW_RADIUS_KM = 2.0
PROPERTY_VIEW_PER_CATEGORY = 5


# ── Background queue processing ──────────────────────────────────

async def _background_process_queue():
    """Drain the discovery queue on its own session. Does nothing while a run is active."""
    if _auto_population.is_processing or not _auto_population.queue_size:
        logger.debug("Background: discovery queue drain skipped")
        return

    async with async_session_factory() as db:
        try:
            result = await _auto_population.process_queue(db)
            logger.info(
                f"Background: discovery queue drained, {result.processed} properties processed"
            )
        except Exception as exc:
            logger.error(f"Background queue processing failed: {exc}")


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Resolved identity forwarded by the upstream auth layer."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def _nearby_out(item: NearbyAmenity) -> NearbyAmenityOut:
    return NearbyAmenityOut(
        **AmenityOut.model_validate(item.amenity).model_dump(),
        distance=round(item.distance, 3),
        walking_time=item.walking_time,
        driving_time=item.driving_time,
    )


def _grouped_out(groups: dict) -> list[GroupedAmenitiesOut]:
    return [
        GroupedAmenitiesOut(
            category=category,
            count=len(items),
            amenities=[_nearby_out(i) for i in items],
        )
        for category, items in groups.items()
    ]


# ── Reference data ───────────────────────────────────────────────

@router.get("/metadata", response_model=AmenityMetadata)
async def amenity_metadata():
    """All categories, all types, and which types belong to which category."""
    return _store.get_metadata()


# ── Proximity & scoring ──────────────────────────────────────────

@router.get("/nearby", response_model=list[NearbyAmenityOut])
async def nearby_amenities(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: float = Query(2.0, ge=0.1, le=50, description="Kilometers"),
    categories: Optional[list[AmenityCategory]] = Query(None),
    types: Optional[list[AmenityType]] = Query(None),
    verified: Optional[bool] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    nearby = await _store.find_nearby(
        db, latitude, longitude, radius,
        categories=categories, types=types, verified=verified, limit=limit,
    )
    return [_nearby_out(item) for item in nearby]


@router.get("/nearby/grouped", response_model=list[GroupedAmenitiesOut])
async def nearby_amenities_grouped(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: float = Query(2.0, ge=0.1, le=50),
    categories: Optional[list[AmenityCategory]] = Query(None),
    verified: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    groups = await _store.find_nearby_grouped(
        db, latitude, longitude, radius, categories=categories, verified=verified
    )
    return _grouped_out(groups)


@router.get("/score", response_model=AmenityScoreOut)
async def amenity_score(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius: float = Query(2.0, ge=0.1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """0-100 livability score with a per-category breakdown."""
    return await _scoring.score_location(db, latitude, longitude, radius)


# ── Search & listing ─────────────────────────────────────────────

@router.get("/search", response_model=list[AmenityOut])
async def search_amenities(
    q: str = Query(..., min_length=1, max_length=200),
    county: Optional[str] = Query(None),
    categories: Optional[list[AmenityCategory]] = Query(None),
    types: Optional[list[AmenityType]] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    amenities = await _store.search_by_text(
        db, q, county=county, categories=categories, types=types, limit=limit, offset=offset
    )
    return [AmenityOut.model_validate(a) for a in amenities]


@router.get("/county/{county}", response_model=list[AmenityOut])
async def amenities_by_county(
    county: str,
    category: Optional[AmenityCategory] = Query(None),
    verified: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    amenities = await _store.get_by_county(
        db, county, category=category, verified=verified, limit=limit, offset=offset
    )
    return [AmenityOut.model_validate(a) for a in amenities]


@router.get("/property/{property_id}", response_model=list[GroupedAmenitiesOut])
async def property_amenities(property_id: int, db: AsyncSession = Depends(get_db)):
    """Amenities around a property, grouped by category, a few per category."""
    prop = await db.get(Property, property_id)
    if prop is None:
        raise NotFoundError(f"Property {property_id} not found")
    if prop.latitude is None or prop.longitude is None:
        raise ValidationError(f"Property {property_id} has no coordinates")

    groups = await _store.find_nearby_grouped(
        db,
        prop.latitude,
        prop.longitude,
        PROPERTY_VIEW_RADIUS_KM,
        per_category=PROPERTY_VIEW_PER_CATEGORY,
    )
    return _grouped_out(groups)


# ── Statistics ───────────────────────────────────────────────────

@router.get("/stats/area", response_model=AreaStatsOut)
async def area_stats(
    county: str = Query(..., min_length=1),
    ward: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await _store.get_area_stats(db, county, ward)


@router.get("/stats/verification", response_model=VerificationStatsOut)
async def verification_stats(
    county: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _store.get_verification_stats(db, county)


@router.get("/stats/approval", response_model=ApprovalStatsOut)
async def approval_stats(
    county: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _store.get_approval_stats(db, county)


# ── Moderation queues ────────────────────────────────────────────

@router.get("/pending", response_model=AmenityPage)
async def pending_amenities(
    county: Optional[str] = Query(None),
    source: Optional[AmenitySource] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _store.get_pending(db, county=county, source=source, limit=limit, offset=offset)


@router.get("/by-discovery-status", response_model=AmenityPage)
async def amenities_by_discovery_status(
    approval_status: Optional[ApprovalStatus] = Query(None),
    source: Optional[AmenitySource] = Query(None),
    is_auto_discovered: Optional[bool] = Query(None),
    verified: Optional[bool] = Query(None),
    county: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _store.get_by_discovery_status(
        db,
        approval_status=approval_status,
        source=source,
        is_auto_discovered=is_auto_discovered,
        verified=verified,
        county=county,
        limit=limit,
        offset=offset,
    )


@router.get("/duplicates", response_model=list[DuplicateGroupOut])
async def duplicate_amenities(
    county: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    groups = await _store.find_duplicates(db, county)
    return [
        DuplicateGroupOut(
            name=g.name,
            type=g.type,
            duplicates=[AmenityOut.model_validate(a) for a in g.duplicates],
        )
        for g in groups
    ]


@router.post("/bulk-approve", response_model=BulkApproveResult)
async def bulk_approve(
    request: BulkApproveRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _store.bulk_approve(db, request.amenity_ids, user_id)


@router.post("/bulk-import", response_model=BulkImportResult)
async def bulk_import(
    records: list[dict] = Body(..., max_length=1000),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Create many manual amenities; invalid records are reported, not fatal."""
    return await _store.bulk_import(db, records, user_id)


# ── Discovery ────────────────────────────────────────────────────

@router.get("/discover/config", response_model=DiscoveryConfigOut)
async def discovery_config():
    return _orchestrator.get_config()


@router.post("/discover", response_model=DiscoveryResult)
async def discover_amenities(
    request: DiscoverRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _orchestrator.discover_nearby(
        db,
        request.latitude,
        request.longitude,
        request.radius,
        sources=request.sources,
        auto_save=request.auto_save,
        skip_existing=request.skip_existing,
    )


@router.post("/discover/property/{property_id}", response_model=PropertyDiscoveryResult)
async def discover_property_amenities(
    property_id: int,
    request: Optional[PropertyDiscoverRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    request = request or PropertyDiscoverRequest()
    return await _orchestrator.discover_property_amenities(
        db,
        property_id,
        request.radius,
        auto_save=request.auto_save,
        update_property_cache=request.update_property_cache,
    )


@router.post("/discover/batch", response_model=BatchDiscoveryResult)
async def batch_discover(
    request: BatchDiscoverRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _orchestrator.batch_discover_property_amenities(
        db,
        request.property_ids,
        request.radius,
        batch_size=request.batch_size,
        delay_ms=request.delay_ms,
    )


@router.post("/discover/county/{county}", response_model=CountyDiscoveryResult)
async def discover_county(
    county: str,
    request: Optional[CountyDiscoverRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    request = request or CountyDiscoverRequest()
    return await _orchestrator.discover_county_amenities(
        db, county, request.radius, batch_size=request.batch_size, delay_ms=request.delay_ms
    )


# ── Auto-population ──────────────────────────────────────────────

@router.get("/auto-population/status", response_model=HealthStatus)
async def auto_population_status(user_id: str = Depends(get_current_user_id)):
    return _auto_population.get_health_status()


@router.get("/auto-population/stats", response_model=AutoDiscoveryStats)
async def auto_population_stats(
    county: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _auto_population.get_auto_discovery_stats(db, county)


@router.get("/auto-population/validate", response_model=DataValidationReport)
async def auto_population_validate(
    county: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _auto_population.validate_amenity_data(db, county)


@router.post("/auto-population/discover-missing", response_model=AutoPopulationRunResult)
async def auto_population_discover_missing(
    request: Optional[DiscoverMissingRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    request = request or DiscoverMissingRequest()
    return await _auto_population.discover_missing_amenities(
        db,
        county=request.county,
        batch_size=request.batch_size,
        max_properties=request.max_properties,
    )


@router.post("/auto-population/refresh-stale", response_model=AutoPopulationRunResult)
async def auto_population_refresh_stale(
    request: Optional[RefreshStaleRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    request = request or RefreshStaleRequest()
    return await _auto_population.refresh_stale_amenities(
        db,
        days_old=request.days_old,
        county=request.county,
        batch_size=request.batch_size,
        max_properties=request.max_properties,
    )


@router.post("/auto-population/process-queue", response_model=AutoPopulationRunResult)
async def auto_population_process_queue(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return await _auto_population.process_queue(db)


@router.post("/auto-population/emergency-stop", response_model=EmergencyStopResult)
async def auto_population_emergency_stop(user_id: str = Depends(get_current_user_id)):
    return _auto_population.emergency_stop()


@router.post("/auto-population/property-created/{property_id}", response_model=PropertyHookResult)
async def auto_population_property_created(
    property_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    result = await _auto_population.handle_property_created(db, property_id)
    if result.scheduled:
        background_tasks.add_task(_background_process_queue)
    return result


@router.post("/auto-population/property-moved/{property_id}", response_model=PropertyHookResult)
async def auto_population_property_moved(
    property_id: int,
    request: PropertyMovedRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    old = Coordinate(request.old.latitude, request.old.longitude) if request.old else None
    new = Coordinate(request.new.latitude, request.new.longitude)
    result = await _auto_population.handle_property_location_updated(db, property_id, old, new)
    if result.scheduled:
        background_tasks.add_task(_background_process_queue)
    return result


# ── Single amenity ───────────────────────────────────────────────

@router.post("", response_model=AmenityOut, status_code=201)
async def create_amenity(
    request: AmenityCreate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Manual entry. Manual amenities are approved and verified on creation."""
    amenity = await _store.create(db, request, user_id)
    return AmenityOut.model_validate(amenity)


@router.get("/{amenity_id}", response_model=AmenityOut)
async def get_amenity(amenity_id: int, db: AsyncSession = Depends(get_db)):
    amenity = await _store.get(db, amenity_id)
    return AmenityOut.model_validate(amenity)


@router.put("/{amenity_id}", response_model=AmenityOut)
async def update_amenity(
    amenity_id: int,
    request: AmenityUpdate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    amenity = await _store.update(db, amenity_id, request, user_id)
    return AmenityOut.model_validate(amenity)


@router.delete("/{amenity_id}", response_model=AmenityOut)
async def delete_amenity(
    amenity_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    amenity = await _store.soft_delete(db, amenity_id, user_id)
    return AmenityOut.model_validate(amenity)


@router.post("/{amenity_id}/verify", response_model=AmenityOut)
async def verify_amenity(
    amenity_id: int,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    amenity = await _store.verify(db, amenity_id, user_id)
    return AmenityOut.model_validate(amenity)


@router.post("/{amenity_id}/verify-enhanced", response_model=AmenityOut)
async def verify_amenity_enhanced(
    amenity_id: int,
    request: VerifyRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    amenity = await _store.verify_with_level(db, amenity_id, user_id, request.level, request.notes)
    return AmenityOut.model_validate(amenity)


@router.post("/{amenity_id}/approve", response_model=AmenityOut)
async def approve_amenity(
    amenity_id: int,
    request: Optional[ApproveRequest] = None,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    notes = request.notes if request else None
    amenity = await _store.approve(db, amenity_id, user_id, notes)
    return AmenityOut.model_validate(amenity)


@router.post("/{amenity_id}/reject", response_model=AmenityOut)
async def reject_amenity(
    amenity_id: int,
    request: RejectRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    amenity = await _store.reject(db, amenity_id, user_id, request.reason)
    return AmenityOut.model_validate(amenity)
