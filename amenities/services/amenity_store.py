"""
Amenity Store: persistence for amenity records and the canonical proximity
query.

Proximity works in two passes: a bounding-box filter in SQL narrows the rows,
then an exact haversine check drops the box corners and orders by distance.
Every read that feeds public results excludes soft-deleted rows.
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Sequence

import pydantic
from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from amenities.db.models import Amenity, point_geometry
from amenities.enums import (
    CATEGORY_FOR_TYPE,
    CATEGORY_TYPES,
    AmenityCategory,
    AmenitySource,
    AmenityType,
    ApprovalStatus,
    LifecycleState,
    VerificationLevel,
)
from amenities.errors import NotFoundError, PersistenceError, ValidationError
from amenities.logging_config import logger
from amenities.schemas import (
    AmenityCreate,
    AmenityMetadata,
    AmenityOut,
    AmenityPage,
    AmenityUpdate,
    ApprovalCounts,
    ApprovalStatsOut,
    AreaStatsOut,
    BulkApproveResult,
    BulkImportResult,
    DiscoveryCandidate,
    VerificationStatsOut,
    VerifiedCounts,
)
from amenities.services.duplicates import DuplicateDetector, DuplicateGroup
from amenities.services.geo import (
    BoundingBox,
    Coordinate,
    bounding_box,
    distance,
    estimate_driving_time,
    estimate_walking_time,
    is_valid_coordinate,
)
from amenities.services.metrics import LoggingMetrics, MetricsReporter

MIN_RADIUS_KM = 0.1
MAX_RADIUS_KM = 50.0
MAX_RESULTS = 200


@dataclass
class NearbyAmenity:
    amenity: Amenity
    distance: float
    walking_time: int
    driving_time: int


def resolve_category(
    amenity_type: AmenityType, category: Optional[AmenityCategory] = None
) -> AmenityCategory:
    """Category implied by ``amenity_type``; a contradicting ``category`` is rejected."""
    derived = CATEGORY_FOR_TYPE[amenity_type]
    if category is not None and category != derived:
        raise ValidationError(
            f"Type '{amenity_type.value}' belongs to category '{derived.value}', "
            f"not '{category.value}'"
        )
    return derived


def _require_coordinate(latitude: float, longitude: float):
    if not is_valid_coordinate(latitude, longitude):
        raise ValidationError(f"Invalid coordinates: ({latitude}, {longitude})")


def clamp_radius(radius_km: float) -> float:
    if radius_km is None or radius_km != radius_km:
        raise ValidationError("Radius must be a number")
    return min(MAX_RADIUS_KM, max(MIN_RADIUS_KM, float(radius_km)))


def _active():
    return Amenity.lifecycle == LifecycleState.ACTIVE


def _history_entry(user_id: str, level: VerificationLevel, notes: Optional[str]) -> dict:
    return {
        "verified_by": user_id,
        "verified_at": datetime.datetime.utcnow().isoformat(),
        "level": level.value,
        "notes": notes,
    }


def _percentage(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


class AmenityStore:
    """Amenity persistence. Every method takes the session as its first argument."""

    def __init__(
        self,
        metrics: Optional[MetricsReporter] = None,
        detector: Optional[DuplicateDetector] = None,
    ):
        self.metrics = metrics or LoggingMetrics()
        self.detector = detector or DuplicateDetector()

    # ── Session helpers ──────────────────────────────────────────

    async def commit(self, db: AsyncSession, action: str):
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error(f"Store write failed ({action}): {exc}")
            raise PersistenceError(f"Could not {action}: {exc}") from exc

    async def _flush(self, db: AsyncSession, action: str):
        try:
            await db.flush()
        except SQLAlchemyError as exc:
            logger.error(f"Store write failed ({action}): {exc}")
            raise PersistenceError(f"Could not {action}: {exc}") from exc

    async def _page(
        self, db: AsyncSession, stmt: Select, limit: int, offset: int
    ) -> AmenityPage:
        total = (
            await db.execute(select(func.count()).select_from(stmt.subquery()))
        ).scalar() or 0
        rows = await db.execute(
            stmt.order_by(Amenity.created_at.desc(), Amenity.id.desc())
            .offset(offset)
            .limit(limit)
        )
        amenities = [AmenityOut.model_validate(a) for a in rows.scalars().all()]
        return AmenityPage(
            amenities=amenities,
            total=total,
            has_more=offset + len(amenities) < total,
        )

    # ── Proximity ────────────────────────────────────────────────

    async def find_in_box(
        self, db: AsyncSession, box: BoundingBox, types: Optional[Sequence[AmenityType]] = None
    ) -> list[Amenity]:
        """All active amenities inside ``box`` regardless of moderation state."""
        stmt = select(Amenity).where(
            _active(),
            Amenity.latitude.between(box.min_lat, box.max_lat),
            Amenity.longitude.between(box.min_lon, box.max_lon),
        )
        if types:
            stmt = stmt.where(Amenity.type.in_(list(types)))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def find_nearby(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        radius_km: float = 2.0,
        categories: Optional[Sequence[AmenityCategory]] = None,
        types: Optional[Sequence[AmenityType]] = None,
        verified: Optional[bool] = None,
        limit: int = 50,
        include_unapproved: bool = False,
    ) -> list[NearbyAmenity]:
        """
        Active amenities within ``radius_km``, nearest first.

        Public callers only see approved records; ``include_unapproved`` is for
        moderators and still hides rejected ones. The radius is clamped to
        [0.1, 50] km.
        """
        _require_coordinate(latitude, longitude)
        radius_km = clamp_radius(radius_km)
        limit = min(MAX_RESULTS, max(1, limit))
        center = Coordinate(latitude, longitude)
        box = bounding_box(center, radius_km)

        stmt = select(Amenity).where(
            _active(),
            Amenity.latitude.between(box.min_lat, box.max_lat),
            Amenity.longitude.between(box.min_lon, box.max_lon),
        )
        if include_unapproved:
            stmt = stmt.where(Amenity.approval_status != ApprovalStatus.REJECTED)
        else:
            stmt = stmt.where(Amenity.approval_status == ApprovalStatus.APPROVED)
        if categories:
            stmt = stmt.where(Amenity.category.in_(list(categories)))
        if types:
            stmt = stmt.where(Amenity.type.in_(list(types)))
        if verified is not None:
            stmt = stmt.where(Amenity.verified == verified)

        result = await db.execute(stmt)
        nearby = []
        for amenity in result.scalars().all():
            km = distance(center, Coordinate(amenity.latitude, amenity.longitude))
            if km <= radius_km:
                nearby.append(
                    NearbyAmenity(
                        amenity=amenity,
                        distance=km,
                        walking_time=estimate_walking_time(km),
                        driving_time=estimate_driving_time(km),
                    )
                )
        nearby.sort(key=lambda n: (n.distance, n.amenity.id))
        return nearby[:limit]

    async def find_nearby_grouped(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        radius_km: float = 2.0,
        categories: Optional[Sequence[AmenityCategory]] = None,
        types: Optional[Sequence[AmenityType]] = None,
        verified: Optional[bool] = None,
        limit: int = MAX_RESULTS,
        per_category: Optional[int] = None,
    ) -> dict[AmenityCategory, list[NearbyAmenity]]:
        """``find_nearby`` partitioned by category, categories ordered by their nearest member."""
        nearby = await self.find_nearby(
            db, latitude, longitude, radius_km,
            categories=categories, types=types, verified=verified, limit=limit,
        )
        groups: dict[AmenityCategory, list[NearbyAmenity]] = {}
        for item in nearby:
            members = groups.setdefault(item.amenity.category, [])
            if per_category is None or len(members) < per_category:
                members.append(item)
        return groups

    # ── Lookup & search ──────────────────────────────────────────

    async def get(self, db: AsyncSession, amenity_id: int, include_deleted: bool = False) -> Amenity:
        amenity = await db.get(Amenity, amenity_id)
        if amenity is None or (not include_deleted and not amenity.is_active):
            raise NotFoundError(f"Amenity {amenity_id} not found")
        return amenity

    async def search_by_text(
        self,
        db: AsyncSession,
        query: str,
        county: Optional[str] = None,
        categories: Optional[Sequence[AmenityCategory]] = None,
        types: Optional[Sequence[AmenityType]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Amenity]:
        """Case-insensitive match of every term against name or description."""
        terms = (query or "").split()
        if not terms:
            raise ValidationError("Search query must not be empty")

        stmt = select(Amenity).where(
            _active(), Amenity.approval_status == ApprovalStatus.APPROVED
        )
        for term in terms:
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(Amenity.name.ilike(pattern), Amenity.description.ilike(pattern))
            )
        if county:
            stmt = stmt.where(Amenity.county == county)
        if categories:
            stmt = stmt.where(Amenity.category.in_(list(categories)))
        if types:
            stmt = stmt.where(Amenity.type.in_(list(types)))

        stmt = stmt.order_by(Amenity.rating.desc(), Amenity.name).offset(offset).limit(
            min(MAX_RESULTS, max(1, limit))
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_by_county(
        self,
        db: AsyncSession,
        county: str,
        category: Optional[AmenityCategory] = None,
        verified: Optional[bool] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Amenity]:
        stmt = select(Amenity).where(
            _active(),
            Amenity.approval_status == ApprovalStatus.APPROVED,
            Amenity.county == county,
        )
        if category:
            stmt = stmt.where(Amenity.category == category)
        if verified is not None:
            stmt = stmt.where(Amenity.verified == verified)
        stmt = stmt.order_by(Amenity.category, Amenity.name).offset(offset).limit(
            min(MAX_RESULTS, max(1, limit))
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_area_stats(
        self, db: AsyncSession, county: str, ward: Optional[str] = None
    ) -> AreaStatsOut:
        filters = [_active(), Amenity.county == county]
        if ward:
            filters.append(Amenity.ward == ward)

        result = await db.execute(
            select(Amenity.category, Amenity.verified, func.count(Amenity.id))
            .where(and_(*filters))
            .group_by(Amenity.category, Amenity.verified)
        )
        category_counts: dict[str, int] = defaultdict(int)
        total = verified = 0
        for category, is_verified, count in result.all():
            category_counts[category.value] += count
            total += count
            if is_verified:
                verified += count

        return AreaStatsOut(
            county=county,
            ward=ward,
            total_amenities=total,
            category_counts=dict(category_counts),
            verified_percentage=_percentage(verified, total),
        )

    # ── Mutations ────────────────────────────────────────────────

    async def create(self, db: AsyncSession, data: AmenityCreate, user_id: str) -> Amenity:
        """Manual entry: approved and basic-verified from the start."""
        coords = data.location.coordinates
        _require_coordinate(coords.latitude, coords.longitude)
        category = resolve_category(data.type, data.category)
        now = datetime.datetime.utcnow()

        amenity = Amenity(
            name=data.name.strip(),
            type=data.type,
            category=category,
            description=data.description,
            contact=data.contact.model_dump(exclude_none=True) if data.contact else None,
            operating_hours=data.operating_hours,
            rating=data.rating,
            review_count=data.review_count,
            tags=list(dict.fromkeys(data.tags)),
            source=AmenitySource.MANUAL,
            is_auto_discovered=False,
            approval_status=ApprovalStatus.APPROVED,
            approved_by=user_id,
            approved_at=now,
            verified=True,
            verification_level=VerificationLevel.BASIC,
            verified_by=user_id,
            verified_at=now,
            verification_history=[_history_entry(user_id, VerificationLevel.BASIC, "Created manually")],
            lifecycle=LifecycleState.ACTIVE,
        )
        self._apply_location(amenity, data.location)
        db.add(amenity)
        await self.commit(db, "create amenity")

        logger.info(f"Created amenity {amenity.id} '{amenity.name}' ({amenity.type.value}) by {user_id}")
        self.metrics.increment("amenity_created", source=AmenitySource.MANUAL.value)
        return amenity

    async def create_discovered(
        self, db: AsyncSession, candidate: DiscoveryCandidate, commit: bool = True
    ) -> Amenity:
        """Persist a discovery candidate as a pending, unverified record."""
        _require_coordinate(candidate.latitude, candidate.longitude)
        category = resolve_category(candidate.type, candidate.category)

        amenity = Amenity(
            name=candidate.name.strip(),
            type=candidate.type,
            category=category,
            description=candidate.description,
            country="Kenya",
            county=candidate.county,
            address_line1=candidate.address_line1,
            town=candidate.town,
            postal_code=candidate.postal_code,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            geolocation=point_geometry(candidate.latitude, candidate.longitude),
            contact=candidate.contact.model_dump(exclude_none=True) if candidate.contact else None,
            operating_hours=candidate.operating_hours or None,
            rating=candidate.rating,
            review_count=candidate.review_count,
            tags=list(dict.fromkeys(candidate.tags)),
            source=candidate.source,
            source_ref=candidate.source_ref,
            is_auto_discovered=True,
            discovered_at=datetime.datetime.utcnow(),
            approval_status=ApprovalStatus.PENDING,
            verified=False,
            verification_level=VerificationLevel.NONE,
            verification_history=[],
            lifecycle=LifecycleState.ACTIVE,
        )
        db.add(amenity)
        if commit:
            await self.commit(db, "save discovered amenity")
        else:
            await self._flush(db, "save discovered amenity")
        self.metrics.increment("amenity_created", source=candidate.source.value)
        return amenity

    @staticmethod
    def _apply_location(amenity: Amenity, location):
        amenity.country = location.country
        amenity.county = location.county
        amenity.constituency = location.constituency
        amenity.ward = location.ward
        amenity.estate = location.estate
        amenity.address_line1 = location.address.line1
        amenity.address_line2 = location.address.line2
        amenity.town = location.address.town
        amenity.postal_code = location.address.postal_code
        amenity.latitude = location.coordinates.latitude
        amenity.longitude = location.coordinates.longitude
        amenity.geolocation = point_geometry(amenity.latitude, amenity.longitude)

    async def update(
        self, db: AsyncSession, amenity_id: int, patch: AmenityUpdate, user_id: str
    ) -> Amenity:
        amenity = await self.get(db, amenity_id)
        fields = patch.model_dump(exclude_unset=True)

        if patch.location is not None:
            coords = patch.location.coordinates
            _require_coordinate(coords.latitude, coords.longitude)
            self._apply_location(amenity, patch.location)
        if patch.type is not None:
            amenity.type = patch.type
            amenity.category = resolve_category(patch.type)
        if patch.name is not None:
            amenity.name = patch.name.strip()
        if "contact" in fields:
            amenity.contact = patch.contact.model_dump(exclude_none=True) if patch.contact else None
        if "tags" in fields:
            amenity.tags = list(dict.fromkeys(patch.tags or []))
        for field in ("description", "operating_hours", "rating", "review_count"):
            if field in fields:
                setattr(amenity, field, fields[field])

        await self.commit(db, f"update amenity {amenity_id}")
        logger.info(f"Updated amenity {amenity_id} by {user_id}: {sorted(fields)}")
        return amenity

    async def soft_delete(self, db: AsyncSession, amenity_id: int, user_id: str) -> Amenity:
        amenity = await self.get(db, amenity_id)
        amenity.lifecycle = LifecycleState.DELETED
        await self.commit(db, f"delete amenity {amenity_id}")
        logger.info(f"Soft-deleted amenity {amenity_id} by {user_id}")
        self.metrics.increment("amenity_deleted")
        return amenity

    # ── Verification & moderation ────────────────────────────────

    async def verify(self, db: AsyncSession, amenity_id: int, user_id: str) -> Amenity:
        return await self.verify_with_level(db, amenity_id, user_id, VerificationLevel.BASIC)

    async def verify_with_level(
        self,
        db: AsyncSession,
        amenity_id: int,
        user_id: str,
        level: VerificationLevel,
        notes: Optional[str] = None,
    ) -> Amenity:
        """
        Record a verification. The history always gains an entry with the
        level the verifier attested; the stored level only ever rises.
        """
        amenity = await self.get(db, amenity_id)
        current = amenity.verification_level or VerificationLevel.NONE
        if level.rank > current.rank:
            amenity.verification_level = level
        elif level.rank < current.rank:
            logger.info(
                f"Amenity {amenity_id} keeps level {current.value}; "
                f"{user_id} attested lower level {level.value}"
            )

        amenity.verified = True
        amenity.verified_by = user_id
        amenity.verified_at = datetime.datetime.utcnow()
        amenity.verification_notes = notes
        amenity.verification_history = [
            *(amenity.verification_history or []),
            _history_entry(user_id, level, notes),
        ]
        await self.commit(db, f"verify amenity {amenity_id}")
        self.metrics.increment("amenity_verified", level=level.value)
        return amenity

    async def approve(
        self, db: AsyncSession, amenity_id: int, user_id: str, notes: Optional[str] = None
    ) -> Amenity:
        """Approve a record; approving an already approved record changes nothing."""
        amenity = await self.get(db, amenity_id)
        if amenity.approval_status == ApprovalStatus.APPROVED:
            logger.debug(f"Amenity {amenity_id} already approved")
            return amenity

        now = datetime.datetime.utcnow()
        amenity.approval_status = ApprovalStatus.APPROVED
        amenity.approved_by = user_id
        amenity.approved_at = now
        amenity.rejected_by = None
        amenity.rejected_at = None
        amenity.rejection_reason = None

        level = amenity.verification_level or VerificationLevel.NONE
        if level.rank < VerificationLevel.BASIC.rank:
            level = VerificationLevel.BASIC
        amenity.verified = True
        amenity.verification_level = level
        amenity.verified_by = user_id
        amenity.verified_at = now
        amenity.verification_history = [
            *(amenity.verification_history or []),
            _history_entry(user_id, level, notes or "Approved"),
        ]
        await self.commit(db, f"approve amenity {amenity_id}")

        logger.info(f"Approved amenity {amenity_id} by {user_id}")
        self.metrics.increment("amenity_approved", source=amenity.source.value)
        return amenity

    async def reject(
        self, db: AsyncSession, amenity_id: int, user_id: str, reason: str
    ) -> Amenity:
        """Reject a record. It stays stored for audit but leaves public results."""
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        amenity = await self.get(db, amenity_id)

        amenity.approval_status = ApprovalStatus.REJECTED
        amenity.rejected_by = user_id
        amenity.rejected_at = datetime.datetime.utcnow()
        amenity.rejection_reason = reason.strip()
        await self.commit(db, f"reject amenity {amenity_id}")

        logger.info(f"Rejected amenity {amenity_id} by {user_id}: {reason.strip()}")
        self.metrics.increment("amenity_rejected", source=amenity.source.value)
        return amenity

    async def bulk_approve(
        self, db: AsyncSession, amenity_ids: Sequence[int], user_id: str
    ) -> BulkApproveResult:
        approved = 0
        details: list[str] = []
        for amenity_id in amenity_ids:
            try:
                await self.approve(db, amenity_id, user_id)
                approved += 1
            except (NotFoundError, PersistenceError) as exc:
                details.append(f"{amenity_id}: {exc}")

        logger.info(f"Bulk approve by {user_id}: {approved} approved, {len(details)} errors")
        return BulkApproveResult(approved=approved, errors=len(details), error_details=details)

    async def bulk_import(
        self, db: AsyncSession, records: Sequence[dict], user_id: str
    ) -> BulkImportResult:
        """Create manual amenities from raw dicts, skipping the ones that fail."""
        created = 0
        details: list[str] = []
        for index, record in enumerate(records):
            label = record.get("name", f"#{index}") if isinstance(record, dict) else f"#{index}"
            try:
                await self.create(db, AmenityCreate.model_validate(record), user_id)
                created += 1
            except pydantic.ValidationError as exc:
                details.append(f"{label}: {exc.error_count()} validation error(s)")
            except (ValidationError, PersistenceError) as exc:
                details.append(f"{label}: {exc}")

        logger.info(f"Bulk import by {user_id}: {created} created, {len(details)} errors")
        return BulkImportResult(created=created, errors=len(details), error_details=details)

    # ── Reporting ────────────────────────────────────────────────

    async def get_pending(
        self,
        db: AsyncSession,
        county: Optional[str] = None,
        source: Optional[AmenitySource] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AmenityPage:
        return await self.get_by_discovery_status(
            db,
            approval_status=ApprovalStatus.PENDING,
            source=source,
            county=county,
            limit=limit,
            offset=offset,
        )

    async def get_by_discovery_status(
        self,
        db: AsyncSession,
        approval_status: Optional[ApprovalStatus] = None,
        source: Optional[AmenitySource] = None,
        is_auto_discovered: Optional[bool] = None,
        verified: Optional[bool] = None,
        county: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> AmenityPage:
        stmt = select(Amenity).where(_active())
        if approval_status:
            stmt = stmt.where(Amenity.approval_status == approval_status)
        if source:
            stmt = stmt.where(Amenity.source == source)
        if is_auto_discovered is not None:
            stmt = stmt.where(Amenity.is_auto_discovered == is_auto_discovered)
        if verified is not None:
            stmt = stmt.where(Amenity.verified == verified)
        if county:
            stmt = stmt.where(Amenity.county == county)
        return await self._page(db, stmt, min(MAX_RESULTS, max(1, limit)), max(0, offset))

    async def get_verification_stats(
        self, db: AsyncSession, county: Optional[str] = None
    ) -> VerificationStatsOut:
        stmt = select(
            Amenity.verification_level,
            Amenity.is_auto_discovered,
            Amenity.verified,
            func.count(Amenity.id),
        ).where(_active())
        if county:
            stmt = stmt.where(Amenity.county == county)
        result = await db.execute(
            stmt.group_by(Amenity.verification_level, Amenity.is_auto_discovered, Amenity.verified)
        )

        by_level = {level.value: 0 for level in VerificationLevel}
        auto, manual = VerifiedCounts(), VerifiedCounts()
        for level, is_auto, verified, count in result.all():
            by_level[level.value] += count
            bucket = auto if is_auto else manual
            if verified:
                bucket.verified += count
            else:
                bucket.unverified += count

        total_verified = auto.verified + manual.verified
        total_unverified = auto.unverified + manual.unverified
        return VerificationStatsOut(
            by_level=by_level,
            auto_discovered=auto,
            manual=manual,
            total_verified=total_verified,
            total_unverified=total_unverified,
            verification_rate=_percentage(total_verified, total_verified + total_unverified),
        )

    async def get_approval_stats(
        self, db: AsyncSession, county: Optional[str] = None
    ) -> ApprovalStatsOut:
        stmt = select(Amenity.source, Amenity.approval_status, func.count(Amenity.id)).where(_active())
        if county:
            stmt = stmt.where(Amenity.county == county)
        result = await db.execute(stmt.group_by(Amenity.source, Amenity.approval_status))

        totals = ApprovalCounts()
        by_source = {source.value: ApprovalCounts() for source in AmenitySource}
        for source, status, count in result.all():
            for counts in (totals, by_source[source.value]):
                setattr(counts, status.value, getattr(counts, status.value) + count)

        return ApprovalStatsOut(**totals.model_dump(), by_source=by_source)

    async def find_duplicates(
        self, db: AsyncSession, county: Optional[str] = None
    ) -> list[DuplicateGroup[Amenity]]:
        return await self.detector.find_duplicates(db, county)

    @staticmethod
    def get_metadata() -> AmenityMetadata:
        return AmenityMetadata(
            categories=list(AmenityCategory),
            types=list(AmenityType),
            category_types={
                category.value: list(types) for category, types in CATEGORY_TYPES.items()
            },
        )
