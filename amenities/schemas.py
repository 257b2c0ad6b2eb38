"""Pydantic schemas for request/response validation and typed service results."""

from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from amenities.enums import (
    AmenityCategory,
    AmenitySource,
    AmenityType,
    ApprovalStatus,
    DiscoveryProvider,
    VerificationLevel,
)

MIN_DISCOVERY_RADIUS_M = 500
MAX_DISCOVERY_RADIUS_M = 5000


# ── Shared pieces ────────────────────────────────────────────────

class CoordinatesIn(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class AddressIn(BaseModel):
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = Field(None, max_length=255)
    town: Optional[str] = Field(None, max_length=100)
    postal_code: Optional[str] = Field(None, max_length=20)


class LocationIn(BaseModel):
    country: str = "Kenya"
    county: str = Field(..., min_length=1, max_length=100)
    constituency: Optional[str] = None
    ward: Optional[str] = None
    estate: Optional[str] = None
    address: AddressIn
    coordinates: CoordinatesIn


class ContactInfo(BaseModel):
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None


# ── Amenity requests ─────────────────────────────────────────────

class AmenityCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: AmenityType
    category: Optional[AmenityCategory] = Field(
        None, description="Derived from type when omitted; must match type when given"
    )
    description: Optional[str] = None
    location: LocationIn
    contact: Optional[ContactInfo] = None
    operating_hours: Optional[dict[str, str]] = None
    rating: float = Field(0.0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    tags: list[str] = []


class AmenityUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[AmenityType] = None
    description: Optional[str] = None
    location: Optional[LocationIn] = None
    contact: Optional[ContactInfo] = None
    operating_hours: Optional[dict[str, str]] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    review_count: Optional[int] = Field(None, ge=0)
    tags: Optional[list[str]] = None


class VerifyRequest(BaseModel):
    level: VerificationLevel = VerificationLevel.BASIC
    notes: Optional[str] = Field(None, max_length=1000)


class ApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class BulkApproveRequest(BaseModel):
    amenity_ids: list[int] = Field(..., min_length=1, max_length=500)


# ── Amenity responses ────────────────────────────────────────────

class VerificationEntry(BaseModel):
    verified_by: str
    verified_at: datetime
    level: VerificationLevel
    notes: Optional[str] = None


class AmenityOut(BaseModel):
    id: int
    name: str
    type: AmenityType
    category: AmenityCategory
    description: Optional[str] = None
    country: str
    county: str
    constituency: Optional[str] = None
    ward: Optional[str] = None
    estate: Optional[str] = None
    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    town: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: float
    longitude: float
    geolocation: dict
    contact: Optional[dict] = None
    operating_hours: Optional[dict] = None
    rating: float = 0.0
    review_count: int = 0
    tags: list[str] = []
    source: AmenitySource
    is_auto_discovered: bool
    approval_status: ApprovalStatus
    rejection_reason: Optional[str] = None
    verified: bool
    verification_level: VerificationLevel
    verification_history: list[VerificationEntry] = []
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NearbyAmenityOut(AmenityOut):
    distance: float = Field(..., description="Kilometers from the query point")
    walking_time: int = Field(..., description="Approximate minutes on foot")
    driving_time: int = Field(..., description="Approximate minutes by car")


class GroupedAmenitiesOut(BaseModel):
    category: AmenityCategory
    count: int
    amenities: list[NearbyAmenityOut]


class AmenityScoreOut(BaseModel):
    score: int = Field(..., ge=0, le=100)
    breakdown: dict[str, float]
    total_amenities: int


class AmenityPage(BaseModel):
    amenities: list[AmenityOut]
    total: int
    has_more: bool


class AreaStatsOut(BaseModel):
    county: str
    ward: Optional[str] = None
    total_amenities: int
    category_counts: dict[str, int]
    verified_percentage: int


class ApprovalCounts(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    needs_review: int = 0


class ApprovalStatsOut(ApprovalCounts):
    by_source: dict[str, ApprovalCounts]


class VerifiedCounts(BaseModel):
    verified: int = 0
    unverified: int = 0


class VerificationStatsOut(BaseModel):
    by_level: dict[str, int]
    auto_discovered: VerifiedCounts
    manual: VerifiedCounts
    total_verified: int
    total_unverified: int
    verification_rate: int


class BulkApproveResult(BaseModel):
    approved: int
    errors: int
    error_details: list[str]


class BulkImportResult(BaseModel):
    created: int
    errors: int
    error_details: list[str]


class DuplicateGroupOut(BaseModel):
    name: str
    type: AmenityType
    duplicates: list[AmenityOut]


class AmenityMetadata(BaseModel):
    categories: list[AmenityCategory]
    types: list[AmenityType]
    category_types: dict[str, list[AmenityType]]


# ── Discovery ────────────────────────────────────────────────────

class DiscoveryCandidate(BaseModel):
    """A normalized place reported by a discovery provider, not yet persisted."""
    name: str
    type: AmenityType
    category: AmenityCategory
    latitude: float
    longitude: float
    provider: DiscoveryProvider
    source: AmenitySource
    source_ref: Optional[str] = None
    description: Optional[str] = None
    county: str = "Unknown"
    address_line1: Optional[str] = None
    town: Optional[str] = None
    postal_code: Optional[str] = None
    contact: Optional[ContactInfo] = None
    operating_hours: Optional[dict[str, str]] = None
    rating: float = 0.0
    review_count: int = 0
    tags: list[str] = []
    raw: dict = Field(default_factory=dict, description="Provider metadata as received")


class DiscoverRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    radius: int = Field(2000, ge=MIN_DISCOVERY_RADIUS_M, le=MAX_DISCOVERY_RADIUS_M, description="Meters")
    sources: list[DiscoveryProvider] = [DiscoveryProvider.GOOGLE, DiscoveryProvider.OSM]
    auto_save: bool = False
    skip_existing: bool = True


class DiscoveryResult(BaseModel):
    discovered: list[DiscoveryCandidate]
    saved: int = 0
    errors: int = 0
    sources: list[str] = Field(default_factory=list, description="Providers that answered")
    failed_sources: list[str] = []
    error_details: list[str] = []


class PropertyDiscoverRequest(BaseModel):
    radius: int = Field(2000, ge=MIN_DISCOVERY_RADIUS_M, le=MAX_DISCOVERY_RADIUS_M)
    auto_save: bool = True
    update_property_cache: bool = True


class PropertyDiscoveryResult(DiscoveryResult):
    property_id: int
    property_updated: bool = False


class BatchDiscoverRequest(BaseModel):
    property_ids: list[int] = Field(..., min_length=1, max_length=100)
    radius: int = Field(2000, ge=MIN_DISCOVERY_RADIUS_M, le=MAX_DISCOVERY_RADIUS_M)
    batch_size: int = Field(5, ge=1, le=10)
    delay_ms: int = Field(1000, ge=0, le=10000)


class BatchDiscoveryResult(BaseModel):
    processed: int = 0
    total_discovered: int = 0
    total_saved: int = 0
    errors: list[str] = []
    stopped: bool = Field(False, description="True when an emergency stop cut the run short")


class CountyDiscoverRequest(BaseModel):
    radius: int = Field(2000, ge=MIN_DISCOVERY_RADIUS_M, le=MAX_DISCOVERY_RADIUS_M)
    batch_size: int = Field(3, ge=1, le=5)
    delay_ms: int = Field(2000, ge=500, le=10000)


class CountyDiscoveryResult(BatchDiscoveryResult):
    county: str


class DiscoveryConfigOut(BaseModel):
    google_places_configured: bool
    osm_enabled: bool
    min_radius_m: int = MIN_DISCOVERY_RADIUS_M
    max_radius_m: int = MAX_DISCOVERY_RADIUS_M
    default_radius_m: int


# ── Auto-population ──────────────────────────────────────────────

class AdapterConfigStatus(BaseModel):
    google_places_configured: bool
    osm_enabled: bool


class HealthStatus(BaseModel):
    state: str
    queue_size: int
    is_processing: bool
    config_status: AdapterConfigStatus


class AutoDiscoveryStats(BaseModel):
    total_auto_discovered: int
    source_breakdown: dict[str, int]
    verification_rate: int
    category_counts: dict[str, int]


class DataValidationReport(BaseModel):
    total_amenities: int
    unverified_count: int
    missing_contact_count: int
    missing_hours_count: int
    duplicates_count: int
    suggestions: list[str]


class DiscoverMissingRequest(BaseModel):
    county: Optional[str] = None
    batch_size: int = Field(10, ge=1, le=20)
    max_properties: int = Field(100, ge=1, le=500)


class RefreshStaleRequest(BaseModel):
    days_old: int = Field(30, ge=1, le=365)
    county: Optional[str] = None
    batch_size: int = Field(5, ge=1, le=20)
    max_properties: int = Field(50, ge=1, le=500)


class AutoPopulationRunResult(BaseModel):
    processed: int = 0
    discovered: int = 0
    saved: int = 0
    errors: list[str] = []
    stopped: bool = False


class EmergencyStopResult(BaseModel):
    state: str
    cleared: int
    was_processing: bool


class PropertyMovedRequest(BaseModel):
    old: Optional[CoordinatesIn] = None
    new: CoordinatesIn


class PropertyHookResult(BaseModel):
    property_id: int
    scheduled: bool
    distance_moved_km: Optional[float] = None
    queue_size: int


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "connected"
