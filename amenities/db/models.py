"""SQLAlchemy ORM models for amenities and the property amenity cache."""

import datetime

from sqlalchemy import (
    Column,
    String,
    Float,
    Integer,
    Boolean,
    Text,
    DateTime,
    JSON,
    Enum,
    Index,
    event,
)

from amenities.db.session import Base
from amenities.enums import (
    AmenityCategory,
    AmenitySource,
    AmenityType,
    ApprovalStatus,
    LifecycleState,
    VerificationLevel,
)


def _enum_column(enum_cls, **kwargs):
    """Store the enum *value* (not the member name) in a plain VARCHAR."""
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=50,
            values_callable=lambda members: [m.value for m in members],
            validate_strings=True,
        ),
        **kwargs,
    )


def point_geometry(latitude: float, longitude: float) -> dict:
    """GeoJSON point. Coordinate order is [longitude, latitude]."""
    return {"type": "Point", "coordinates": [longitude, latitude]}


class Amenity(Base):
    __tablename__ = "amenities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    type = _enum_column(AmenityType, nullable=False)
    category = _enum_column(AmenityCategory, nullable=False)
    description = Column(Text, nullable=True)

    # Administrative location
    country = Column(String(100), nullable=False, default="Kenya")
    county = Column(String(100), nullable=False)
    constituency = Column(String(100), nullable=True)
    ward = Column(String(100), nullable=True)
    estate = Column(String(100), nullable=True)
    address_line1 = Column(String(255), nullable=True)
    address_line2 = Column(String(255), nullable=True)
    town = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    geolocation = Column(JSON, nullable=False)

    contact = Column(JSON, nullable=True)
    operating_hours = Column(JSON, nullable=True)
    rating = Column(Float, nullable=False, default=0.0)
    review_count = Column(Integer, nullable=False, default=0)
    tags = Column(JSON, nullable=False, default=list)

    # Source / discovery
    source = _enum_column(AmenitySource, nullable=False, default=AmenitySource.MANUAL)
    source_ref = Column(String(255), nullable=True)  # provider's own place id
    is_auto_discovered = Column(Boolean, nullable=False, default=False)
    discovered_at = Column(DateTime, nullable=True)

    # Moderation
    approval_status = _enum_column(
        ApprovalStatus, nullable=False, default=ApprovalStatus.PENDING
    )
    approved_by = Column(String(64), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(64), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    # Verification
    verified = Column(Boolean, nullable=False, default=False)
    verification_level = _enum_column(
        VerificationLevel, nullable=False, default=VerificationLevel.NONE
    )
    verified_by = Column(String(64), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_notes = Column(Text, nullable=True)
    verification_history = Column(JSON, nullable=False, default=list)

    lifecycle = _enum_column(
        LifecycleState, nullable=False, default=LifecycleState.ACTIVE
    )

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
    )

    __table_args__ = (
        Index("ix_amenities_lat_lng", "latitude", "longitude"),
        Index("ix_amenities_category_type", "category", "type"),
        Index("ix_amenities_county_category", "county", "category"),
        Index("ix_amenities_verified_lifecycle", "verified", "lifecycle"),
        Index("ix_amenities_source_approval", "source", "approval_status"),
        Index("ix_amenities_auto_approval", "is_auto_discovered", "approval_status"),
        Index("ix_amenities_name", "name"),
        # the GIN full-text index on (name, description) is Postgres-only; see migration 001
    )

    @property
    def is_active(self) -> bool:
        return self.lifecycle == LifecycleState.ACTIVE

    def __repr__(self) -> str:
        return f"<Amenity id={self.id} name={self.name!r} type={self.type}>"


@event.listens_for(Amenity, "before_insert")
@event.listens_for(Amenity, "before_update")
def _sync_geolocation(mapper, connection, target: Amenity):
    """Keep the GeoJSON point in step with latitude/longitude."""
    if target.latitude is not None and target.longitude is not None:
        target.geolocation = point_geometry(target.latitude, target.longitude)


class Property(Base):
    """
    The slice of a rental property the amenity core reads and writes.
    Listing CRUD lives elsewhere; ``nearby_amenities`` and
    ``amenity_score`` are a display cache, never a source of truth.
    """
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    status = Column(String(50), nullable=False, default="active")
    county = Column(String(100), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    nearby_amenities = Column(JSON, nullable=True)
    amenity_score = Column(Float, nullable=True)
    amenities_refreshed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
    )

    __table_args__ = (
        Index("ix_properties_county_status", "county", "status"),
        Index("ix_properties_refreshed", "amenities_refreshed_at"),
    )
