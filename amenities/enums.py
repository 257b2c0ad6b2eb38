"""Amenity taxonomy and lifecycle enums."""

from __future__ import annotations

import enum


class AmenityCategory(str, enum.Enum):
    EDUCATION = "education"
    HEALTHCARE = "healthcare"
    TRANSPORT = "transport"
    BANKING = "banking"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    RELIGIOUS = "religious"
    GOVERNMENT = "government"
    UTILITIES = "utilities"
    FOOD = "food"
    SECURITY = "security"
    SPORTS = "sports"


class AmenityType(str, enum.Enum):
    # Education
    PRIMARY_SCHOOL = "primary_school"
    SECONDARY_SCHOOL = "secondary_school"
    UNIVERSITY = "university"
    COLLEGE = "college"
    NURSERY = "nursery"
    # Healthcare
    HOSPITAL = "hospital"
    CLINIC = "clinic"
    PHARMACY = "pharmacy"
    DISPENSARY = "dispensary"
    # Shopping
    SUPERMARKET = "supermarket"
    SHOPPING_MALL = "shopping_mall"
    MARKET = "market"
    KIOSK = "kiosk"
    # Transport
    MATATU_STAGE = "matatu_stage"
    BUS_STOP = "bus_stop"
    RAILWAY_STATION = "railway_station"
    AIRPORT = "airport"
    BODA_BODA_STAGE = "boda_boda_stage"
    # Banking
    BANK = "bank"
    ATM = "atm"
    MPESA_AGENT = "mpesa_agent"
    SACCO = "sacco"
    # Entertainment
    RESTAURANT = "restaurant"
    BAR = "bar"
    CLUB = "club"
    CINEMA = "cinema"
    PARK = "park"
    # Religious
    CHURCH = "church"
    MOSQUE = "mosque"
    TEMPLE = "temple"
    # Government
    POLICE_STATION = "police_station"
    GOVERNMENT_OFFICE = "government_office"
    POST_OFFICE = "post_office"
    # Utilities
    WATER_POINT = "water_point"
    ELECTRICITY_SUBSTATION = "electricity_substation"
    # Food
    BUTCHERY = "butchery"
    BAKERY = "bakery"
    HOTEL = "hotel"
    CAFE = "cafe"
    # Security
    SECURITY_COMPANY = "security_company"
    # Sports
    GYM = "gym"
    SPORTS_GROUND = "sports_ground"


class AmenitySource(str, enum.Enum):
    MANUAL = "manual"
    AUTO_DISCOVERED_GOOGLE = "auto_discovered_google"
    AUTO_DISCOVERED_OSM = "auto_discovered_osm"


class DiscoveryProvider(str, enum.Enum):
    GOOGLE = "google"
    OSM = "osm"

    @property
    def amenity_source(self) -> AmenitySource:
        return _PROVIDER_SOURCE[self]


_PROVIDER_SOURCE = {
    DiscoveryProvider.GOOGLE: AmenitySource.AUTO_DISCOVERED_GOOGLE,
    DiscoveryProvider.OSM: AmenitySource.AUTO_DISCOVERED_OSM,
}


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NEEDS_REVIEW = "needs_review"


class VerificationLevel(str, enum.Enum):
    NONE = "none"
    BASIC = "basic"
    FULL = "full"
    COMMUNITY_VERIFIED = "community_verified"

    @property
    def rank(self) -> int:
        return _VERIFICATION_RANK[self]


_VERIFICATION_RANK = {
    VerificationLevel.NONE: 0,
    VerificationLevel.BASIC: 1,
    VerificationLevel.FULL: 2,
    VerificationLevel.COMMUNITY_VERIFIED: 3,
}


class LifecycleState(str, enum.Enum):
    """Record lifecycle. Removal moves a record to DELETED, never drops the row."""

    ACTIVE = "active"
    DELETED = "deleted"


CATEGORY_TYPES: dict[AmenityCategory, tuple[AmenityType, ...]] = {
    AmenityCategory.EDUCATION: (
        AmenityType.PRIMARY_SCHOOL,
        AmenityType.SECONDARY_SCHOOL,
        AmenityType.UNIVERSITY,
        AmenityType.COLLEGE,
        AmenityType.NURSERY,
    ),
    AmenityCategory.HEALTHCARE: (
        AmenityType.HOSPITAL,
        AmenityType.CLINIC,
        AmenityType.PHARMACY,
        AmenityType.DISPENSARY,
    ),
    AmenityCategory.SHOPPING: (
        AmenityType.SUPERMARKET,
        AmenityType.SHOPPING_MALL,
        AmenityType.MARKET,
        AmenityType.KIOSK,
    ),
    AmenityCategory.TRANSPORT: (
        AmenityType.MATATU_STAGE,
        AmenityType.BUS_STOP,
        AmenityType.RAILWAY_STATION,
        AmenityType.AIRPORT,
        AmenityType.BODA_BODA_STAGE,
    ),
    AmenityCategory.BANKING: (
        AmenityType.BANK,
        AmenityType.ATM,
        AmenityType.MPESA_AGENT,
        AmenityType.SACCO,
    ),
    AmenityCategory.ENTERTAINMENT: (
        AmenityType.RESTAURANT,
        AmenityType.BAR,
        AmenityType.CLUB,
        AmenityType.CINEMA,
        AmenityType.PARK,
    ),
    AmenityCategory.RELIGIOUS: (
        AmenityType.CHURCH,
        AmenityType.MOSQUE,
        AmenityType.TEMPLE,
    ),
    AmenityCategory.GOVERNMENT: (
        AmenityType.POLICE_STATION,
        AmenityType.GOVERNMENT_OFFICE,
        AmenityType.POST_OFFICE,
    ),
    AmenityCategory.UTILITIES: (
        AmenityType.WATER_POINT,
        AmenityType.ELECTRICITY_SUBSTATION,
    ),
    AmenityCategory.FOOD: (
        AmenityType.BUTCHERY,
        AmenityType.BAKERY,
        AmenityType.HOTEL,
        AmenityType.CAFE,
    ),
    AmenityCategory.SECURITY: (AmenityType.SECURITY_COMPANY,),
    AmenityCategory.SPORTS: (AmenityType.GYM, AmenityType.SPORTS_GROUND),
}

CATEGORY_FOR_TYPE: dict[AmenityType, AmenityCategory] = {
    amenity_type: category
    for category, types in CATEGORY_TYPES.items()
    for amenity_type in types
}
