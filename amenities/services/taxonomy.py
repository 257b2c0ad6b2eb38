"""
Provider taxonomies: how Google place types and OpenStreetMap tags map onto
our amenity types, plus the small parsers both providers need (opening hours,
rough county lookup).
"""

from __future__ import annotations

import re
from typing import Optional

from amenities.enums import CATEGORY_FOR_TYPE, AmenityCategory, AmenityType

TypeMapping = tuple[AmenityType, AmenityCategory]

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def _m(amenity_type: AmenityType) -> TypeMapping:
    return amenity_type, CATEGORY_FOR_TYPE[amenity_type]


# ── Google place types ───────────────────────────────────────────

GOOGLE_TYPE_MAPPING: dict[str, TypeMapping] = {
    # Education
    "school": _m(AmenityType.PRIMARY_SCHOOL),
    "primary_school": _m(AmenityType.PRIMARY_SCHOOL),
    "secondary_school": _m(AmenityType.SECONDARY_SCHOOL),
    "university": _m(AmenityType.UNIVERSITY),
    # Healthcare
    "hospital": _m(AmenityType.HOSPITAL),
    "doctor": _m(AmenityType.CLINIC),
    "pharmacy": _m(AmenityType.PHARMACY),
    "health": _m(AmenityType.CLINIC),
    # Shopping
    "supermarket": _m(AmenityType.SUPERMARKET),
    "shopping_mall": _m(AmenityType.SHOPPING_MALL),
    "grocery_or_supermarket": _m(AmenityType.SUPERMARKET),
    "grocery_store": _m(AmenityType.SUPERMARKET),
    # Transport
    "bus_station": _m(AmenityType.BUS_STOP),
    "transit_station": _m(AmenityType.BUS_STOP),
    "train_station": _m(AmenityType.RAILWAY_STATION),
    "airport": _m(AmenityType.AIRPORT),
    # Banking
    "bank": _m(AmenityType.BANK),
    "atm": _m(AmenityType.ATM),
    # Entertainment
    "restaurant": _m(AmenityType.RESTAURANT),
    "bar": _m(AmenityType.BAR),
    "movie_theater": _m(AmenityType.CINEMA),
    "park": _m(AmenityType.PARK),
    # Food
    "bakery": _m(AmenityType.BAKERY),
    "cafe": _m(AmenityType.CAFE),
    # Religious
    "church": _m(AmenityType.CHURCH),
    "mosque": _m(AmenityType.MOSQUE),
    "hindu_temple": _m(AmenityType.TEMPLE),
    "place_of_worship": _m(AmenityType.CHURCH),
    # Government
    "police": _m(AmenityType.POLICE_STATION),
    "post_office": _m(AmenityType.POST_OFFICE),
    "local_government_office": _m(AmenityType.GOVERNMENT_OFFICE),
    # Sports
    "gym": _m(AmenityType.GYM),
    "stadium": _m(AmenityType.SPORTS_GROUND),
}

# One nearby-search request per group keeps each includedTypes list short
# and stops one busy category from crowding the others out of the top 20.
GOOGLE_SEARCH_GROUPS: dict[str, tuple[str, ...]] = {
    "education": ("primary_school", "secondary_school", "school", "university"),
    "healthcare": ("hospital", "pharmacy", "doctor"),
    "shopping": ("supermarket", "shopping_mall", "grocery_store"),
    "transport": ("bus_station", "transit_station", "train_station", "airport"),
    "banking": ("bank", "atm"),
    "leisure": ("restaurant", "bar", "movie_theater", "park", "cafe", "bakery"),
    "religious": ("church", "mosque", "hindu_temple"),
    "government": ("police", "post_office", "local_government_office"),
    "sports": ("gym", "stadium"),
}


def map_google_types(types: list[str]) -> Optional[TypeMapping]:
    """First known type wins, in the order Google lists them."""
    for place_type in types or ():
        mapping = GOOGLE_TYPE_MAPPING.get(place_type)
        if mapping:
            return mapping
    return None


# ── OpenStreetMap tags ───────────────────────────────────────────

OSM_TAG_MAPPING: dict[str, TypeMapping] = {
    # Education
    "amenity=school": _m(AmenityType.PRIMARY_SCHOOL),
    "amenity=university": _m(AmenityType.UNIVERSITY),
    "amenity=college": _m(AmenityType.COLLEGE),
    "amenity=kindergarten": _m(AmenityType.NURSERY),
    # Healthcare
    "amenity=hospital": _m(AmenityType.HOSPITAL),
    "amenity=clinic": _m(AmenityType.CLINIC),
    "amenity=pharmacy": _m(AmenityType.PHARMACY),
    "amenity=doctors": _m(AmenityType.CLINIC),
    # Shopping
    "shop=supermarket": _m(AmenityType.SUPERMARKET),
    "shop=mall": _m(AmenityType.SHOPPING_MALL),
    "amenity=marketplace": _m(AmenityType.MARKET),
    "shop=kiosk": _m(AmenityType.KIOSK),
    # Transport
    "amenity=bus_station": _m(AmenityType.BUS_STOP),
    "public_transport=station": _m(AmenityType.BUS_STOP),
    "highway=bus_stop": _m(AmenityType.BUS_STOP),
    "railway=station": _m(AmenityType.RAILWAY_STATION),
    "aeroway=aerodrome": _m(AmenityType.AIRPORT),
    # Banking
    "amenity=bank": _m(AmenityType.BANK),
    "amenity=atm": _m(AmenityType.ATM),
    # Entertainment
    "amenity=restaurant": _m(AmenityType.RESTAURANT),
    "amenity=bar": _m(AmenityType.BAR),
    "amenity=cinema": _m(AmenityType.CINEMA),
    "leisure=park": _m(AmenityType.PARK),
    # Food
    "amenity=cafe": _m(AmenityType.CAFE),
    "shop=bakery": _m(AmenityType.BAKERY),
    "shop=butcher": _m(AmenityType.BUTCHERY),
    # Religious
    "building=church": _m(AmenityType.CHURCH),
    # Government
    "amenity=police": _m(AmenityType.POLICE_STATION),
    "amenity=post_office": _m(AmenityType.POST_OFFICE),
    "amenity=townhall": _m(AmenityType.GOVERNMENT_OFFICE),
    # Utilities
    "amenity=drinking_water": _m(AmenityType.WATER_POINT),
    "power=substation": _m(AmenityType.ELECTRICITY_SUBSTATION),
    # Sports
    "leisure=fitness_centre": _m(AmenityType.GYM),
    "leisure=sports_centre": _m(AmenityType.SPORTS_GROUND),
    "leisure=stadium": _m(AmenityType.SPORTS_GROUND),
}

# Checked first, in this order; any other key follows alphabetically.
OSM_KEY_PRIORITY = ("amenity", "shop", "leisure")

_RELIGION_TYPES = {
    "christian": AmenityType.CHURCH,
    "muslim": AmenityType.MOSQUE,
    "hindu": AmenityType.TEMPLE,
}


def map_osm_tags(tags: dict[str, str]) -> Optional[TypeMapping]:
    """
    Resolve an OSM element's tags to an amenity type.

    ``amenity=place_of_worship`` is decided by the ``religion`` tag and falls
    back to a church when the religion is missing or unrecognised.
    """
    if not tags:
        return None
    if tags.get("amenity") == "place_of_worship":
        return _m(_RELIGION_TYPES.get(tags.get("religion", ""), AmenityType.CHURCH))
    ordered = [key for key in OSM_KEY_PRIORITY if key in tags]
    ordered += sorted(key for key in tags if key not in OSM_KEY_PRIORITY)
    for key in ordered:
        mapping = OSM_TAG_MAPPING.get(f"{key}={tags[key]}")
        if mapping:
            return mapping
    return None


# ── Opening hours ────────────────────────────────────────────────

_GOOGLE_HOURS = re.compile(r":\s*(.+)$")
_OSM_TIME_RANGE = re.compile(r"(\d{2}:\d{2})-(\d{2}:\d{2})")


def parse_google_opening_hours(weekday_text: list[str]) -> dict[str, str]:
    """``["Monday: 9:00 AM – 5:00 PM", ...]`` to ``{"monday": "9:00 AM – 5:00 PM"}``."""
    hours: dict[str, str] = {}
    for day, text in zip(WEEKDAYS, weekday_text or ()):
        match = _GOOGLE_HOURS.search(text)
        if match:
            hours[day] = match.group(1).strip()
    return hours


def parse_osm_opening_hours(value: str) -> dict[str, str]:
    """
    Only the common ``Mo-Fr HH:MM-HH:MM`` and ``Mo-Su HH:MM-HH:MM`` forms are
    understood; anything else yields an empty dict.
    """
    if not value:
        return {}
    if "24/7" in value:
        return {day: "00:00 - 24:00" for day in WEEKDAYS}

    match = _OSM_TIME_RANGE.search(value)
    if not match:
        return {}
    time_range = f"{match.group(1)} - {match.group(2)}"

    if "Mo-Fr" in value:
        return {day: time_range for day in WEEKDAYS[:5]}
    if "Mo-Su" in value:
        return {day: time_range for day in WEEKDAYS}
    return {}


# ── County lookup ────────────────────────────────────────────────

# (county, min_lat, max_lat, min_lon, max_lon), approximate city extents
COUNTY_BOUNDS: tuple[tuple[str, float, float, float, float], ...] = (
    ("Nairobi", -1.4, -1.1, 36.6, 37.1),
    ("Mombasa", -4.2, -3.9, 39.5, 39.8),
    ("Kisumu", -0.2, 0.1, 34.6, 34.9),
    ("Nakuru", -0.4, -0.2, 35.9, 36.2),
)

UNKNOWN_COUNTY = "Unknown"


def guess_county(latitude: float, longitude: float) -> str:
    # TODO: replace with reverse geocoding against county boundary polygons
    for county, min_lat, max_lat, min_lon, max_lon in COUNTY_BOUNDS:
        if min_lat <= latitude <= max_lat and min_lon <= longitude <= max_lon:
            return county
    return UNKNOWN_COUNTY
