"""
Tests for provider type mapping, opening-hours parsing and county lookup.
"""

import pytest

from amenities.enums import CATEGORY_FOR_TYPE, AmenityCategory, AmenityType
from amenities.services.taxonomy import (
    GOOGLE_SEARCH_GROUPS,
    GOOGLE_TYPE_MAPPING,
    OSM_TAG_MAPPING,
    guess_county,
    map_google_types,
    map_osm_tags,
    parse_google_opening_hours,
    parse_osm_opening_hours,
)


class TestGoogleMapping:
    def test_first_known_type_wins(self):
        mapping = map_google_types(["point_of_interest", "pharmacy", "hospital"])
        assert mapping == (AmenityType.PHARMACY, AmenityCategory.HEALTHCARE)

    def test_unknown_types(self):
        assert map_google_types(["point_of_interest", "establishment"]) is None
        assert map_google_types([]) is None

    def test_mapping_is_consistent_with_categories(self):
        for amenity_type, category in GOOGLE_TYPE_MAPPING.values():
            assert CATEGORY_FOR_TYPE[amenity_type] == category

    def test_every_searched_type_is_mapped(self):
        for types in GOOGLE_SEARCH_GROUPS.values():
            for place_type in types:
                assert place_type in GOOGLE_TYPE_MAPPING


class TestOsmMapping:
    def test_simple_tag(self):
        assert map_osm_tags({"amenity": "school", "name": "X"}) == (
            AmenityType.PRIMARY_SCHOOL,
            AmenityCategory.EDUCATION,
        )

    @pytest.mark.parametrize(
        "religion,expected",
        [
            ("muslim", AmenityType.MOSQUE),
            ("hindu", AmenityType.TEMPLE),
            ("christian", AmenityType.CHURCH),
            ("", AmenityType.CHURCH),
        ],
    )
    def test_place_of_worship_by_religion(self, religion, expected):
        tags = {"amenity": "place_of_worship"}
        if religion:
            tags["religion"] = religion
        amenity_type, category = map_osm_tags(tags)
        assert amenity_type == expected
        assert category == AmenityCategory.RELIGIOUS

    def test_unmapped_tags(self):
        assert map_osm_tags({"amenity": "bench"}) is None
        assert map_osm_tags({}) is None

    @pytest.mark.parametrize(
        "tags",
        [
            {"building": "church", "amenity": "school"},
            {"amenity": "school", "building": "church"},
        ],
    )
    def test_amenity_key_wins_regardless_of_order(self, tags):
        assert map_osm_tags(tags)[0] == AmenityType.PRIMARY_SCHOOL

    def test_shop_before_leisure_before_other_keys(self):
        assert map_osm_tags({"leisure": "park", "shop": "bakery"})[0] == AmenityType.BAKERY
        assert map_osm_tags({"railway": "station", "leisure": "park"})[0] == AmenityType.PARK
        # remaining keys are taken alphabetically
        assert map_osm_tags({"railway": "station", "highway": "bus_stop"})[0] == AmenityType.BUS_STOP

    def test_mapping_is_consistent_with_categories(self):
        for amenity_type, category in OSM_TAG_MAPPING.values():
            assert CATEGORY_FOR_TYPE[amenity_type] == category


class TestOpeningHours:
    def test_google_weekday_text(self):
        hours = parse_google_opening_hours(
            ["Monday: 8:00 AM – 5:00 PM", "Tuesday: Closed"]
        )
        assert hours == {"monday": "8:00 AM – 5:00 PM", "tuesday": "Closed"}

    def test_google_empty(self):
        assert parse_google_opening_hours([]) == {}

    def test_osm_weekdays(self):
        hours = parse_osm_opening_hours("Mo-Fr 08:00-17:00")
        assert list(hours) == ["monday", "tuesday", "wednesday", "thursday", "friday"]
        assert hours["monday"] == "08:00 - 17:00"

    def test_osm_every_day(self):
        hours = parse_osm_opening_hours("Mo-Su 06:00-22:00")
        assert len(hours) == 7
        assert hours["sunday"] == "06:00 - 22:00"

    def test_osm_always_open(self):
        assert parse_osm_opening_hours("24/7")["saturday"] == "00:00 - 24:00"

    @pytest.mark.parametrize("value", ["", "Sa 09:00-13:00", "sunrise-sunset", "Mo-Fr"])
    def test_osm_unsupported_forms(self, value):
        assert parse_osm_opening_hours(value) == {}


class TestGuessCounty:
    @pytest.mark.parametrize(
        "lat,lon,county",
        [
            (-1.2921, 36.8219, "Nairobi"),
            (-4.0435, 39.6682, "Mombasa"),
            (-0.0917, 34.7680, "Kisumu"),
            (-0.3031, 36.0800, "Nakuru"),
            (0.5143, 35.2698, "Unknown"),
        ],
    )
    def test_known_cities(self, lat, lon, county):
        assert guess_county(lat, lon) == county
