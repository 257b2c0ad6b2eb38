"""
Unit tests for distance, bounding boxes and travel-time estimates.
"""

import math

import pytest

from amenities.services.geo import (
    BoundingBox,
    Coordinate,
    bounding_box,
    distance,
    distance_km,
    estimate_driving_time,
    estimate_walking_time,
    is_valid_coordinate,
)

NAIROBI = Coordinate(-1.2921, 36.8219)
MOMBASA = Coordinate(-4.0435, 39.6682)


class TestDistance:
    def test_same_point_is_zero(self):
        assert distance(NAIROBI, NAIROBI) == 0.0

    def test_symmetric(self):
        assert distance(NAIROBI, MOMBASA) == pytest.approx(distance(MOMBASA, NAIROBI))

    def test_nairobi_to_mombasa(self):
        # roughly 440 km as the crow flies
        assert 430 < distance(NAIROBI, MOMBASA) < 450

    def test_one_degree_of_latitude(self):
        assert distance(Coordinate(0, 0), Coordinate(1, 0)) == pytest.approx(111.19, abs=0.01)

    def test_antipodal_points(self):
        half_circumference = math.pi * 6371.0
        assert distance(Coordinate(0, 0), Coordinate(0, 180)) == pytest.approx(half_circumference)

    def test_distance_km_matches_distance(self):
        assert distance_km(*NAIROBI, *MOMBASA) == distance(NAIROBI, MOMBASA)


class TestBoundingBox:
    def test_contains_circle_edge(self):
        box = bounding_box(NAIROBI, 2.0)
        # points ~2 km north, south, east and west of the centre
        for dlat, dlon in ((0.0179, 0), (-0.0179, 0), (0, 0.0179), (0, -0.0179)):
            assert box.contains(NAIROBI.latitude + dlat, NAIROBI.longitude + dlon)

    def test_excludes_far_points(self):
        box = bounding_box(NAIROBI, 2.0)
        assert not box.contains(*MOMBASA)

    def test_near_pole_spans_all_longitudes(self):
        box = bounding_box(Coordinate(89.99, 10.0), 5.0)
        assert box.min_lon == -180.0 and box.max_lon == 180.0
        assert box.max_lat == 90.0

    def test_antimeridian_spans_all_longitudes(self):
        box = bounding_box(Coordinate(0.0, 179.99), 5.0)
        assert (box.min_lon, box.max_lon) == (-180.0, 180.0)

    def test_box_is_tuple(self):
        box = bounding_box(NAIROBI, 1.0)
        assert isinstance(box, BoundingBox)
        assert box.min_lat < NAIROBI.latitude < box.max_lat


class TestCoordinateValidation:
    @pytest.mark.parametrize(
        "lat,lon",
        [(0, 0), (-90, -180), (90, 180), NAIROBI],
    )
    def test_valid(self, lat, lon):
        assert is_valid_coordinate(lat, lon)

    @pytest.mark.parametrize(
        "lat,lon",
        [(91, 0), (0, 181), (-90.1, 0), (float("nan"), 0), (None, 36.8)],
    )
    def test_invalid(self, lat, lon):
        assert not is_valid_coordinate(lat, lon)


class TestTravelTimes:
    def test_walking_one_km(self):
        assert estimate_walking_time(1.0) == 12

    def test_driving_one_km(self):
        assert estimate_driving_time(1.0) == 2

    def test_zero_distance(self):
        assert estimate_walking_time(0) == 0
        assert estimate_driving_time(0) == 0

    def test_walking_slower_than_driving(self):
        assert estimate_walking_time(3.0) > estimate_driving_time(3.0)
