"""
Great-circle distance, bounding boxes and travel-time heuristics.

Travel times are linear estimates from fixed average speeds, not routing
engine output; treat them as approximate.
"""

from __future__ import annotations

import math
from typing import NamedTuple

EARTH_RADIUS_KM = 6371.0
WALKING_SPEED_KMH = 5.0
DRIVING_SPEED_KMH = 30.0  # urban average


class Coordinate(NamedTuple):
    latitude: float
    longitude: float


class BoundingBox(NamedTuple):
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.min_lat <= latitude <= self.max_lat
            and self.min_lon <= longitude <= self.max_lon
        )


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    return (
        latitude is not None
        and longitude is not None
        and not math.isnan(latitude)
        and not math.isnan(longitude)
        and -90.0 <= latitude <= 90.0
        and -180.0 <= longitude <= 180.0
    )


def distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in kilometers."""
    lat1, lon1 = math.radians(a[0]), math.radians(a[1])
    lat2, lon2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # rounding can push h a hair outside [0, 1] for antipodal points
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return distance(Coordinate(lat1, lon1), Coordinate(lat2, lon2))


def bounding_box(center: Coordinate, radius_km: float) -> BoundingBox:
    """
    Box that fully contains the circle of ``radius_km`` around ``center``.

    Falls back to the full longitude range near the poles and when the
    circle crosses the antimeridian.
    """
    lat, lon = center
    angular = radius_km / EARTH_RADIUS_KM
    lat_delta = math.degrees(angular)

    min_lat = lat - lat_delta
    max_lat = lat + lat_delta
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    ratio = math.sin(angular) / math.cos(math.radians(lat))
    if ratio >= 1.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    lon_delta = math.degrees(math.asin(ratio))

    min_lon = lon - lon_delta
    max_lon = lon + lon_delta
    if min_lon < -180.0 or max_lon > 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)


def estimate_walking_time(km: float) -> int:
    """Minutes on foot at an average 5 km/h."""
    return round(max(0.0, km) / WALKING_SPEED_KMH * 60)


def estimate_driving_time(km: float) -> int:
    """Minutes by car at an average urban 30 km/h."""
    return round(max(0.0, km) / DRIVING_SPEED_KMH * 60)
