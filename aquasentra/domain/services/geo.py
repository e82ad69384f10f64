"""
Geospatial helpers for the report query layer.

Distances are great-circle (haversine) on a spherical Earth. The database only
applies a coarse bounding-box prefilter; exact radius checks happen here so
PostgreSQL and SQLite deployments return identical result sets.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Sequence, Tuple
import math

import numpy as np

from aquasentra.core.exceptions import ValidationFailed

EARTH_RADIUS_KM = 6371.0

# Radius checks are inclusive; this absorbs float noise at the boundary
DISTANCE_EPSILON_KM = 1e-6

SEVERITY_WEIGHTS = {
    "critical": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}


@dataclass(frozen=True)
class BoundingBox:
    sw_lat: float
    sw_lng: float
    ne_lat: float
    ne_lng: float

    def contains(self, lat: float, lng: float) -> bool:
        return self.sw_lat <= lat <= self.ne_lat and self.sw_lng <= lng <= self.ne_lng


def validate_coordinates(lat: float, lng: float) -> None:
    if not -90 <= lat <= 90:
        raise ValidationFailed("Latitude must be between -90 and 90")
    if not -180 <= lng <= 180:
        raise ValidationFailed("Longitude must be between -180 and 180")


def parse_bounds(bounds: str) -> BoundingBox:
    """Parse ``swLat,swLng,neLat,neLng`` into a validated BoundingBox."""
    parts = [p.strip() for p in (bounds or "").split(",")]
    if len(parts) != 4:
        raise ValidationFailed("Bounds must be in format: swLat,swLng,neLat,neLng")
    try:
        sw_lat, sw_lng, ne_lat, ne_lng = (float(p) for p in parts)
    except ValueError:
        raise ValidationFailed("Bounds must contain four numeric values")

    validate_coordinates(sw_lat, sw_lng)
    validate_coordinates(ne_lat, ne_lng)
    if sw_lat > ne_lat or sw_lng > ne_lng:
        raise ValidationFailed("South-west corner must be below and left of the north-east corner")

    return BoundingBox(sw_lat, sw_lng, ne_lat, ne_lng)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Calculate haversine distance between two points in km."""
    return float(haversine_many(lat1, lng1, [lat2], [lng2])[0])


def haversine_many(
    lat: float, lng: float, lats: Sequence[float], lngs: Sequence[float]
) -> np.ndarray:
    """Vectorised haversine distance from one origin to many points, in km."""
    lat1_rad = np.radians(lat)
    lat2_rad = np.radians(np.asarray(lats, dtype=float))
    dlat = lat2_rad - lat1_rad
    dlng = np.radians(np.asarray(lngs, dtype=float) - lng)

    a = np.sin(dlat / 2) ** 2 + np.cos(lat1_rad) * np.cos(lat2_rad) * np.sin(dlng / 2) ** 2
    c = 2 * np.arctan2(np.sqrt(a), np.sqrt(np.clip(1 - a, 0.0, None)))

    return EARTH_RADIUS_KM * c


def radius_prefilter_box(lat: float, lng: float, radius_km: float) -> BoundingBox:
    """
    Bounding box that fully encloses the circle of ``radius_km`` around a point.
    Near the poles or the antimeridian the longitude span falls back to the full range.
    """
    delta_lat = math.degrees(radius_km / EARTH_RADIUS_KM) * 1.0001
    sw_lat = max(-90.0, lat - delta_lat)
    ne_lat = min(90.0, lat + delta_lat)

    cos_lat = math.cos(math.radians(max(abs(sw_lat), abs(ne_lat))))
    if cos_lat < 1e-6:
        return BoundingBox(sw_lat, -180.0, ne_lat, 180.0)

    delta_lng = delta_lat / cos_lat
    sw_lng = lng - delta_lng
    ne_lng = lng + delta_lng
    if sw_lng < -180 or ne_lng > 180:
        return BoundingBox(sw_lat, -180.0, ne_lat, 180.0)

    return BoundingBox(sw_lat, sw_lng, ne_lat, ne_lng)


def within_radius(lat: float, lng: float, radius_km: float, items: Iterable, key=None) -> List:
    """
    Keep the items whose location lies within ``radius_km`` of (lat, lng), boundary inclusive.

    ``key`` maps an item to its (lat, lng); by default the item's
    ``latitude``/``longitude`` attributes are used.
    """
    items = list(items)
    if not items:
        return []
    if key is None:
        key = lambda item: (item.latitude, item.longitude)  # noqa: E731

    points = [key(item) for item in items]
    distances = haversine_many(lat, lng, [p[0] for p in points], [p[1] for p in points])
    limit = radius_km + DISTANCE_EPSILON_KM

    return [item for item, distance in zip(items, distances) if distance <= limit]


def cluster_precision(zoom: int) -> int:
    """Decimal places kept when grouping points; coarser at lower zoom."""
    return max(1, zoom // 3)


def round_coordinate(value: float, precision: int) -> float:
    """Round half away from zero, as PostgreSQL ROUND(numeric) does."""
    quantum = Decimal(1).scaleb(-precision)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def cluster_key(lat: float, lng: float, precision: int) -> Tuple[float, float]:
    return round_coordinate(lat, precision), round_coordinate(lng, precision)


def severity_weight(severity: str) -> int:
    return SEVERITY_WEIGHTS.get(severity, 1)
