"""
Geographic helpers used by the translator and the worker matcher.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    lat1, lon1, lat2, lon2 = map(math.radians, [float(lat1), float(lon1), float(lat2), float(lon2)])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_minutes(distance_km: float, average_speed_kmh: float) -> int:
    if average_speed_kmh <= 0:
        raise ValueError("average_speed_kmh must be positive")
    return int(math.ceil(distance_km / average_speed_kmh * 60))


@dataclass
class BoundingBox:
    min_lat: float
    max_lat: float
    # None when the box wraps a pole or the antimeridian; skip the longitude filter then
    min_lng: Optional[float]
    max_lng: Optional[float]


def bounding_box(lat: float, lng: float, radius_km: float) -> BoundingBox:
    """
    Smallest lat/lng rectangle containing every point within radius_km of
    (lat, lng). Coarse pre-filter only; callers still apply haversine.
    """
    ang = radius_km / EARTH_RADIUS_KM
    d_lat = math.degrees(ang)
    min_lat, max_lat = lat - d_lat, lat + d_lat
    if min_lat <= -90 or max_lat >= 90:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), None, None)

    ratio = math.sin(ang) / math.cos(math.radians(lat))
    if ratio >= 1:
        return BoundingBox(min_lat, max_lat, None, None)
    d_lng = math.degrees(math.asin(ratio))
    min_lng, max_lng = lng - d_lng, lng + d_lng
    if min_lng < -180 or max_lng > 180:
        return BoundingBox(min_lat, max_lat, None, None)
    # Float slack so points exactly on the radius survive the SQL filter
    eps = 1e-9
    return BoundingBox(min_lat - eps, max_lat + eps, min_lng - eps, max_lng + eps)
