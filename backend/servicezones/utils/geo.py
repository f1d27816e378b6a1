"""Great-circle distance and coordinate helpers."""
import math
from typing import Optional

from servicezones.domain import BoundingBox

# Mean earth radius (IUGG)
EARTH_RADIUS_METERS = 6371008.8


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two WGS84 points in meters."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(dlon / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def bbox_around(lat: float, lon: float, radius_meters: float) -> BoundingBox:
    """Bounding box that fully contains the circle of the given radius.

    Longitude span widens towards the poles; near them the box covers every
    longitude.
    """
    dlat = math.degrees(radius_meters / EARTH_RADIUS_METERS)
    min_lat = max(-90.0, lat - dlat)
    max_lat = min(90.0, lat + dlat)

    cos_lat = math.cos(math.radians(max(abs(min_lat), abs(max_lat))))
    if cos_lat < 1e-9:
        return BoundingBox(min_lat, -180.0, max_lat, 180.0)
    dlon = math.degrees(radius_meters / (EARTH_RADIUS_METERS * cos_lat))
    if dlon >= 180.0:
        return BoundingBox(min_lat, -180.0, max_lat, 180.0)
    return BoundingBox(min_lat, lon - dlon, max_lat, lon + dlon)


def validate_coordinates(lat: Optional[float], lon: Optional[float]) -> list[str]:
    """Return human-readable problems with a latitude/longitude pair."""
    problems = []
    if lat is not None and not -90.0 <= lat <= 90.0:
        problems.append("latitude must be between -90 and 90")
    if lon is not None and not -180.0 <= lon <= 180.0:
        problems.append("longitude must be between -180 and 180")
    return problems
