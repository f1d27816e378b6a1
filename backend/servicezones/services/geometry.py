"""Geometry pipeline: normalization, simplification and union of boundary polygons.

All functions are pure. Coordinates are WGS84 longitude/latitude, so
simplification tolerances are expressed in degrees.
"""
import logging
import warnings
from typing import Iterable, Optional

import shapely
from pyproj import Geod
from shapely.geometry import GeometryCollection, MultiPolygon, Point, Polygon, mapping, shape
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.validation import make_valid

from servicezones.config import get_settings
from servicezones.exceptions import GeometryDegradation

logger = logging.getLogger(__name__)

_GEOD = Geod(ellps="WGS84")


def _degraded(message: str, *args) -> None:
    text = message % args if args else message
    logger.warning("Geometry degradation: %s", text)
    warnings.warn(text, GeometryDegradation, stacklevel=3)


def _polygon_parts(geometry: BaseGeometry) -> list[Polygon]:
    """Collect the non-empty polygons contained in a geometry."""
    if geometry is None or geometry.is_empty:
        return []
    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, (MultiPolygon, GeometryCollection)):
        parts = []
        for member in geometry.geoms:
            parts.extend(_polygon_parts(member))
        return parts
    return []


def normalize(geometry: BaseGeometry) -> BaseGeometry:
    """Return a multipolygon form of the input.

    A Polygon becomes a one-member MultiPolygon and a MultiPolygon is copied.
    A GeometryCollection holding only polygons is flattened. Any other shape
    is copied unchanged and flagged for review.
    """
    if isinstance(geometry, Polygon):
        return MultiPolygon([geometry])
    if isinstance(geometry, MultiPolygon):
        return MultiPolygon(list(geometry.geoms))
    if isinstance(geometry, GeometryCollection) and not geometry.is_empty:
        parts = _polygon_parts(geometry)
        if parts and all(isinstance(g, (Polygon, MultiPolygon)) for g in geometry.geoms):
            return MultiPolygon(parts)
    _degraded("non-polygonal geometry %s kept as-is", geometry.geom_type)
    return shape(mapping(geometry))


def vertex_count(geometry: Optional[BaseGeometry]) -> int:
    if geometry is None:
        return 0
    return int(shapely.get_num_coordinates(geometry))


def simplify(geometry: BaseGeometry, tolerance: float) -> BaseGeometry:
    """Douglas-Peucker simplification followed by normalization.

    Falls back to the normalized input when simplification fails or would
    produce an empty or larger geometry.
    """
    normalized = normalize(geometry)
    if tolerance <= 0 or not isinstance(normalized, MultiPolygon):
        return normalized

    try:
        reduced = normalized.simplify(tolerance, preserve_topology=True)
        parts = _polygon_parts(reduced)
        result = MultiPolygon(parts) if parts else None
    except Exception as exc:
        _degraded("simplify(tolerance=%s) failed: %s", tolerance, exc)
        return normalized

    if result is None or result.is_empty:
        _degraded("simplify(tolerance=%s) collapsed the geometry", tolerance)
        return normalized
    if vertex_count(result) > vertex_count(normalized):
        return normalized
    return result


def repair(geometry: Optional[BaseGeometry]) -> Optional[BaseGeometry]:
    """Make a geometry valid and keep only its polygonal part; None when nothing polygonal is left."""
    if geometry is None or geometry.is_empty:
        return None
    if not geometry.is_valid:
        geometry = make_valid(geometry)
    parts = _polygon_parts(geometry)
    if not parts:
        return None
    return parts[0] if len(parts) == 1 else MultiPolygon(parts)


def union(geometries: Iterable[Optional[BaseGeometry]]) -> Optional[MultiPolygon]:
    """Union polygons into one multipolygon.

    Returns None when no usable polygon is supplied. A single input is
    normalized without running the union.
    """
    usable = [g for g in (repair(geometry) for geometry in geometries) if g is not None]
    if not usable:
        return None
    if len(usable) == 1:
        return normalize(usable[0])

    try:
        merged = unary_union(usable)
    except Exception as exc:
        _degraded("union of %d parts failed: %s", len(usable), exc)
        parts = []
        for geometry in usable:
            parts.extend(_polygon_parts(geometry))
        return MultiPolygon(parts)

    parts = _polygon_parts(merged)
    if not parts:
        return None
    return MultiPolygon(parts)


def centroid_of(geometry: Optional[BaseGeometry]) -> Optional[Point]:
    if geometry is None or geometry.is_empty:
        return None
    centroid = geometry.centroid
    if centroid.is_empty:
        return None
    return centroid


def geodesic_area_m2(geometry: Optional[BaseGeometry]) -> float:
    """Area on the WGS84 ellipsoid in square meters."""
    if geometry is None or geometry.is_empty:
        return 0.0
    area, _ = _GEOD.geometry_area_perimeter(geometry)
    return abs(area)


def tolerance_for_level(level: int) -> float:
    """Simplification tolerance for an administrative level; larger units simplify harder."""
    settings = get_settings()
    if level <= 0:
        return settings.SIMPLIFY_TOLERANCE_COUNTRY
    if level == 1:
        return settings.SIMPLIFY_TOLERANCE_REGION
    return settings.SIMPLIFY_TOLERANCE_SUBREGION


def custom_zone_tolerance() -> float:
    return get_settings().SIMPLIFY_TOLERANCE_CUSTOM


def from_geojson(data: Optional[dict]) -> Optional[BaseGeometry]:
    """Build a geometry from a GeoJSON geometry mapping; None when absent or unreadable."""
    if not data:
        return None
    try:
        return shape(data)
    except (ShapelyError, ValueError, TypeError, AttributeError, KeyError, IndexError) as exc:
        logger.debug("Unreadable GeoJSON geometry: %s", exc)
        return None


def to_geojson(geometry: Optional[BaseGeometry]) -> Optional[dict]:
    if geometry is None:
        return None
    return mapping(geometry)
