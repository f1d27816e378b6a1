"""Radius and distance search over shops.

Distances are great-circle (haversine). A search with a point is always
bounded: an omitted radius is replaced by the default radius of the named or
containing operational area, or the configured fallback.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Optional

from servicezones.config import get_settings
from servicezones.domain import (
    SORT_DISTANCE_ASC,
    SORT_MODES,
    SORT_NAME_ASC,
    AreaRecord,
    ShopCategory,
    ShopFilter,
    ShopRecord,
)
from servicezones.exceptions import AreaNotFoundError, QueryValidationError
from servicezones.services.store_base import BoundaryStore
from servicezones.utils.geo import validate_coordinates

logger = logging.getLogger(__name__)

NAME_FILTER_MAX_LENGTH = 100
SERVICES_FILTER_MAX_LENGTH = 200


@dataclass
class RadiusQuery:
    lat: Optional[float] = None
    lon: Optional[float] = None
    radius_meters: Optional[float] = None
    area_slug: Optional[str] = None
    category: Optional[ShopCategory] = None
    name: Optional[str] = None
    # Comma-separated; a shop matches when it offers any of the terms
    services: Optional[str] = None
    sort: Optional[str] = None
    page: int = 1
    page_size: Optional[int] = None

    @property
    def has_point(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def service_terms(self) -> list[str]:
        if not self.services:
            return []
        return [term.strip() for term in self.services.split(",") if term.strip()]


@dataclass
class RankedShop:
    shop: ShopRecord
    distance_meters: Optional[float] = None


@dataclass
class RadiusSearchResult:
    items: list[RankedShop] = field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 10
    effective_radius_meters: Optional[float] = None

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


def validate_radius_query(query: RadiusQuery) -> list[dict[str, Any]]:
    """Return field errors for a radius query; empty when the query is usable."""
    settings = get_settings()
    errors: list[dict[str, Any]] = []

    if (query.lat is None) != (query.lon is None):
        errors.append({"field": "lat", "message": "lat and lon must be supplied together"})
    for problem in validate_coordinates(query.lat, query.lon):
        errors.append({"field": "lat" if problem.startswith("latitude") else "lon", "message": problem})

    if query.radius_meters is not None:
        if not 1 <= query.radius_meters <= settings.MAX_SEARCH_RADIUS_METERS:
            errors.append({
                "field": "radius",
                "message": f"must be between 1 and {settings.MAX_SEARCH_RADIUS_METERS:g} meters",
            })
        elif not query.has_point:
            errors.append({"field": "radius", "message": "radius requires lat and lon"})

    if query.sort not in (None, "") and query.sort not in SORT_MODES:
        errors.append({"field": "sort", "message": f"must be one of {', '.join(SORT_MODES)}"})
    elif query.sort == SORT_DISTANCE_ASC and not query.has_point:
        errors.append({"field": "sort", "message": "distance_asc requires lat and lon"})

    if query.name and len(query.name) > NAME_FILTER_MAX_LENGTH:
        errors.append({"field": "name", "message": f"must be at most {NAME_FILTER_MAX_LENGTH} characters"})
    if query.services and len(query.services) > SERVICES_FILTER_MAX_LENGTH:
        errors.append({
            "field": "services",
            "message": f"must be at most {SERVICES_FILTER_MAX_LENGTH} characters",
        })

    if query.page < 1:
        errors.append({"field": "page", "message": "must be at least 1"})
    if query.page_size is not None and not 1 <= query.page_size <= settings.MAX_PAGE_SIZE:
        errors.append({"field": "page_size", "message": f"must be between 1 and {settings.MAX_PAGE_SIZE}"})
    return errors


class RadiusSearchEngine:
    """Filters, ranks and pages shops around a point or inside an area."""

    def __init__(self, store: BoundaryStore):
        self.store = store

    async def search(self, query: RadiusQuery) -> RadiusSearchResult:
        """Run a radius search.

        Raises:
            QueryValidationError: malformed parameters
            AreaNotFoundError: ``area_slug`` names no active area
        """
        errors = validate_radius_query(query)
        if errors:
            raise QueryValidationError(errors)

        settings = get_settings()
        area = None
        if query.area_slug:
            slug = query.area_slug.strip().lower()
            area = await self.store.get_area_by_slug(slug)
            if area is None:
                raise AreaNotFoundError(slug, await self.store.area_slugs())

        filters = ShopFilter(
            area_id=area.id if area else None,
            category=query.category,
            name=query.name or None,
            services=query.service_terms,
        )
        sort = query.sort or (SORT_DISTANCE_ASC if query.has_point else SORT_NAME_ASC)
        page_size = query.page_size or settings.DEFAULT_PAGE_SIZE

        radius = None
        near = None
        if query.has_point:
            radius = await self._effective_radius(query, area)
            near = (query.lat, query.lon, radius)
        page = await self.store.search_shops(
            filters,
            sort=sort,
            offset=(query.page - 1) * page_size,
            limit=page_size,
            near=near,
        )
        result = RadiusSearchResult(
            items=[RankedShop(shop, distance) for shop, distance in page.items],
            total_count=page.total_count,
            page=query.page,
            page_size=page_size,
            effective_radius_meters=radius,
        )
        logger.debug("Radius search (sort=%s, radius=%s) matched %d shops",
                     sort, radius, result.total_count)
        return result

    async def _effective_radius(self, query: RadiusQuery, area: Optional[AreaRecord]) -> float:
        settings = get_settings()
        if query.radius_meters is not None:
            return float(query.radius_meters)
        if area is None:
            area = await self.store.find_area_containing(query.lat, query.lon)
        if area is not None and area.default_search_radius_meters:
            return float(min(area.default_search_radius_meters, settings.MAX_SEARCH_RADIUS_METERS))
        return float(settings.DEFAULT_SEARCH_RADIUS_METERS)

