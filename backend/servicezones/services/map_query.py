"""Zoom-adaptive viewport queries.

Below the zoom threshold the engine answers with one cached aggregate per
administrative boundary in view, so the payload grows with the number of
areas rather than the number of shops. At or above it, individual shop
points are returned, ordered by id and capped.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from servicezones.config import get_settings
from servicezones.domain import BoundingBox, ShopCategory
from servicezones.exceptions import QueryValidationError
from servicezones.schemas.map import AdminAggregateFeature, MapResponse, ShopPointFeature
from servicezones.services.store_base import BoundaryStore

logger = logging.getLogger(__name__)

MAX_ZOOM_LEVEL = 22


@dataclass(frozen=True)
class MapFilters:
    # Applies to shop points only; aggregates are not kept per category
    category: Optional[ShopCategory] = None


def validate_viewport(
    min_lat: float,
    min_lon: float,
    max_lat: float,
    max_lon: float,
    zoom_level: int,
) -> BoundingBox:
    """Check a viewport and zoom level, returning the bounding box."""
    errors = []
    for field, value, limit in (
        ("min_lat", min_lat, 90.0),
        ("max_lat", max_lat, 90.0),
        ("min_lon", min_lon, 180.0),
        ("max_lon", max_lon, 180.0),
    ):
        if not -limit <= value <= limit:
            errors.append({"field": field, "message": f"must be between -{limit:g} and {limit:g}"})
    if min_lat >= max_lat:
        errors.append({"field": "min_lat", "message": "must be less than max_lat"})
    if min_lon >= max_lon:
        errors.append({"field": "min_lon", "message": "must be less than max_lon"})
    if not 0 <= zoom_level <= MAX_ZOOM_LEVEL:
        errors.append({"field": "zoom_level", "message": f"must be between 0 and {MAX_ZOOM_LEVEL}"})
    if errors:
        raise QueryValidationError(errors, error_code="INVALID_BOUNDING_BOX")
    return BoundingBox(min_lat=min_lat, min_lon=min_lon, max_lat=max_lat, max_lon=max_lon)


class MapQueryEngine:
    """Answers map viewport queries from the store and the shop count cache."""

    def __init__(
        self,
        store: BoundaryStore,
        zoom_threshold: Optional[int] = None,
        max_shops: Optional[int] = None,
        aggregate_level: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.zoom_threshold = zoom_threshold if zoom_threshold is not None else settings.MAP_ZOOM_THRESHOLD
        self.max_shops = max_shops if max_shops is not None else settings.MAP_MAX_SHOPS
        self.aggregate_level = aggregate_level if aggregate_level is not None else settings.MAP_AGGREGATE_LEVEL

    async def query(
        self,
        bbox: BoundingBox,
        zoom_level: int,
        filters: Optional[MapFilters] = None,
    ) -> MapResponse:
        filters = filters or MapFilters()
        if zoom_level < self.zoom_threshold:
            return await self._aggregates(bbox, zoom_level)
        return await self._shop_points(bbox, zoom_level, filters)

    async def _aggregates(self, bbox: BoundingBox, zoom_level: int) -> MapResponse:
        boundaries = await self.store.boundaries_in_bbox(bbox, self.aggregate_level)
        stats = await self.store.get_stats([b.id for b in boundaries])

        features = []
        for boundary in boundaries:
            if boundary.centroid is None:
                logger.debug("Boundary %s has no centroid; left out of aggregates", boundary.id)
                continue
            cached = stats.get(boundary.id)
            features.append(AdminAggregateFeature(
                id=boundary.id,
                name_en=boundary.name_en,
                name_ar=boundary.name_ar,
                centroid_lat=boundary.centroid.y,
                centroid_lon=boundary.centroid.x,
                shop_count=cached.shop_count if cached else 0,
                last_updated_at=cached.last_updated_at if cached else None,
            ))

        logger.debug("Map aggregate query at zoom %d returned %d areas", zoom_level, len(features))
        return MapResponse(mode="aggregate", zoom_level=zoom_level, features=features)

    async def _shop_points(self, bbox: BoundingBox, zoom_level: int, filters: MapFilters) -> MapResponse:
        # One extra row tells us whether the cap cut anything off
        shops = await self.store.shops_in_bbox(bbox, self.max_shops + 1, filters.category)
        truncated = len(shops) > self.max_shops
        features = [
            ShopPointFeature(
                id=shop.id,
                name_en=shop.name_en,
                name_ar=shop.name_ar,
                lat=shop.latitude,
                lon=shop.longitude,
                category=shop.category.slug,
                logo_url=shop.logo_url,
            )
            for shop in shops[:self.max_shops]
        ]
        logger.debug("Map point query at zoom %d returned %d shops (truncated=%s)",
                     zoom_level, len(features), truncated)
        return MapResponse(mode="points", zoom_level=zoom_level, features=features, truncated=truncated)
