"""Operational area API endpoints."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from servicezones.api.v1.errors import area_not_found, invalid_query
from servicezones.api.v1.shops import run_search
from servicezones.domain import AreaRecord, HighLevelConcept, ShopCategory
from servicezones.exceptions import AreaNotFoundError, QueryValidationError
from servicezones.schemas.area import (
    OperationalAreaResponse,
    SubCategoryCount,
    SubCategoryListResponse,
)
from servicezones.schemas.shop import RadiusSearchResponse, ShopResponse, shop_response
from servicezones.services import geometry
from servicezones.services.radius_search import RadiusQuery
from servicezones.services.store import get_store
from servicezones.services.store_base import BoundaryStore

router = APIRouter(tags=["Operational Areas"])


async def _get_area_or_404(store: BoundaryStore, area_slug: str) -> AreaRecord:
    slug = area_slug.strip().lower()
    area = await store.get_area_by_slug(slug)
    if area is None:
        raise area_not_found(AreaNotFoundError(slug, await store.area_slugs()))
    return area


@router.get("/operational-areas-for-map", response_model=List[OperationalAreaResponse])
async def list_operational_areas_for_map(
    display_level: Optional[str] = Query(None, alias="displayLevel"),
    store: BoundaryStore = Depends(get_store),
):
    """
    Get active operational areas with their simplified geometry.

    Derived areas take the simplified boundary of their administrative region.
    """
    areas = await store.list_areas(active_only=True, display_level=display_level)
    response = []
    for area in areas:
        simplified = await store.resolve_area_geometry(area, simplified=True)
        response.append(OperationalAreaResponse(
            id=area.id,
            name_en=area.name_en,
            name_ar=area.name_ar,
            slug=area.slug,
            display_level=area.display_level,
            centroid_latitude=area.centroid_latitude,
            centroid_longitude=area.centroid_longitude,
            default_search_radius_meters=area.default_search_radius_meters,
            default_map_zoom_level=area.default_map_zoom_level,
            geometry_source=area.geometry_source.name.lower(),
            primary_administrative_boundary_id=area.primary_administrative_boundary_id,
            is_active=area.is_active,
            geometry=geometry.to_geojson(simplified),
        ))
    return response


@router.get(
    "/operational-areas/{area_slug}/categories/{category_slug}/shops",
    response_model=RadiusSearchResponse,
)
async def list_area_category_shops(
    area_slug: str,
    category_slug: str,
    lat: Optional[float] = Query(None),
    lon: Optional[float] = Query(None),
    radius: Optional[float] = Query(None, description="Search radius in meters"),
    name: Optional[str] = Query(None),
    services: Optional[str] = Query(None, description="Comma-separated service terms"),
    sort: Optional[str] = Query(None),
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    store: BoundaryStore = Depends(get_store),
):
    """List shops of one category inside an operational area."""
    category = ShopCategory.from_slug(category_slug)
    if category is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error_code": "CATEGORY_NOT_FOUND",
                "message": f"Category '{category_slug}' not found",
            },
        )

    query = RadiusQuery(
        lat=lat,
        lon=lon,
        radius_meters=radius,
        area_slug=area_slug,
        category=category,
        name=name,
        services=services,
        sort=sort,
        page=page,
        page_size=page_size,
    )
    return await run_search(store, query)


@router.get("/operational-areas/{area_slug}/shops/{shop_id}", response_model=ShopResponse)
async def get_area_shop(
    area_slug: str,
    shop_id: UUID,
    store: BoundaryStore = Depends(get_store),
):
    """Get one shop of an operational area."""
    area = await _get_area_or_404(store, area_slug)
    shop = await store.get_shop(shop_id)
    if shop is None or shop.is_deleted or shop.operational_area_id != area.id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error_code": "SHOP_NOT_FOUND", "message": "Shop not found"},
        )
    return shop_response(shop)


@router.get("/operational-areas/{area_slug}/subcategories", response_model=SubCategoryListResponse)
async def list_area_subcategories(
    area_slug: str,
    concept: Optional[str] = Query(None),
    store: BoundaryStore = Depends(get_store),
):
    """Count shops per category inside an operational area."""
    wanted = None
    if concept:
        try:
            wanted = HighLevelConcept(concept.strip().lower())
        except ValueError:
            raise invalid_query(QueryValidationError(
                [{"field": "concept", "message": f"unknown concept '{concept}'"}]
            ))

    area = await _get_area_or_404(store, area_slug)
    counts = await store.category_counts(area.id)

    items = [
        SubCategoryCount(
            slug=category.slug,
            name=category.name.replace("_", " ").title(),
            concept=category.concept.value,
            shop_count=count,
        )
        for category, count in sorted(counts.items())
        if count > 0 and (wanted is None or category.concept == wanted)
    ]
    return SubCategoryListResponse(area_slug=area.slug, items=items)
