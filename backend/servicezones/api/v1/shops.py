"""Shop search API endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from servicezones.api.v1.errors import area_not_found, invalid_query, parse_category
from servicezones.exceptions import AreaNotFoundError, QueryValidationError
from servicezones.schemas.shop import RadiusSearchResponse, radius_search_response
from servicezones.services.radius_search import RadiusQuery, RadiusSearchEngine
from servicezones.services.store import get_store
from servicezones.services.store_base import BoundaryStore

router = APIRouter(prefix="/shops", tags=["Shops"])


async def run_search(store: BoundaryStore, query: RadiusQuery) -> RadiusSearchResponse:
    """Run a radius search and map domain errors to HTTP errors."""
    try:
        result = await RadiusSearchEngine(store).search(query)
    except QueryValidationError as exc:
        raise invalid_query(exc)
    except AreaNotFoundError as exc:
        raise area_not_found(exc)
    return radius_search_response(result)


@router.get("/nearby", response_model=RadiusSearchResponse)
async def find_nearby_shops(
    lat: float = Query(...),
    lon: float = Query(...),
    radius: Optional[float] = Query(None, description="Search radius in meters"),
    area_slug: Optional[str] = Query(None, alias="areaSlug"),
    category: Optional[str] = Query(None),
    name: Optional[str] = Query(None),
    services: Optional[str] = Query(None, description="Comma-separated service terms"),
    sort: Optional[str] = Query(None),
    page: int = Query(1),
    page_size: Optional[int] = Query(None, alias="pageSize"),
    store: BoundaryStore = Depends(get_store),
):
    """
    Find shops within a radius of a point.

    When no radius is given, the default radius of the named operational area
    (or of the area containing the point) is used.
    """
    query = RadiusQuery(
        lat=lat,
        lon=lon,
        radius_meters=radius,
        area_slug=area_slug,
        category=parse_category(category),
        name=name,
        services=services,
        sort=sort,
        page=page,
        page_size=page_size,
    )
    return await run_search(store, query)
