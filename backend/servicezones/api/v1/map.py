"""Map viewport API endpoints."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from servicezones.api.v1.errors import invalid_query, parse_category
from servicezones.exceptions import QueryValidationError
from servicezones.schemas.map import MapResponse
from servicezones.services.map_query import MapFilters, MapQueryEngine, validate_viewport
from servicezones.services.store import get_store
from servicezones.services.store_base import BoundaryStore

router = APIRouter(tags=["Map"])


@router.get("/map-data", response_model=MapResponse)
async def get_map_data(
    min_lat: float = Query(..., alias="minLat"),
    min_lon: float = Query(..., alias="minLon"),
    max_lat: float = Query(..., alias="maxLat"),
    max_lon: float = Query(..., alias="maxLon"),
    zoom_level: int = Query(..., alias="zoomLevel"),
    category: Optional[str] = Query(None),
    store: BoundaryStore = Depends(get_store),
):
    """
    Get map features for a viewport.

    Below the aggregation zoom threshold one shop count per administrative
    region in view is returned; at higher zoom the individual shops are.
    """
    try:
        bbox = validate_viewport(min_lat, min_lon, max_lat, max_lon, zoom_level)
    except QueryValidationError as exc:
        raise invalid_query(exc)

    filters = MapFilters(category=parse_category(category))
    return await MapQueryEngine(store).query(bbox, zoom_level, filters)
