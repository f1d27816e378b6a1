"""Regions API endpoints."""
from fastapi import APIRouter, Depends, Query

from servicezones.services import geometry
from servicezones.services.store import get_store
from servicezones.services.store_base import BoundaryStore

router = APIRouter(prefix="/regions", tags=["Regions"])


@router.get("/boundaries")
async def get_region_boundaries(
    level: int = Query(1, ge=1, le=2),
    store: BoundaryStore = Depends(get_store),
):
    """
    Get administrative boundaries of one level as a GeoJSON FeatureCollection.
    Geometries are the simplified boundaries used for map display.
    """
    boundaries = await store.list_boundaries(level=level)
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "id": boundary.id,
                "geometry": geometry.to_geojson(boundary.simplified_boundary),
                "properties": {
                    "name_en": boundary.name_en,
                    "name_ar": boundary.name_ar,
                    "official_code": boundary.official_code,
                    "admin_level": boundary.admin_level,
                    "parent_id": boundary.parent_id,
                },
            }
            for boundary in boundaries
        ],
    }
