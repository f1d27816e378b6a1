"""Pydantic schemas for map viewport queries."""
from datetime import datetime
from typing import Literal, Optional, List, Union
from uuid import UUID
from pydantic import BaseModel, Field


class AdminAggregateFeature(BaseModel):
    """Cached shop count for one administrative boundary in view."""
    type: Literal["admin_aggregate"] = "admin_aggregate"
    id: int
    name_en: str
    name_ar: str
    centroid_lat: float
    centroid_lon: float
    shop_count: int
    last_updated_at: Optional[datetime] = None


class ShopPointFeature(BaseModel):
    """Individual shop location in view."""
    type: Literal["shop_point"] = "shop_point"
    id: UUID
    name_en: str
    name_ar: str
    lat: float
    lon: float
    category: str
    logo_url: Optional[str] = None


MapFeature = Union[AdminAggregateFeature, ShopPointFeature]


class MapResponse(BaseModel):
    """Zoom-adaptive map payload: aggregates at low zoom, shop points at high zoom."""
    mode: Literal["aggregate", "points"]
    zoom_level: int
    features: List[MapFeature] = Field(default_factory=list)
    # True when shop points were cut off at the configured cap
    truncated: bool = False
