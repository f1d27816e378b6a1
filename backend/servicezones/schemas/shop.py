"""Pydantic schemas for shops and shop queries."""
from typing import Optional, List, Union
from uuid import UUID
from pydantic import BaseModel, Field


class ShopSeed(BaseModel):
    """Shop source record bound to an operational area by explicit slug."""
    name_en: str = Field(..., min_length=1, max_length=200)
    name_ar: Optional[str] = Field(None, max_length=200)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    category: Union[int, str, None] = None
    target_operational_area_slug: str = Field(..., min_length=1, max_length=150)
    # Candidate slug; the shop name is used when absent
    slug: Optional[str] = Field(None, max_length=250)
    description: Optional[str] = None
    address: Optional[str] = Field(None, max_length=500)
    phone_number: Optional[str] = Field(None, max_length=30)
    services_offered: Optional[str] = None
    opening_hours: Optional[str] = Field(None, max_length=200)
    logo_url: Optional[str] = Field(None, max_length=500)


class ShopResponse(BaseModel):
    """Shop details."""
    id: UUID
    name_en: str
    name_ar: str
    slug: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    latitude: float
    longitude: float
    phone_number: Optional[str] = None
    services_offered: Optional[str] = None
    opening_hours: Optional[str] = None
    category: str
    logo_url: Optional[str] = None
    operational_area_id: int

    class Config:
        from_attributes = True


class RankedShopResponse(ShopResponse):
    """Shop with its great-circle distance to the query point."""
    distance_meters: Optional[float] = None


class RadiusSearchResponse(BaseModel):
    """One page of radius search results."""
    items: List[RankedShopResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int
    has_previous: bool
    has_next: bool
    effective_radius_meters: Optional[float] = None


def shop_response(shop, distance_meters: Optional[float] = None) -> RankedShopResponse:
    """Build the API view of a shop record; the category is exposed by slug."""
    return RankedShopResponse(
        id=shop.id,
        name_en=shop.name_en,
        name_ar=shop.name_ar,
        slug=shop.slug,
        description=shop.description,
        address=shop.address,
        latitude=shop.latitude,
        longitude=shop.longitude,
        phone_number=shop.phone_number,
        services_offered=shop.services_offered,
        opening_hours=shop.opening_hours,
        category=shop.category.slug,
        logo_url=shop.logo_url,
        operational_area_id=shop.operational_area_id,
        distance_meters=distance_meters,
    )


def radius_search_response(result) -> RadiusSearchResponse:
    return RadiusSearchResponse(
        items=[shop_response(item.shop, item.distance_meters) for item in result.items],
        total_count=result.total_count,
        page=result.page,
        page_size=result.page_size,
        total_pages=result.total_pages,
        has_previous=result.has_previous,
        has_next=result.has_next,
        effective_radius_meters=result.effective_radius_meters,
    )
