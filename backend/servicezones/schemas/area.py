"""Pydantic schemas for operational areas."""
from enum import Enum
from typing import Any, Optional, List
from pydantic import BaseModel, Field, model_validator


class AreaKind(str, Enum):
    WHOLE_REGION = "whole_region"
    COMPOSITE = "composite"
    DIRECT = "direct"


DEFAULT_DISPLAY_LEVELS = {
    AreaKind.WHOLE_REGION: "Governorate",
    AreaKind.COMPOSITE: "Zone",
    AreaKind.DIRECT: "District",
}


class AreaDefinition(BaseModel):
    """One operational area to synthesize from the boundary tree."""
    kind: AreaKind
    name_en: str = Field(..., min_length=1, max_length=150)
    name_ar: Optional[str] = Field(None, max_length=150)
    slug: Optional[str] = Field(None, max_length=150)
    display_level: Optional[str] = Field(None, max_length=50)
    # Official codes: one level-1 code (whole_region), one level-2 code (direct)
    # or the level-2 parts of a composite
    codes: List[str] = Field(..., min_length=1)
    # Level-1 code used as display context for composites
    context_code: Optional[str] = None
    country_code: Optional[str] = Field(None, max_length=10)
    default_search_radius_meters: Optional[float] = Field(None, gt=0)
    default_map_zoom_level: Optional[int] = Field(None, ge=0, le=22)
    fallback_latitude: Optional[float] = Field(None, ge=-90, le=90)
    fallback_longitude: Optional[float] = Field(None, ge=-180, le=180)
    is_active: bool = True

    @model_validator(mode="after")
    def check_codes(self) -> "AreaDefinition":
        if self.kind != AreaKind.COMPOSITE and len(self.codes) != 1:
            raise ValueError(f"{self.kind.value} areas take exactly one boundary code")
        if (self.fallback_latitude is None) != (self.fallback_longitude is None):
            raise ValueError("fallback_latitude and fallback_longitude go together")
        return self

    @property
    def effective_display_level(self) -> str:
        return self.display_level or DEFAULT_DISPLAY_LEVELS[self.kind]


class OperationalAreaResponse(BaseModel):
    """Operational area with its simplified geometry for map display."""
    id: int
    name_en: str
    name_ar: str
    slug: str
    display_level: Optional[str] = None
    centroid_latitude: float
    centroid_longitude: float
    default_search_radius_meters: Optional[float] = None
    default_map_zoom_level: Optional[int] = None
    geometry_source: str
    primary_administrative_boundary_id: Optional[int] = None
    is_active: bool
    geometry: Optional[dict[str, Any]] = None


class SubCategoryCount(BaseModel):
    """Shop count for one category inside an area."""
    slug: str
    name: str
    concept: str
    shop_count: int


class SubCategoryListResponse(BaseModel):
    area_slug: str
    items: List[SubCategoryCount]
