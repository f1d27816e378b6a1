"""Plain records shared by the services and both store implementations.

Boundaries form a tree held as an arena: every record is addressed by id and
points at its parent through ``parent_id`` only. Operational areas carry their
geometry source as a tagged variant, ``CustomGeometry`` or
``AdminDerivedGeometry``, so exactly one of the inline geometry or the boundary
reference is authoritative.
"""
import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from shapely.geometry import Point, box
from shapely.geometry.base import BaseGeometry


class GeometrySource(enum.IntEnum):
    UNDEFINED = 0
    CUSTOM = 1
    DERIVED_FROM_ADMIN = 2


class HighLevelConcept(str, enum.Enum):
    UNKNOWN = "unknown"
    MAINTENANCE = "maintenance"
    MARKETPLACE = "marketplace"


class ShopCategory(enum.IntEnum):
    UNKNOWN = 0
    GENERAL_MAINTENANCE = 1
    CAR_WASH = 2
    TIRE_SERVICES = 3
    OIL_CHANGE = 4
    EV_CHARGING = 5
    BODY_REPAIR_AND_PAINT = 6
    DIAGNOSTICS = 7
    BRAKES = 8
    AC_REPAIR = 9
    NEW_AUTO_PARTS = 101
    USED_AUTO_PARTS = 102
    CAR_ACCESSORIES = 103
    PERFORMANCE_PARTS = 104

    @property
    def slug(self) -> str:
        return _CATEGORY_SLUGS[self]

    @property
    def concept(self) -> HighLevelConcept:
        if self is ShopCategory.UNKNOWN:
            return HighLevelConcept.UNKNOWN
        if self.value >= 100:
            return HighLevelConcept.MARKETPLACE
        return HighLevelConcept.MAINTENANCE

    @classmethod
    def from_slug(cls, slug: Optional[str]) -> Optional["ShopCategory"]:
        """Look up a category by URL slug; None when the slug is unknown."""
        if not slug:
            return None
        return _SLUG_CATEGORIES.get(slug.strip().lower())

    @classmethod
    def parse(cls, value) -> "ShopCategory":
        """Parse a category from an int, enum name or slug; UNKNOWN when unrecognized."""
        if isinstance(value, ShopCategory):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return cls.UNKNOWN
        if not value:
            return cls.UNKNOWN
        text = str(value).strip()
        by_slug = cls.from_slug(text)
        if by_slug is not None:
            return by_slug
        key = "".join(ch for ch in text.upper() if ch.isalnum())
        for member in cls:
            if member.name.replace("_", "") == key:
                return member
        return cls.UNKNOWN


_CATEGORY_SLUGS = {
    ShopCategory.UNKNOWN: "unknown",
    ShopCategory.GENERAL_MAINTENANCE: "general-maintenance",
    ShopCategory.CAR_WASH: "car-wash",
    ShopCategory.TIRE_SERVICES: "tire-services",
    ShopCategory.OIL_CHANGE: "oil-change",
    ShopCategory.EV_CHARGING: "ev-charging",
    ShopCategory.BODY_REPAIR_AND_PAINT: "body-repair-paint",
    ShopCategory.DIAGNOSTICS: "diagnostics",
    ShopCategory.BRAKES: "brakes",
    ShopCategory.AC_REPAIR: "ac-repair",
    ShopCategory.NEW_AUTO_PARTS: "new-auto-parts",
    ShopCategory.USED_AUTO_PARTS: "used-auto-parts",
    ShopCategory.CAR_ACCESSORIES: "car-accessories",
    ShopCategory.PERFORMANCE_PARTS: "performance-parts",
}
_SLUG_CATEGORIES = {slug: category for category, slug in _CATEGORY_SLUGS.items()}


@dataclass
class BoundaryRecord:
    """One administrative boundary in the arena."""
    name_en: str
    name_ar: str
    admin_level: int
    official_code: str
    boundary: BaseGeometry
    simplified_boundary: BaseGeometry
    centroid: Optional[Point]
    country_code: Optional[str] = None
    parent_id: Optional[int] = None
    is_active: bool = True
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class CustomGeometry:
    """Inline geometry; the boundary id, if any, is display context only."""
    boundary: BaseGeometry
    simplified_boundary: BaseGeometry
    context_boundary_id: Optional[int] = None

    source = GeometrySource.CUSTOM


@dataclass(frozen=True)
class AdminDerivedGeometry:
    """Geometry borrowed from an administrative boundary."""
    boundary_id: int

    source = GeometrySource.DERIVED_FROM_ADMIN


AreaGeometry = Union[CustomGeometry, AdminDerivedGeometry]


@dataclass
class AreaRecord:
    """A business-facing operational area."""
    name_en: str
    name_ar: str
    slug: str
    geometry: AreaGeometry
    centroid_latitude: float
    centroid_longitude: float
    display_level: Optional[str] = None
    default_search_radius_meters: Optional[float] = None
    default_map_zoom_level: Optional[int] = None
    is_active: bool = True
    id: Optional[int] = None

    @property
    def geometry_source(self) -> GeometrySource:
        return self.geometry.source

    @property
    def primary_administrative_boundary_id(self) -> Optional[int]:
        if isinstance(self.geometry, AdminDerivedGeometry):
            return self.geometry.boundary_id
        return self.geometry.context_boundary_id


@dataclass
class ShopRecord:
    """A service provider bound to an operational area."""
    name_en: str
    name_ar: str
    latitude: float
    longitude: float
    operational_area_id: int
    category: ShopCategory = ShopCategory.UNKNOWN
    slug: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    phone_number: Optional[str] = None
    services_offered: Optional[str] = None
    opening_hours: Optional[str] = None
    logo_url: Optional[str] = None
    is_deleted: bool = False
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def location(self) -> Point:
        return Point(self.longitude, self.latitude)


@dataclass
class AreaShopStatsRecord:
    administrative_boundary_id: int
    shop_count: int
    last_updated_at: datetime


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    min_lon: float
    max_lat: float
    max_lon: float

    def to_polygon(self):
        return box(self.min_lon, self.min_lat, self.max_lon, self.max_lat)

    def contains_point(self, lat: float, lon: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


SORT_DISTANCE_ASC = "distance_asc"
SORT_NAME_ASC = "name_asc"
SORT_NAME_DESC = "name_desc"
SORT_MODES = (SORT_DISTANCE_ASC, SORT_NAME_ASC, SORT_NAME_DESC)


@dataclass
class ShopFilter:
    """Attribute filters applied by the store before any distance work."""
    area_id: Optional[int] = None
    category: Optional[ShopCategory] = None
    name: Optional[str] = None
    services: list[str] = field(default_factory=list)


@dataclass
class ShopPage:
    """One ordered page of matching shops.

    ``items`` pairs each shop with its great-circle distance in meters, or None
    when the search had no point. ``total_count`` counts every match, not just
    this page.
    """
    items: list[tuple[ShopRecord, Optional[float]]] = field(default_factory=list)
    total_count: int = 0


@dataclass
class BatchResult:
    """Outcome of one ingestion, synthesis or assignment batch."""
    inserted: int = 0
    skipped: int = 0
    skip_reasons: list[str] = field(default_factory=list)
    noop: bool = False

    def skip(self, reason: str, identifier: Optional[str] = None) -> None:
        self.skipped += 1
        self.skip_reasons.append(f"{identifier}: {reason}" if identifier else reason)

    def summary(self) -> str:
        if self.noop:
            return "no-op (target already populated)"
        return f"inserted={self.inserted} skipped={self.skipped}"
