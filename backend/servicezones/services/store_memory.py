"""In-memory boundary store implementation.

Keeps every table as an arena of records indexed by id, mirroring the
constraints the PostGIS schema enforces. Used for single-process deployments,
seed dry-runs and tests.
"""
import dataclasses
import itertools
import uuid
from datetime import datetime
from typing import Iterable, Optional

from shapely.geometry import Point

from servicezones.domain import (
    SORT_DISTANCE_ASC,
    SORT_NAME_ASC,
    SORT_NAME_DESC,
    AreaRecord,
    AreaShopStatsRecord,
    BoundaryRecord,
    BoundingBox,
    ShopCategory,
    ShopFilter,
    ShopPage,
    ShopRecord,
)
from servicezones.exceptions import SlugConflictError
from servicezones.services.store_base import BoundaryStore
from servicezones.utils.geo import bbox_around, haversine_meters


class InMemoryBoundaryStore(BoundaryStore):
    """Boundary store backed by process-local dictionaries."""

    def __init__(self):
        self._boundaries: dict[int, BoundaryRecord] = {}
        self._areas: dict[int, AreaRecord] = {}
        self._shops: dict[uuid.UUID, ShopRecord] = {}
        self._stats: dict[int, AreaShopStatsRecord] = {}
        self._boundary_ids = itertools.count(1)
        self._area_ids = itertools.count(1)

    # Administrative boundaries

    async def count_boundaries(self, level: int, country_code: Optional[str] = None) -> int:
        return sum(
            1 for b in self._boundaries.values()
            if b.admin_level == level and (country_code is None or b.country_code == country_code)
        )

    async def add_boundaries(self, records: list[BoundaryRecord]) -> list[BoundaryRecord]:
        existing = {(b.admin_level, b.country_code, b.official_code) for b in self._boundaries.values()}
        for record in records:
            key = (record.admin_level, record.country_code, record.official_code)
            if key in existing:
                raise ValueError(f"Duplicate boundary code {record.official_code} at level {record.admin_level}")
            if record.parent_id is not None and record.parent_id not in self._boundaries:
                raise ValueError(f"Parent boundary {record.parent_id} does not exist")
            existing.add(key)

        now = datetime.utcnow()
        stored = []
        for record in records:
            saved = dataclasses.replace(record, id=next(self._boundary_ids), created_at=now, updated_at=now)
            self._boundaries[saved.id] = saved
            stored.append(saved)
        return stored

    async def get_boundary(self, boundary_id: int) -> Optional[BoundaryRecord]:
        return self._boundaries.get(boundary_id)

    async def list_boundaries(
        self,
        level: Optional[int] = None,
        active_only: bool = True,
    ) -> list[BoundaryRecord]:
        return [
            b for _, b in sorted(self._boundaries.items())
            if (level is None or b.admin_level == level) and (b.is_active or not active_only)
        ]

    async def get_boundaries_by_codes(
        self,
        level: int,
        codes: Iterable[str],
        country_code: Optional[str] = None,
    ) -> dict[str, BoundaryRecord]:
        wanted = set(codes)
        return {
            b.official_code: b for b in self._boundaries.values()
            if b.admin_level == level
            and b.official_code in wanted
            and (country_code is None or b.country_code == country_code)
        }

    async def boundaries_in_bbox(self, bbox: BoundingBox, level: int) -> list[BoundaryRecord]:
        viewport = bbox.to_polygon()
        matches = []
        for boundary in await self.list_boundaries(level=level):
            if boundary.boundary is not None and boundary.boundary.intersects(viewport):
                matches.append(boundary)
            elif boundary.centroid is not None and viewport.intersects(boundary.centroid):
                matches.append(boundary)
        return matches

    async def delete_boundaries(self, level: int, country_code: Optional[str] = None) -> int:
        doomed = {
            bid for bid, b in self._boundaries.items()
            if b.admin_level == level and (country_code is None or b.country_code == country_code)
        }
        if any(b.parent_id in doomed for bid, b in self._boundaries.items() if bid not in doomed):
            raise ValueError(f"Level {level} boundaries are still referenced by child boundaries")
        for bid in doomed:
            del self._boundaries[bid]
            self._stats.pop(bid, None)
        return len(doomed)

    # Operational areas

    async def count_areas(self) -> int:
        return len(self._areas)

    async def add_area(self, area: AreaRecord) -> AreaRecord:
        if any(a.slug == area.slug for a in self._areas.values()):
            raise ValueError(f"Operational area slug '{area.slug}' already exists")
        referenced = area.primary_administrative_boundary_id
        if referenced is not None and referenced not in self._boundaries:
            raise ValueError(f"Boundary {referenced} does not exist")
        saved = dataclasses.replace(area, id=next(self._area_ids))
        self._areas[saved.id] = saved
        return saved

    async def get_area(self, area_id: int) -> Optional[AreaRecord]:
        return self._areas.get(area_id)

    async def get_area_by_slug(self, slug: str, active_only: bool = True) -> Optional[AreaRecord]:
        for area in self._areas.values():
            if area.slug == slug and (area.is_active or not active_only):
                return area
        return None

    async def list_areas(
        self,
        active_only: bool = True,
        display_level: Optional[str] = None,
    ) -> list[AreaRecord]:
        areas = [
            a for a in self._areas.values()
            if (a.is_active or not active_only)
            and (display_level is None or (a.display_level or "").lower() == display_level.lower())
        ]
        return sorted(areas, key=lambda a: (a.name_en.lower(), a.id))

    async def area_slugs(self) -> set[str]:
        return {a.slug for a in self._areas.values()}

    async def find_area_containing(self, lat: float, lon: float) -> Optional[AreaRecord]:
        point = Point(lon, lat)
        best = None
        best_size = None
        for area in await self.list_areas():
            geometry = await self.resolve_area_geometry(area)
            if geometry is None or not geometry.covers(point):
                continue
            size = geometry.area
            if best is None or size < best_size:
                best, best_size = area, size
        return best

    async def delete_areas(self) -> int:
        if self._shops:
            raise ValueError("Operational areas are still referenced by shops")
        count = len(self._areas)
        self._areas.clear()
        return count

    # Shops

    async def add_shop(self, shop: ShopRecord) -> ShopRecord:
        if shop.operational_area_id not in self._areas:
            raise ValueError(f"Operational area {shop.operational_area_id} does not exist")
        if shop.slug is not None and shop.slug in await self.shop_slugs_in_area(shop.operational_area_id):
            raise SlugConflictError(shop.operational_area_id, shop.slug)
        now = datetime.utcnow()
        saved = dataclasses.replace(shop, created_at=now, updated_at=now)
        self._shops[saved.id] = saved
        return saved

    async def get_shop(self, shop_id: uuid.UUID) -> Optional[ShopRecord]:
        return self._shops.get(shop_id)

    async def shop_slugs_in_area(self, area_id: int) -> set[str]:
        return {
            s.slug for s in self._shops.values()
            if s.operational_area_id == area_id and s.slug is not None
        }

    def _live_shops(self) -> list[ShopRecord]:
        return [s for s in self._shops.values() if not s.is_deleted]

    async def shops_in_bbox(
        self,
        bbox: BoundingBox,
        limit: int,
        category: Optional[ShopCategory] = None,
    ) -> list[ShopRecord]:
        matches = [
            s for s in self._live_shops()
            if bbox.contains_point(s.latitude, s.longitude)
            and (category is None or s.category == category)
        ]
        matches.sort(key=lambda s: s.id)
        return matches[:limit]

    async def search_shops(
        self,
        filters: ShopFilter,
        sort: str = SORT_NAME_ASC,
        offset: int = 0,
        limit: Optional[int] = None,
        near: Optional[tuple[float, float, float]] = None,
    ) -> ShopPage:
        candidates = [s for s in self._live_shops() if _matches(s, filters)]
        if near is None:
            if sort == SORT_DISTANCE_ASC:
                raise ValueError("distance ordering needs a point")
            matches = [(s, None) for s in candidates]
        else:
            lat, lon, radius = near
            box = bbox_around(lat, lon, radius)
            matches = []
            for shop in candidates:
                if not box.contains_point(shop.latitude, shop.longitude):
                    continue
                distance = haversine_meters(lat, lon, shop.latitude, shop.longitude)
                if distance <= radius:
                    matches.append((shop, distance))

        # Stable sorts keep id order among equal keys, in both directions
        matches.sort(key=lambda m: m[0].id)
        if sort == SORT_DISTANCE_ASC:
            matches.sort(key=lambda m: m[1])
        else:
            matches.sort(key=lambda m: m[0].name_en.lower(), reverse=sort == SORT_NAME_DESC)
        end = None if limit is None else offset + limit
        return ShopPage(items=matches[offset:end], total_count=len(matches))

    async def count_shops_in_boundary(self, boundary_id: int) -> int:
        boundary = self._boundaries.get(boundary_id)
        if boundary is None or boundary.boundary is None:
            return 0
        geometry = boundary.boundary
        return sum(1 for s in self._live_shops() if geometry.intersects(s.location))

    async def category_counts(self, area_id: int) -> dict[ShopCategory, int]:
        counts: dict[ShopCategory, int] = {}
        for shop in self._live_shops():
            if shop.operational_area_id == area_id:
                counts[shop.category] = counts.get(shop.category, 0) + 1
        return counts

    async def delete_shops(self) -> int:
        count = len(self._shops)
        self._shops.clear()
        return count

    # Cached shop counts

    async def get_stats(self, boundary_ids: Iterable[int]) -> dict[int, AreaShopStatsRecord]:
        return {bid: self._stats[bid] for bid in boundary_ids if bid in self._stats}

    async def upsert_stats(self, boundary_id: int, shop_count: int, updated_at: datetime) -> None:
        if boundary_id not in self._boundaries:
            raise ValueError(f"Boundary {boundary_id} does not exist")
        self._stats[boundary_id] = AreaShopStatsRecord(boundary_id, shop_count, updated_at)

    async def delete_stats(self) -> int:
        count = len(self._stats)
        self._stats.clear()
        return count


def _matches(shop: ShopRecord, filters: ShopFilter) -> bool:
    if filters.area_id is not None and shop.operational_area_id != filters.area_id:
        return False
    if filters.category is not None and shop.category != filters.category:
        return False
    if filters.name:
        needle = filters.name.lower()
        if needle not in shop.name_en.lower() and needle not in (shop.name_ar or "").lower():
            return False
    if filters.services:
        offered = (shop.services_offered or "").lower()
        if not any(term.lower() in offered for term in filters.services):
            return False
    return True
