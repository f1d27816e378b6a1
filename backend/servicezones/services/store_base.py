"""Boundary store abstract base class.

Defines the persistence contract for boundaries, operational areas, shops and
the cached shop counts. Consumers should use open_store() / get_store() from
store.py to get the active backend.
"""
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from shapely.geometry.base import BaseGeometry

from servicezones.domain import (
    SORT_NAME_ASC,
    AdminDerivedGeometry,
    AreaRecord,
    AreaShopStatsRecord,
    BoundaryRecord,
    BoundingBox,
    ShopCategory,
    ShopFilter,
    ShopPage,
    ShopRecord,
)


class BoundaryStore(ABC):
    """Abstract base class for boundary store backends."""

    # Administrative boundaries

    @abstractmethod
    async def count_boundaries(self, level: int, country_code: Optional[str] = None) -> int:
        """Count boundaries at a level, optionally within one country."""
        ...

    @abstractmethod
    async def add_boundaries(self, records: list[BoundaryRecord]) -> list[BoundaryRecord]:
        """Insert boundaries in one batch and return them with ids assigned."""
        ...

    @abstractmethod
    async def get_boundary(self, boundary_id: int) -> Optional[BoundaryRecord]:
        ...

    @abstractmethod
    async def list_boundaries(
        self,
        level: Optional[int] = None,
        active_only: bool = True,
    ) -> list[BoundaryRecord]:
        """List boundaries ordered by id."""
        ...

    @abstractmethod
    async def get_boundaries_by_codes(
        self,
        level: int,
        codes: Iterable[str],
        country_code: Optional[str] = None,
    ) -> dict[str, BoundaryRecord]:
        """Map official code to boundary for the codes that exist at a level."""
        ...

    @abstractmethod
    async def boundaries_in_bbox(self, bbox: BoundingBox, level: int) -> list[BoundaryRecord]:
        """Active boundaries at a level whose geometry or centroid intersects the box, by id."""
        ...

    @abstractmethod
    async def delete_boundaries(self, level: int, country_code: Optional[str] = None) -> int:
        """Delete boundaries at a level, within one country when given.

        Callers delete dependent rows first.
        """
        ...

    # Operational areas

    @abstractmethod
    async def count_areas(self) -> int:
        ...

    @abstractmethod
    async def add_area(self, area: AreaRecord) -> AreaRecord:
        """Insert an area and return it with its id assigned."""
        ...

    @abstractmethod
    async def get_area(self, area_id: int) -> Optional[AreaRecord]:
        ...

    @abstractmethod
    async def get_area_by_slug(self, slug: str, active_only: bool = True) -> Optional[AreaRecord]:
        ...

    @abstractmethod
    async def list_areas(
        self,
        active_only: bool = True,
        display_level: Optional[str] = None,
    ) -> list[AreaRecord]:
        """List areas ordered by English name."""
        ...

    @abstractmethod
    async def area_slugs(self) -> set[str]:
        ...

    @abstractmethod
    async def find_area_containing(self, lat: float, lon: float) -> Optional[AreaRecord]:
        """Smallest active area whose authoritative geometry contains the point."""
        ...

    @abstractmethod
    async def delete_areas(self) -> int:
        ...

    # Shops

    @abstractmethod
    async def add_shop(self, shop: ShopRecord) -> ShopRecord:
        """Insert a shop.

        Raises:
            SlugConflictError: the (operational_area_id, slug) pair is taken
        """
        ...

    @abstractmethod
    async def get_shop(self, shop_id: uuid.UUID) -> Optional[ShopRecord]:
        ...

    @abstractmethod
    async def shop_slugs_in_area(self, area_id: int) -> set[str]:
        ...

    @abstractmethod
    async def shops_in_bbox(
        self,
        bbox: BoundingBox,
        limit: int,
        category: Optional[ShopCategory] = None,
    ) -> list[ShopRecord]:
        """Non-deleted shops inside the box, ordered by id, at most ``limit``."""
        ...

    @abstractmethod
    async def search_shops(
        self,
        filters: ShopFilter,
        sort: str = SORT_NAME_ASC,
        offset: int = 0,
        limit: Optional[int] = None,
        near: Optional[tuple[float, float, float]] = None,
    ) -> ShopPage:
        """Non-deleted shops matching the filters, ordered and paged.

        Args:
            filters: attribute filters
            sort: one of SORT_MODES; ties are broken by shop id.
                SORT_DISTANCE_ASC requires ``near``
            offset: matches to skip
            limit: page size; None returns every match
            near: optional (lat, lon, radius_meters); only shops within the
                great-circle radius match

        Returns:
            ShopPage with the requested slice and the total match count
        """
        ...

    @abstractmethod
    async def count_shops_in_boundary(self, boundary_id: int) -> int:
        """Count non-deleted shops located inside a boundary's detailed geometry."""
        ...

    @abstractmethod
    async def category_counts(self, area_id: int) -> dict[ShopCategory, int]:
        ...

    @abstractmethod
    async def delete_shops(self) -> int:
        ...

    # Cached shop counts

    @abstractmethod
    async def get_stats(self, boundary_ids: Iterable[int]) -> dict[int, AreaShopStatsRecord]:
        ...

    @abstractmethod
    async def upsert_stats(self, boundary_id: int, shop_count: int, updated_at: datetime) -> None:
        ...

    @abstractmethod
    async def delete_stats(self) -> int:
        ...

    async def recover(self) -> None:
        """Return the store to a usable state after a failed operation."""
        return None

    async def resolve_area_geometry(
        self,
        area: AreaRecord,
        simplified: bool = False,
    ) -> Optional[BaseGeometry]:
        """Return the authoritative geometry of an area, following an admin reference."""
        if isinstance(area.geometry, AdminDerivedGeometry):
            if area.geometry.boundary_id is None:
                return None
            boundary = await self.get_boundary(area.geometry.boundary_id)
            if boundary is None:
                return None
            return boundary.simplified_boundary if simplified else boundary.boundary
        if simplified:
            return area.geometry.simplified_boundary
        return area.geometry.boundary

    async def reset(self, *, shops: bool = False, stats: bool = False, areas: bool = False,
                    boundary_levels: Iterable[int] = (),
                    country_code: Optional[str] = None) -> dict[str, int]:
        """Delete data in child-before-parent order.

        Boundary levels are deleted for ``country_code`` only when it is given.

        Returns:
            Rows deleted per table
        """
        deleted: dict[str, int] = {}
        if shops:
            deleted["shops"] = await self.delete_shops()
        if stats:
            deleted["admin_area_shop_stats"] = await self.delete_stats()
        if areas:
            deleted["operational_areas"] = await self.delete_areas()
        for level in sorted(set(boundary_levels), reverse=True):
            key = f"administrative_boundaries[level={level}]"
            deleted[key] = await self.delete_boundaries(level, country_code)
        return deleted
