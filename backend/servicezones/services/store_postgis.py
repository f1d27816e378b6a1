"""PostGIS boundary store implementation.

Spatial predicates run in the database against GIST-indexed geography
columns. Viewport predicates cast to planar geometry so a bounding box keeps
its straight latitude/longitude edges.
"""
import uuid
from datetime import datetime
from typing import Iterable, Optional

from geoalchemy2 import Geography, Geometry
from geoalchemy2.shape import from_shape, to_shape
from sqlalchemy import Select, and_, cast, delete, func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicezones.domain import (
    SORT_DISTANCE_ASC,
    SORT_NAME_ASC,
    SORT_NAME_DESC,
    AdminDerivedGeometry,
    AreaRecord,
    AreaShopStatsRecord,
    BoundaryRecord,
    BoundingBox,
    CustomGeometry,
    GeometrySource,
    ShopCategory,
    ShopFilter,
    ShopPage,
    ShopRecord,
)
from servicezones.exceptions import SlugConflictError
from servicezones.models import AdminAreaShopStats, AdministrativeBoundary, OperationalArea, Shop
from servicezones.services.store_base import BoundaryStore

SRID = 4326

# Plain casts; the expression indexes are on (column::geometry)
_GEOMETRY = Geometry(geometry_type=None)
_GEOGRAPHY = Geography(geometry_type=None)


def _wkb(geometry):
    return from_shape(geometry, srid=SRID) if geometry is not None else None


def _shape(element):
    return to_shape(element) if element is not None else None


def _envelope(bbox: BoundingBox):
    return func.ST_MakeEnvelope(bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat, SRID)


def _as_geometry(column):
    return cast(column, _GEOMETRY)


def _geog_point(lat: float, lon: float):
    return cast(func.ST_SetSRID(func.ST_MakePoint(lon, lat), SRID), _GEOGRAPHY)


def shop_search_statements(
    filters: ShopFilter,
    sort: str = SORT_NAME_ASC,
    offset: int = 0,
    limit: Optional[int] = None,
    near: Optional[tuple[float, float, float]] = None,
) -> tuple[Select, Select]:
    """Build the (page, count) statements for a shop search.

    Distances use the sphere (use_spheroid=false) so they agree with haversine.
    """
    conditions = [Shop.is_deleted.is_(False)]
    if filters.area_id is not None:
        conditions.append(Shop.operational_area_id == filters.area_id)
    if filters.category is not None:
        conditions.append(Shop.category == int(filters.category))
    if filters.name:
        pattern = f"%{filters.name}%"
        conditions.append(or_(Shop.name_en.ilike(pattern), Shop.name_ar.ilike(pattern)))
    if filters.services:
        conditions.append(
            or_(*[Shop.services_offered.ilike(f"%{term}%") for term in filters.services])
        )

    if near is not None:
        lat, lon, radius = near
        point = _geog_point(lat, lon)
        conditions.append(func.ST_DWithin(Shop.location, point, radius, False))
        distance = func.ST_Distance(Shop.location, point, False).label("distance_meters")
        page = select(Shop, distance)
    elif sort == SORT_DISTANCE_ASC:
        raise ValueError("distance ordering needs a point")
    else:
        page = select(Shop)

    if sort == SORT_DISTANCE_ASC:
        page = page.order_by(distance, Shop.id)
    elif sort == SORT_NAME_DESC:
        page = page.order_by(func.lower(Shop.name_en).desc(), Shop.id)
    else:
        page = page.order_by(func.lower(Shop.name_en), Shop.id)

    page = page.where(and_(*conditions)).offset(offset)
    if limit is not None:
        page = page.limit(limit)
    count = select(func.count(Shop.id)).where(and_(*conditions))
    return page, count


def area_containing_statement(lat: float, lon: float) -> Select:
    """Smallest active area whose authoritative geometry covers the point."""
    geometry = func.coalesce(OperationalArea.custom_boundary, AdministrativeBoundary.boundary)
    return (
        select(OperationalArea)
        .outerjoin(
            AdministrativeBoundary,
            AdministrativeBoundary.id == OperationalArea.primary_administrative_boundary_id,
        )
        .where(
            OperationalArea.is_active.is_(True),
            func.ST_Covers(geometry, _geog_point(lat, lon)),
        )
        .order_by(func.ST_Area(geometry), OperationalArea.id)
        .limit(1)
    )


def _boundary_record(row: AdministrativeBoundary) -> BoundaryRecord:
    return BoundaryRecord(
        id=row.id,
        name_en=row.name_en,
        name_ar=row.name_ar,
        admin_level=row.admin_level,
        official_code=row.official_code,
        country_code=row.country_code,
        parent_id=row.parent_id,
        boundary=_shape(row.boundary),
        simplified_boundary=_shape(row.simplified_boundary),
        centroid=_shape(row.centroid),
        is_active=row.is_active,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _area_record(row: OperationalArea) -> AreaRecord:
    if row.geometry_source == GeometrySource.CUSTOM:
        detailed = _shape(row.custom_boundary)
        geometry = CustomGeometry(
            boundary=detailed,
            simplified_boundary=_shape(row.custom_simplified_boundary) or detailed,
            context_boundary_id=row.primary_administrative_boundary_id,
        )
    else:
        geometry = AdminDerivedGeometry(boundary_id=row.primary_administrative_boundary_id)
    return AreaRecord(
        id=row.id,
        name_en=row.name_en,
        name_ar=row.name_ar,
        slug=row.slug,
        geometry=geometry,
        centroid_latitude=row.centroid_latitude,
        centroid_longitude=row.centroid_longitude,
        display_level=row.display_level,
        default_search_radius_meters=row.default_search_radius_meters,
        default_map_zoom_level=row.default_map_zoom_level,
        is_active=row.is_active,
    )


def _shop_record(row: Shop) -> ShopRecord:
    point = to_shape(row.location)
    return ShopRecord(
        id=row.id,
        name_en=row.name_en,
        name_ar=row.name_ar,
        slug=row.slug,
        latitude=point.y,
        longitude=point.x,
        category=ShopCategory.parse(row.category),
        operational_area_id=row.operational_area_id,
        description=row.description,
        address=row.address,
        phone_number=row.phone_number,
        services_offered=row.services_offered,
        opening_hours=row.opening_hours,
        logo_url=row.logo_url,
        is_deleted=row.is_deleted,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class PostGISBoundaryStore(BoundaryStore):
    """Boundary store backed by PostgreSQL/PostGIS through an AsyncSession."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def recover(self) -> None:
        await self.session.rollback()

    # Administrative boundaries

    async def count_boundaries(self, level: int, country_code: Optional[str] = None) -> int:
        stmt = select(func.count(AdministrativeBoundary.id)).where(
            AdministrativeBoundary.admin_level == level
        )
        if country_code is not None:
            stmt = stmt.where(AdministrativeBoundary.country_code == country_code)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def add_boundaries(self, records: list[BoundaryRecord]) -> list[BoundaryRecord]:
        rows = [
            AdministrativeBoundary(
                name_en=r.name_en,
                name_ar=r.name_ar,
                admin_level=r.admin_level,
                official_code=r.official_code,
                country_code=r.country_code,
                parent_id=r.parent_id,
                boundary=_wkb(r.boundary),
                simplified_boundary=_wkb(r.simplified_boundary),
                centroid=_wkb(r.centroid),
                is_active=r.is_active,
            )
            for r in records
        ]
        self.session.add_all(rows)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        ids = [row.id for row in rows]
        result = await self.session.execute(
            select(AdministrativeBoundary)
            .where(AdministrativeBoundary.id.in_(ids))
            .order_by(AdministrativeBoundary.id)
        )
        return [_boundary_record(row) for row in result.scalars().all()]

    async def get_boundary(self, boundary_id: int) -> Optional[BoundaryRecord]:
        row = await self.session.get(AdministrativeBoundary, boundary_id)
        return _boundary_record(row) if row else None

    async def list_boundaries(
        self,
        level: Optional[int] = None,
        active_only: bool = True,
    ) -> list[BoundaryRecord]:
        stmt = select(AdministrativeBoundary).order_by(AdministrativeBoundary.id)
        if level is not None:
            stmt = stmt.where(AdministrativeBoundary.admin_level == level)
        if active_only:
            stmt = stmt.where(AdministrativeBoundary.is_active.is_(True))
        result = await self.session.execute(stmt)
        return [_boundary_record(row) for row in result.scalars().all()]

    async def get_boundaries_by_codes(
        self,
        level: int,
        codes: Iterable[str],
        country_code: Optional[str] = None,
    ) -> dict[str, BoundaryRecord]:
        wanted = list(set(codes))
        if not wanted:
            return {}
        stmt = select(AdministrativeBoundary).where(
            AdministrativeBoundary.admin_level == level,
            AdministrativeBoundary.official_code.in_(wanted),
        )
        if country_code is not None:
            stmt = stmt.where(AdministrativeBoundary.country_code == country_code)
        result = await self.session.execute(stmt)
        return {row.official_code: _boundary_record(row) for row in result.scalars().all()}

    async def boundaries_in_bbox(self, bbox: BoundingBox, level: int) -> list[BoundaryRecord]:
        envelope = _envelope(bbox)
        stmt = (
            select(AdministrativeBoundary)
            .where(
                AdministrativeBoundary.admin_level == level,
                AdministrativeBoundary.is_active.is_(True),
                or_(
                    func.ST_Intersects(_as_geometry(AdministrativeBoundary.boundary), envelope),
                    func.ST_Intersects(_as_geometry(AdministrativeBoundary.centroid), envelope),
                ),
            )
            .order_by(AdministrativeBoundary.id)
        )
        result = await self.session.execute(stmt)
        return [_boundary_record(row) for row in result.scalars().all()]

    async def delete_boundaries(self, level: int, country_code: Optional[str] = None) -> int:
        stmt = delete(AdministrativeBoundary).where(AdministrativeBoundary.admin_level == level)
        if country_code is not None:
            stmt = stmt.where(AdministrativeBoundary.country_code == country_code)
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0

    # Operational areas

    async def count_areas(self) -> int:
        result = await self.session.execute(select(func.count(OperationalArea.id)))
        return result.scalar_one()

    async def add_area(self, area: AreaRecord) -> AreaRecord:
        row = OperationalArea(
            name_en=area.name_en,
            name_ar=area.name_ar,
            slug=area.slug,
            is_active=area.is_active,
            display_level=area.display_level,
            centroid_latitude=area.centroid_latitude,
            centroid_longitude=area.centroid_longitude,
            default_search_radius_meters=area.default_search_radius_meters,
            default_map_zoom_level=area.default_map_zoom_level,
            geometry_source=int(area.geometry_source),
            primary_administrative_boundary_id=area.primary_administrative_boundary_id,
        )
        if isinstance(area.geometry, CustomGeometry):
            row.custom_boundary = _wkb(area.geometry.boundary)
            row.custom_simplified_boundary = _wkb(area.geometry.simplified_boundary)
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        await self.session.refresh(row)
        return _area_record(row)

    async def get_area(self, area_id: int) -> Optional[AreaRecord]:
        row = await self.session.get(OperationalArea, area_id)
        return _area_record(row) if row else None

    async def get_area_by_slug(self, slug: str, active_only: bool = True) -> Optional[AreaRecord]:
        stmt = select(OperationalArea).where(OperationalArea.slug == slug)
        if active_only:
            stmt = stmt.where(OperationalArea.is_active.is_(True))
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        return _area_record(row) if row else None

    async def list_areas(
        self,
        active_only: bool = True,
        display_level: Optional[str] = None,
    ) -> list[AreaRecord]:
        stmt = select(OperationalArea).order_by(func.lower(OperationalArea.name_en), OperationalArea.id)
        if active_only:
            stmt = stmt.where(OperationalArea.is_active.is_(True))
        if display_level is not None:
            stmt = stmt.where(func.lower(OperationalArea.display_level) == display_level.lower())
        result = await self.session.execute(stmt)
        return [_area_record(row) for row in result.scalars().all()]

    async def area_slugs(self) -> set[str]:
        result = await self.session.execute(select(OperationalArea.slug))
        return set(result.scalars().all())

    async def find_area_containing(self, lat: float, lon: float) -> Optional[AreaRecord]:
        result = await self.session.execute(area_containing_statement(lat, lon))
        row = result.scalar_one_or_none()
        return _area_record(row) if row else None

    async def delete_areas(self) -> int:
        result = await self.session.execute(delete(OperationalArea))
        await self.session.commit()
        return result.rowcount or 0

    # Shops

    async def add_shop(self, shop: ShopRecord) -> ShopRecord:
        row = Shop(
            id=shop.id,
            name_en=shop.name_en,
            name_ar=shop.name_ar,
            slug=shop.slug,
            description=shop.description,
            address=shop.address,
            location=from_shape(shop.location, srid=SRID),
            phone_number=shop.phone_number,
            services_offered=shop.services_offered,
            opening_hours=shop.opening_hours,
            category=int(shop.category),
            logo_url=shop.logo_url,
            operational_area_id=shop.operational_area_id,
            is_deleted=shop.is_deleted,
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if "uq_shops_operational_area_slug" in str(exc.orig):
                raise SlugConflictError(shop.operational_area_id, shop.slug) from exc
            raise
        await self.session.refresh(row)
        return _shop_record(row)

    async def get_shop(self, shop_id: uuid.UUID) -> Optional[ShopRecord]:
        row = await self.session.get(Shop, shop_id)
        return _shop_record(row) if row else None

    async def shop_slugs_in_area(self, area_id: int) -> set[str]:
        result = await self.session.execute(
            select(Shop.slug).where(Shop.operational_area_id == area_id, Shop.slug.is_not(None))
        )
        return set(result.scalars().all())

    async def shops_in_bbox(
        self,
        bbox: BoundingBox,
        limit: int,
        category: Optional[ShopCategory] = None,
    ) -> list[ShopRecord]:
        stmt = (
            select(Shop)
            .where(
                Shop.is_deleted.is_(False),
                func.ST_Intersects(_as_geometry(Shop.location), _envelope(bbox)),
            )
            .order_by(Shop.id)
            .limit(limit)
        )
        if category is not None:
            stmt = stmt.where(Shop.category == int(category))
        result = await self.session.execute(stmt)
        return [_shop_record(row) for row in result.scalars().all()]

    async def search_shops(
        self,
        filters: ShopFilter,
        sort: str = SORT_NAME_ASC,
        offset: int = 0,
        limit: Optional[int] = None,
        near: Optional[tuple[float, float, float]] = None,
    ) -> ShopPage:
        page_stmt, count_stmt = shop_search_statements(filters, sort, offset, limit, near)
        total = (await self.session.execute(count_stmt)).scalar_one()
        if offset >= total:
            return ShopPage(items=[], total_count=total)

        result = await self.session.execute(page_stmt)
        if near is None:
            items = [(_shop_record(row), None) for row in result.scalars().all()]
        else:
            items = [(_shop_record(row), distance) for row, distance in result.all()]
        return ShopPage(items=items, total_count=total)

    async def count_shops_in_boundary(self, boundary_id: int) -> int:
        stmt = (
            select(func.count(Shop.id))
            .select_from(Shop)
            .join(
                AdministrativeBoundary,
                func.ST_Intersects(AdministrativeBoundary.boundary, Shop.location),
            )
            .where(
                AdministrativeBoundary.id == boundary_id,
                Shop.is_deleted.is_(False),
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def category_counts(self, area_id: int) -> dict[ShopCategory, int]:
        result = await self.session.execute(
            select(Shop.category, func.count(Shop.id))
            .where(Shop.operational_area_id == area_id, Shop.is_deleted.is_(False))
            .group_by(Shop.category)
        )
        return {ShopCategory.parse(category): count for category, count in result.all()}

    async def delete_shops(self) -> int:
        result = await self.session.execute(delete(Shop))
        await self.session.commit()
        return result.rowcount or 0

    # Cached shop counts

    async def get_stats(self, boundary_ids: Iterable[int]) -> dict[int, AreaShopStatsRecord]:
        ids = list(boundary_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(AdminAreaShopStats).where(AdminAreaShopStats.administrative_boundary_id.in_(ids))
        )
        return {
            row.administrative_boundary_id: AreaShopStatsRecord(
                row.administrative_boundary_id, row.shop_count, row.last_updated_at
            )
            for row in result.scalars().all()
        }

    async def upsert_stats(self, boundary_id: int, shop_count: int, updated_at: datetime) -> None:
        stmt = pg_insert(AdminAreaShopStats).values(
            administrative_boundary_id=boundary_id,
            shop_count=shop_count,
            last_updated_at=updated_at,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[AdminAreaShopStats.administrative_boundary_id],
            set_={"shop_count": shop_count, "last_updated_at": updated_at},
        )
        await self.session.execute(stmt)
        await self.session.commit()

    async def delete_stats(self) -> int:
        result = await self.session.execute(delete(AdminAreaShopStats))
        await self.session.commit()
        return result.rowcount or 0
