"""Operational area model."""
from sqlalchemy import Boolean, Float, ForeignKey, Integer, SmallInteger, String
from geoalchemy2 import Geography
from sqlalchemy.orm import Mapped, mapped_column

from servicezones.database import Base


class OperationalArea(Base):
    """Business-defined service zone built on top of the boundary tree."""

    __tablename__ = "operational_areas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name_en: Mapped[str] = mapped_column(String(150), nullable=False)
    name_ar: Mapped[str] = mapped_column(String(150), nullable=False)
    slug: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    display_level: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)

    centroid_latitude: Mapped[float] = mapped_column(Float, nullable=False)
    centroid_longitude: Mapped[float] = mapped_column(Float, nullable=False)
    default_search_radius_meters: Mapped[float | None] = mapped_column(Float, nullable=True)
    default_map_zoom_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # 1 = Custom, 2 = DerivedFromAdmin (see servicezones.domain.GeometrySource)
    geometry_source: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    custom_boundary = mapped_column(Geography("MULTIPOLYGON", srid=4326), nullable=True)
    custom_simplified_boundary = mapped_column(Geography("MULTIPOLYGON", srid=4326), nullable=True)
    primary_administrative_boundary_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("administrative_boundaries.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
