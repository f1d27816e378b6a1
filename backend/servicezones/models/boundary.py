"""Administrative boundary and cached shop count models."""
from datetime import datetime
from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from geoalchemy2 import Geography
from sqlalchemy.orm import Mapped, mapped_column

from servicezones.database import Base


class AdministrativeBoundary(Base):
    """Official geographic unit; level 1 is a region, level 2 a sub-region."""

    __tablename__ = "administrative_boundaries"
    __table_args__ = (
        UniqueConstraint(
            "admin_level", "country_code", "official_code",
            name="uq_administrative_boundaries_level_country_code",
        ),
        Index("ix_administrative_boundaries_admin_level", "admin_level"),
        Index("ix_administrative_boundaries_country_code", "country_code"),
        Index("ix_administrative_boundaries_parent_id", "parent_id"),
        Index("ix_administrative_boundaries_is_active", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name_en: Mapped[str] = mapped_column(String(150), nullable=False)
    name_ar: Mapped[str] = mapped_column(String(150), nullable=False)
    admin_level: Mapped[int] = mapped_column(Integer, nullable=False)
    # Self reference; children are looked up by id, never through back-pointers
    parent_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("administrative_boundaries.id"), nullable=True
    )
    country_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    official_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Spatial data (PostGIS geography, WGS84)
    boundary = mapped_column(Geography("MULTIPOLYGON", srid=4326), nullable=True)
    simplified_boundary = mapped_column(Geography("MULTIPOLYGON", srid=4326), nullable=True)
    centroid = mapped_column(Geography("POINT", srid=4326), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class AdminAreaShopStats(Base):
    """Cached shop count per administrative boundary, owned by the aggregate refresher."""

    __tablename__ = "admin_area_shop_stats"

    administrative_boundary_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("administrative_boundaries.id", ondelete="CASCADE"),
        primary_key=True,
    )
    shop_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
