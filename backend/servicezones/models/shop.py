"""Shop model."""
import uuid
from datetime import datetime
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from geoalchemy2 import Geography
from sqlalchemy.orm import Mapped, mapped_column

from servicezones.database import Base


class Shop(Base):
    """Automotive service provider bound to one operational area."""

    __tablename__ = "shops"
    __table_args__ = (
        UniqueConstraint("operational_area_id", "slug", name="uq_shops_operational_area_slug"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name_en: Mapped[str] = mapped_column(String(200), nullable=False)
    name_ar: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(250), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    location = mapped_column(Geography("POINT", srid=4326), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    services_offered: Mapped[str | None] = mapped_column(Text, nullable=True)
    opening_hours: Mapped[str | None] = mapped_column(String(200), nullable=True)
    # ShopCategory value (servicezones.domain.ShopCategory)
    category: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    logo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    operational_area_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("operational_areas.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
