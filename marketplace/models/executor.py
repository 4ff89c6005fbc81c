"""SQLAlchemy model for executor profiles.

Profiles are owned by the executors module; the order engine only reads them.
"""
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Table,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from marketplace.services.geo import Coordinates

from .base import Base, BigIntPK, utcnow

if TYPE_CHECKING:
    from .category import ServiceCategory

# Categories an executor works in (many-to-many)
executor_categories = Table(
    "executor_categories",
    Base.metadata,
    Column("executor_id", BigInteger, ForeignKey("executor_profiles.id"), primary_key=True),
    Column("category_id", BigInteger, ForeignKey("service_categories.id"), primary_key=True),
)


class ExecutorProfile(Base):
    __tablename__ = "executor_profiles"
    __table_args__ = (Index("ix_executor_profiles_search", "is_available", "is_premium", "rating"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    location_lat: Mapped[float | None] = mapped_column(Float)
    location_lng: Mapped[float | None] = mapped_column(Float)
    work_radius_km: Mapped[float] = mapped_column(Float, default=10.0, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    reviews_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_orders: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now())

    categories: Mapped[list["ServiceCategory"]] = relationship(
        "ServiceCategory", secondary=executor_categories, lazy="selectin"
    )

    @property
    def coordinates(self) -> Coordinates | None:
        if self.location_lat is None or self.location_lng is None:
            return None
        return Coordinates(float(self.location_lat), float(self.location_lng))

    def __repr__(self) -> str:
        return f"<ExecutorProfile(id={self.id}, user_id={self.user_id}, radius={self.work_radius_km})>"
