"""SQLAlchemy model for service categories."""
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, utcnow

LOCALES = ("ru", "uz")


class ServiceCategory(Base):
    """Node of the service taxonomy.

    The parent link is an id only; traversal goes through CategoryTree so that
    corrupt or dangling references never turn into unbounded walks.
    """
    __tablename__ = "service_categories"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    name_uz: Mapped[str] = mapped_column(String(100), nullable=False)
    name_ru: Mapped[str] = mapped_column(String(100), nullable=False)
    description_uz: Mapped[str | None] = mapped_column(Text)
    description_ru: Mapped[str | None] = mapped_column(Text)
    icon_url: Mapped[str | None] = mapped_column(String(500))
    color: Mapped[str | None] = mapped_column(String(7))
    parent_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("service_categories.id"), nullable=True, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_popular: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    services_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False, index=True)
    meta_title: Mapped[str | None] = mapped_column(String(200))
    meta_description: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    def get_name(self, locale: str = "ru") -> str:
        return self.name_uz if locale == "uz" else self.name_ru

    def get_description(self, locale: str = "ru") -> str | None:
        return self.description_uz if locale == "uz" else self.description_ru

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def __repr__(self) -> str:
        return f"<ServiceCategory(id={self.id}, slug='{self.slug}', parent_id={self.parent_id})>"
