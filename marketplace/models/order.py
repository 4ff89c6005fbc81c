"""SQLAlchemy model for Order."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.services.geo import Coordinates

from .base import Base, BigIntPK, utcnow


class OrderStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_CONFIRMATION = "waiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class PriceType(str, enum.Enum):
    FIXED = "fixed"
    HOURLY = "hourly"
    NEGOTIABLE = "negotiable"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def _values(enum_cls):
    return [member.value for member in enum_cls]


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        Index("ix_orders_status_published", "status", "is_published"),
        Index("ix_orders_category_status", "category_id", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    # Identity lives outside the engine; customers are referenced by id only
    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    category_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("service_categories.id"), nullable=True, index=True
    )
    executor_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("executor_profiles.id"), nullable=True, index=True
    )

    title: Mapped[str | None] = mapped_column(String(200))
    description: Mapped[str | None] = mapped_column(Text)

    price_type: Mapped[PriceType | None] = mapped_column(
        Enum(PriceType, name="order_price_type_enum", values_callable=_values)
    )
    budget_from: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    budget_to: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    agreed_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency, name="order_urgency_enum", values_callable=_values),
        default=Urgency.MEDIUM,
        nullable=False,
    )

    address: Mapped[str | None] = mapped_column(String(500))
    location_lat: Mapped[float | None] = mapped_column(Float)
    location_lng: Mapped[float | None] = mapped_column(Float)
    # Opaque URLs from the file storage service
    attachments: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        Enum(OrderStatus, name="order_status_enum", values_callable=_values),
        default=OrderStatus.DRAFT,
        nullable=False,
        index=True,
    )
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    applications_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    views_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    preferred_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    deadline: Mapped[datetime | None] = mapped_column(DateTime)
    actual_start_date: Mapped[datetime | None] = mapped_column(DateTime)
    actual_end_date: Mapped[datetime | None] = mapped_column(DateTime)
    cancellation_requested_at: Mapped[datetime | None] = mapped_column(DateTime)
    dispute_reason: Mapped[str | None] = mapped_column(Text)

    rating_by_customer: Mapped[int | None] = mapped_column(Integer)
    review_by_customer: Mapped[str | None] = mapped_column(Text)
    rating_by_executor: Mapped[int | None] = mapped_column(Integer)
    review_by_executor: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def coordinates(self) -> Coordinates | None:
        if self.location_lat is None or self.location_lng is None:
            return None
        return Coordinates(float(self.location_lat), float(self.location_lng))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def can_receive_applications(self) -> bool:
        return self.status == OrderStatus.OPEN and bool(self.is_published)

    @property
    def is_fully_rated(self) -> bool:
        return self.rating_by_customer is not None and self.rating_by_executor is not None

    def missing_required_fields(self) -> list[str]:
        """Fields that must be filled before the order can be published."""
        required = ("category_id", "title", "description", "address", "price_type")
        missing = []
        for name in required:
            value = getattr(self, name)
            if value is None or (isinstance(value, str) and not value.strip()):
                missing.append(name)
        return missing

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, customer_id={self.customer_id}, status='{self.status}')>"
