"""SQLAlchemy model for OrderApplication (an executor's bid)."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, BigIntPK, utcnow


class ApplicationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class OrderApplication(Base):
    __tablename__ = "order_applications"
    __table_args__ = (
        Index("ix_order_applications_order_created_at", "order_id", "created_at"),
        # One live application per executor and order; withdrawn ones do not count
        Index(
            "uq_order_applications_live_per_executor",
            "order_id",
            "executor_id",
            unique=True,
            postgresql_where=text("status <> 'withdrawn'"),
            sqlite_where=text("status <> 'withdrawn'"),
        ),
        # At most one accepted application per order
        Index(
            "uq_order_applications_accepted",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, index=True)
    order_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("orders.id"), nullable=False)
    executor_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("executor_profiles.id"), nullable=False)
    # None means the executor accepts the posted budget
    proposed_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    proposed_duration_days: Mapped[int | None] = mapped_column(Integer)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    available_from: Mapped[datetime | None] = mapped_column(DateTime)
    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(
            ApplicationStatus,
            name="application_status_enum",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ApplicationStatus.PENDING,
        nullable=False,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    is_viewed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    @property
    def is_pending(self) -> bool:
        return self.status == ApplicationStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<OrderApplication(id={self.id}, order_id={self.order_id}, "
            f"executor_id={self.executor_id}, status='{self.status}')>"
        )
