from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError

from marketplace.models import ApplicationStatus, OrderStatus, PriceType, Urgency

HEX_COLOR_LEN = 7


# Категории
class CategoryBase(BaseModel):
    name_ru: str = Field(..., min_length=1, max_length=100)
    name_uz: str = Field(..., min_length=1, max_length=100)
    description_ru: str | None = None
    description_uz: str | None = None
    icon_url: str | None = Field(None, max_length=500)
    color: str | None = None
    parent_id: int | None = None
    is_active: bool = True
    is_popular: bool = False
    sort_order: int = 0
    slug: str | None = Field(None, max_length=200)
    meta_title: str | None = Field(None, max_length=200)
    meta_description: str | None = Field(None, max_length=500)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if len(v) != HEX_COLOR_LEN or not v.startswith("#"):
            raise PydanticCustomError("invalid_color", "Color must look like #RRGGBB")
        try:
            int(v[1:], 16)
        except ValueError:
            raise PydanticCustomError("invalid_color", "Color must look like #RRGGBB")
        return v.lower()


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name_ru: str | None = Field(None, min_length=1, max_length=100)
    name_uz: str | None = Field(None, min_length=1, max_length=100)
    description_ru: str | None = None
    description_uz: str | None = None
    icon_url: str | None = Field(None, max_length=500)
    color: str | None = None
    parent_id: int | None = None
    is_active: bool | None = None
    is_popular: bool | None = None
    sort_order: int | None = None
    slug: str | None = Field(None, max_length=200)
    meta_title: str | None = Field(None, max_length=200)
    meta_description: str | None = Field(None, max_length=500)

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        return CategoryBase.validate_color(v)


class ReparentRequest(BaseModel):
    parent_id: int | None = None


class CategoryResponse(CategoryBase):
    id: int
    slug: str
    services_count: int
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CategoryTreeResponse(BaseModel):
    id: int
    parent_id: int | None
    name: str
    description: str | None
    slug: str
    icon_url: str | None
    color: str | None
    sort_order: int
    is_active: bool
    is_popular: bool
    services_count: int
    children: list[CategoryTreeResponse] = []

    class Config:
        from_attributes = True


class BreadcrumbResponse(BaseModel):
    id: int
    name: str
    slug: str

    class Config:
        from_attributes = True


# Заказы
class OrderDetails(BaseModel):
    category_id: int | None = None
    title: str | None = Field(None, max_length=200)
    description: str | None = None
    price_type: PriceType | None = None
    budget_from: Decimal | None = Field(None, ge=0)
    budget_to: Decimal | None = Field(None, ge=0)
    urgency: Urgency = Urgency.MEDIUM
    address: str | None = Field(None, max_length=500)
    location_lat: float | None = Field(None, ge=-90, le=90)
    location_lng: float | None = Field(None, ge=-180, le=180)
    preferred_start_date: datetime | None = None
    deadline: datetime | None = None
    attachments: list[str] = []

    @model_validator(mode="after")
    def validate_budget_range(self) -> OrderDetails:
        if self.budget_from is not None and self.budget_to is not None and self.budget_from > self.budget_to:
            raise PydanticCustomError("invalid_budget", "budget_from cannot exceed budget_to")
        return self


class OrderCreate(OrderDetails):
    publish: bool = False


class OrderUpdate(BaseModel):
    category_id: int | None = None
    title: str | None = Field(None, max_length=200)
    description: str | None = None
    price_type: PriceType | None = None
    budget_from: Decimal | None = Field(None, ge=0)
    budget_to: Decimal | None = Field(None, ge=0)
    urgency: Urgency | None = None
    address: str | None = Field(None, max_length=500)
    location_lat: float | None = Field(None, ge=-90, le=90)
    location_lng: float | None = Field(None, ge=-180, le=180)
    preferred_start_date: datetime | None = None
    deadline: datetime | None = None
    attachments: list[str] | None = None


class OrderResponse(BaseModel):
    id: int
    customer_id: int
    category_id: int | None
    executor_id: int | None
    title: str | None
    description: str | None
    price_type: PriceType | None
    budget_from: Decimal | None
    budget_to: Decimal | None
    agreed_price: Decimal | None
    urgency: Urgency
    address: str | None
    location_lat: float | None
    location_lng: float | None
    attachments: list[str]
    status: OrderStatus
    is_published: bool
    applications_count: int
    views_count: int
    preferred_start_date: datetime | None
    deadline: datetime | None
    actual_start_date: datetime | None
    actual_end_date: datetime | None
    cancellation_requested_at: datetime | None
    rating_by_customer: int | None
    review_by_customer: str | None
    rating_by_executor: int | None
    review_by_executor: str | None
    is_fully_rated: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class RatingRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: str | None = Field(None, max_length=2000)


class DisputeRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ResolveDisputeRequest(BaseModel):
    outcome: OrderStatus

    @field_validator("outcome")
    @classmethod
    def validate_outcome(cls, v: OrderStatus) -> OrderStatus:
        if v not in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            raise PydanticCustomError("invalid_outcome", "Outcome must be completed or cancelled")
        return v


# Заявки
class ApplicationCreate(BaseModel):
    message: str = Field(..., min_length=1, max_length=5000)
    proposed_price: Decimal | None = Field(None, gt=0)
    proposed_duration_days: int | None = Field(None, ge=1)
    available_from: datetime | None = None


class RejectRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class ApplicationResponse(BaseModel):
    id: int
    order_id: int
    executor_id: int
    proposed_price: Decimal | None
    proposed_duration_days: int | None
    message: str
    available_from: datetime | None
    status: ApplicationStatus
    rejection_reason: str | None
    is_viewed: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class OrderPageResponse(BaseModel):
    items: list[OrderResponse]
    total: int
    page: int
    limit: int
    total_pages: int

    class Config:
        from_attributes = True


# Исполнители
class ExecutorResponse(BaseModel):
    id: int
    user_id: int
    work_radius_km: float
    rating: float
    reviews_count: int
    completed_orders: int
    is_available: bool
    is_premium: bool
    is_verified: bool

    class Config:
        from_attributes = True


class ExecutorPageResponse(BaseModel):
    items: list[ExecutorResponse]
    total: int
    page: int
    limit: int
    total_pages: int

    class Config:
        from_attributes = True
