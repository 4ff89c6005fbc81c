"""Read side: which orders an executor sees, order and executor search, and
who hears about an order.

Listings are not transactionally consistent with concurrent writes. An order
accepted a moment ago simply drops out of the next call.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Generic, TypeVar

from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.actors import Actor
from marketplace.errors import ExecutorProfileNotFoundError, OrderNotFoundError, ValidationError
from marketplace.models import Order, OrderStatus, PriceType, Urgency
from marketplace.services.categories import CategoryTree, ancestor_ids
from marketplace.services.executors import (
    ExecutorFilter,
    ExecutorProfileStore,
    ExecutorSnapshot,
    SqlExecutorProfileStore,
)
from marketplace.services.geo import Coordinates, filter_by_radius
from marketplace.services.lifecycle import is_visible_to

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
DEFAULT_SEARCH_RADIUS_KM = 10.0

URGENCY_RANK = case(
    (Order.urgency == Urgency.URGENT, 4),
    (Order.urgency == Urgency.HIGH, 3),
    (Order.urgency == Urgency.MEDIUM, 2),
    else_=1,
)


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    lat: float | None = None
    lng: float | None = None
    radius_km: float = DEFAULT_SEARCH_RADIUS_KM

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    @property
    def center(self) -> Coordinates | None:
        if self.lat is None or self.lng is None:
            return None
        return Coordinates(float(self.lat), float(self.lng))

    def check(self) -> None:
        if self.page < 1:
            raise ValidationError("page must be at least 1")
        if not 1 <= self.limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if (self.lat is None) != (self.lng is None):
            raise ValidationError("Provide both lat and lng or neither")


@dataclass(frozen=True)
class OrderSearch(PageRequest):
    text: str | None = None
    category_id: int | None = None
    status: OrderStatus | None = None
    urgency: Urgency | None = None
    price_type: PriceType | None = None
    min_budget: Decimal | None = None
    max_budget: Decimal | None = None
    # Unpublished orders are listed only to their own customer or staff
    customer_id: int | None = None

    def check(self) -> None:
        super().check()
        if self.min_budget is not None and self.max_budget is not None and self.min_budget > self.max_budget:
            raise ValidationError("min_budget cannot exceed max_budget")


@dataclass(frozen=True)
class ExecutorSearch(PageRequest):
    category_id: int | None = None
    min_rating: float | None = None
    only_available: bool = False
    only_verified: bool = False
    only_premium: bool = False


class Page(Generic[T]):
    """One page of results plus the total across all pages."""

    def __init__(self, items: list[T], total: int, page: int, limit: int):
        self.items = items
        self.total = total
        self.page = page
        self.limit = limit

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit)


class OrderCatalog:
    def __init__(self, session: AsyncSession, executors: ExecutorProfileStore | None = None):
        self.session = session
        self.executors = executors or SqlExecutorProfileStore(session)
        self.categories = CategoryTree(session)

    async def _subtree_ids(self, category_id: int) -> list[int]:
        parent_of = await self.categories.parent_map()
        return [cid for cid in parent_of if category_id in ancestor_ids(cid, parent_of)]

    async def orders_accepting_applications(self, category_id: int | None = None) -> list[Order]:
        """Open, published orders, newest first; optionally within a category subtree."""
        query = select(Order).where(Order.status == OrderStatus.OPEN, Order.is_published.is_(True))
        if category_id is not None:
            query = query.where(Order.category_id.in_(await self._subtree_ids(category_id)))
        result = await self.session.execute(query.order_by(Order.created_at.desc(), Order.id.desc()))
        return list(result.scalars().all())

    async def search_orders(self, criteria: OrderSearch, actor: Actor | None = None) -> Page[Order]:
        """Filtered order listing: most urgent first, then newest.

        Without a ``customer_id`` only published orders are searched. With a
        location, orders without coordinates are left out.
        """
        criteria.check()
        query = select(Order)
        if criteria.customer_id is not None:
            query = query.where(Order.customer_id == criteria.customer_id)
        owner = actor is not None and (
            actor.id == criteria.customer_id or actor.capabilities.can_moderate_orders
        )
        if criteria.customer_id is None or not owner:
            query = query.where(Order.is_published.is_(True))

        text = (criteria.text or "").strip()
        if text:
            query = query.where(
                or_(Order.title.icontains(text, autoescape=True), Order.description.icontains(text, autoescape=True))
            )
        if criteria.category_id is not None:
            query = query.where(Order.category_id.in_(await self._subtree_ids(criteria.category_id)))
        if criteria.status is not None:
            query = query.where(Order.status == criteria.status)
        if criteria.urgency is not None:
            query = query.where(Order.urgency == criteria.urgency)
        if criteria.price_type is not None:
            query = query.where(Order.price_type == criteria.price_type)
        if criteria.min_budget is not None:
            query = query.where(or_(Order.budget_from >= criteria.min_budget, Order.budget_to >= criteria.min_budget))
        if criteria.max_budget is not None:
            query = query.where(or_(Order.budget_from <= criteria.max_budget, Order.budget_to <= criteria.max_budget))
        query = query.order_by(URGENCY_RANK.desc(), Order.created_at.desc(), Order.id.desc())

        center = criteria.center
        if center is None:
            total = await self.session.scalar(select(func.count()).select_from(query.order_by(None).subquery()))
            result = await self.session.execute(query.offset(criteria.offset).limit(criteria.limit))
            items = list(result.scalars().all())
        else:
            result = await self.session.execute(query)
            matched = filter_by_radius(center, criteria.radius_km, result.scalars().all())
            total = len(matched)
            items = matched[criteria.offset:criteria.offset + criteria.limit]

        logger.info(
            "Order search",
            extra={"count": len(items), "total": total, "radius_km": criteria.radius_km if center else None},
        )
        return Page(items=items, total=total or 0, page=criteria.page, limit=criteria.limit)

    async def search_executors(self, criteria: ExecutorSearch) -> Page[ExecutorSnapshot]:
        """Executor directory: premium first, then by rating."""
        criteria.check()
        category_ids: frozenset[int] = frozenset()
        if criteria.category_id is not None:
            # An executor in a parent category also covers its sub-categories
            category_ids = frozenset(ancestor_ids(criteria.category_id, await self.categories.parent_map()))
        center = criteria.center
        found = await self.executors.find(
            ExecutorFilter(
                min_rating=criteria.min_rating,
                only_available=criteria.only_available,
                only_verified=criteria.only_verified,
                only_premium=criteria.only_premium,
                category_ids=category_ids,
                require_location=center is not None,
            )
        )
        if center is not None:
            found = filter_by_radius(center, criteria.radius_km, found)
        items = found[criteria.offset:criteria.offset + criteria.limit]
        return Page(items=items, total=len(found), page=criteria.page, limit=criteria.limit)

    async def nearby_executors(
        self, center: Coordinates, radius_km: float = DEFAULT_SEARCH_RADIUS_KM
    ) -> list[ExecutorSnapshot]:
        """Available executors with a known location within ``radius_km`` of ``center``."""
        found = await self.executors.find(ExecutorFilter(only_available=True, require_location=True))
        return filter_by_radius(center, radius_km, found)

    async def visible_orders(self, executor: ExecutorSnapshot) -> list[Order]:
        started = time.monotonic()
        candidates = await self.orders_accepting_applications()
        parent_of = await self.categories.parent_map()
        visible = [
            order
            for order in candidates
            if is_visible_to(order, executor, ancestor_ids(order.category_id, parent_of) if order.category_id else [])
        ]
        logger.info(
            "Order feed built",
            extra={
                "executor_id": executor.id,
                "count": len(visible),
                "radius_km": executor.work_radius_km,
                "took_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return visible

    async def visible_orders_for_user(self, user_id: int) -> list[Order]:
        executor = await self.executors.get_by_user(user_id)
        if executor is None:
            raise ExecutorProfileNotFoundError(f"User {user_id} has no executor profile")
        return await self.visible_orders(executor)

    async def is_visible(self, order: Order, executor: ExecutorSnapshot) -> bool:
        chain = ancestor_ids(order.category_id, await self.categories.parent_map()) if order.category_id else []
        return is_visible_to(order, executor, chain)

    async def executors_in_range(self, order_id: int) -> list[ExecutorSnapshot]:
        """Available executors who would see ``order_id`` in their feed."""
        order = await self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        chain = ancestor_ids(order.category_id, await self.categories.parent_map()) if order.category_id else []
        executors = await self.executors.list_available()
        return [executor for executor in executors if is_visible_to(order, executor, chain)]
