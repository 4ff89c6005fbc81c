"""Order state machine.

    draft --publish--> open
    open --accept application--> in_progress
    in_progress --executor marks done--> waiting_confirmation
    waiting_confirmation --customer confirms--> completed
    waiting_confirmation --customer requests rework--> in_progress
    open | in_progress | waiting_confirmation --cancel--> cancelled
    in_progress | waiting_confirmation --raise dispute--> disputed
    disputed --admin resolves--> completed | cancelled

Every transition runs inside ``order_write_unit`` and emits its events only
after the unit has committed.
"""
from __future__ import annotations

import enum
import logging
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.actors import Actor
from marketplace.errors import (
    AuthorizationError,
    CategoryNotFoundError,
    ConflictError,
    IllegalTransitionError,
    IncompleteOrderError,
    OrderNotFoundError,
    TerminalOrderError,
    ValidationError,
)
from marketplace.events import (
    DomainEvent,
    EventDispatcher,
    OrderCancellationRequested,
    OrderCompleted,
    OrderStatusChanged,
    dispatch_all,
)
from marketplace.models import (
    ApplicationStatus,
    Order,
    OrderApplication,
    OrderStatus,
    PriceType,
    ServiceCategory,
    Urgency,
)
from marketplace.models.base import to_naive_utc, utcnow
from marketplace.services.categories import increment_services_count
from marketplace.services.executors import ExecutorProfileStore, ExecutorSnapshot, SqlExecutorProfileStore
from marketplace.services.geo import within_radius
from marketplace.services.locking import order_write_unit

logger = logging.getLogger(__name__)

ORDER_CANCELLED_REASON = "Order was cancelled"
MIN_RATING, MAX_RATING = 1, 5


class Transition(str, enum.Enum):
    PUBLISH = "publish"
    ACCEPT_APPLICATION = "accept_application"
    MARK_DONE = "mark_done"
    CONFIRM = "confirm"
    REQUEST_REWORK = "request_rework"
    CANCEL = "cancel"
    RAISE_DISPUTE = "raise_dispute"
    RESOLVE_COMPLETED = "resolve_completed"
    RESOLVE_CANCELLED = "resolve_cancelled"


TRANSITIONS: dict[Transition, tuple[frozenset[OrderStatus], OrderStatus]] = {
    Transition.PUBLISH: (frozenset({OrderStatus.DRAFT}), OrderStatus.OPEN),
    Transition.ACCEPT_APPLICATION: (frozenset({OrderStatus.OPEN}), OrderStatus.IN_PROGRESS),
    Transition.MARK_DONE: (frozenset({OrderStatus.IN_PROGRESS}), OrderStatus.WAITING_CONFIRMATION),
    Transition.CONFIRM: (frozenset({OrderStatus.WAITING_CONFIRMATION}), OrderStatus.COMPLETED),
    Transition.REQUEST_REWORK: (frozenset({OrderStatus.WAITING_CONFIRMATION}), OrderStatus.IN_PROGRESS),
    Transition.CANCEL: (
        frozenset({OrderStatus.OPEN, OrderStatus.IN_PROGRESS, OrderStatus.WAITING_CONFIRMATION}),
        OrderStatus.CANCELLED,
    ),
    Transition.RAISE_DISPUTE: (
        frozenset({OrderStatus.IN_PROGRESS, OrderStatus.WAITING_CONFIRMATION}),
        OrderStatus.DISPUTED,
    ),
    Transition.RESOLVE_COMPLETED: (frozenset({OrderStatus.DISPUTED}), OrderStatus.COMPLETED),
    Transition.RESOLVE_CANCELLED: (frozenset({OrderStatus.DISPUTED}), OrderStatus.CANCELLED),
}


def next_status(order: Order, transition: Transition) -> OrderStatus:
    """Target status for ``transition`` or raise if it is not legal from here."""
    current = OrderStatus(order.status)
    sources, target = TRANSITIONS[transition]
    if order.is_terminal:
        raise TerminalOrderError(order.id, current.value)
    if current not in sources:
        expected = ", ".join(sorted(s.value for s in sources))
        raise IllegalTransitionError(
            f"Cannot {transition.value.replace('_', ' ')} order {order.id} in status {current.value}; "
            f"expected {expected}"
        )
    return target


def check_rating(rating: int) -> int:
    if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
        raise ValidationError(f"Rating must be an integer from {MIN_RATING} to {MAX_RATING}")
    return rating


def is_visible_to(
    order: Order,
    executor: ExecutorSnapshot,
    category_chain: Collection[int] | None = None,
) -> bool:
    """Whether ``executor`` should see ``order`` in their feed.

    ``category_chain`` is the order's category followed by its ancestors, so an
    executor working in a parent category also sees its sub-categories. An
    executor with no categories matches every category. Orders without
    coordinates skip the radius check.
    """
    if not order.can_receive_applications:
        return False

    chain = category_chain if category_chain is not None else [order.category_id]
    if executor.category_ids and not any(c in executor.category_ids for c in chain):
        return False

    location = order.coordinates
    if location is None:
        return True
    if executor.coordinates is None:
        return False
    return within_radius(executor.coordinates, location, executor.work_radius_km)


@dataclass
class OrderDraft:
    category_id: int | None = None
    title: str | None = None
    description: str | None = None
    price_type: PriceType | None = None
    budget_from: Decimal | None = None
    budget_to: Decimal | None = None
    urgency: Urgency = Urgency.MEDIUM
    address: str | None = None
    location_lat: float | None = None
    location_lng: float | None = None
    preferred_start_date: datetime | None = None
    deadline: datetime | None = None
    attachments: list[str] = field(default_factory=list)
    publish: bool = False

    def values(self) -> dict[str, Any]:
        data = {k: v for k, v in self.__dict__.items() if k != "publish"}
        data["attachments"] = list(self.attachments)
        return data


EDITABLE_FIELDS = frozenset(OrderDraft.__dataclass_fields__) - {"publish"}
EDITABLE_STATUSES = frozenset({OrderStatus.DRAFT, OrderStatus.OPEN})
# Fields with a default that cannot be cleared
NON_NULLABLE_FIELDS = frozenset({"urgency", "attachments"})


def _validate_details(values: Mapping[str, Any]) -> None:
    """Field-level checks shared by create and edit."""
    budget_from, budget_to = values.get("budget_from"), values.get("budget_to")
    for name, amount in (("budget_from", budget_from), ("budget_to", budget_to)):
        if amount is not None and amount < 0:
            raise ValidationError(f"{name} must not be negative")
    if budget_from is not None and budget_to is not None and budget_from > budget_to:
        raise ValidationError("Minimum budget cannot exceed maximum budget")

    now = utcnow()
    for name in ("preferred_start_date", "deadline"):
        value = values.get(name)
        if value is not None and to_naive_utc(value) < now:
            raise ValidationError(f"{name} cannot be in the past")

    lat, lng = values.get("location_lat"), values.get("location_lng")
    if (lat is None) != (lng is None):
        raise ValidationError("Provide both latitude and longitude or neither")
    if lat is not None and not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise ValidationError("Coordinates out of range")

    title = values.get("title")
    if title is not None and len(title) > 200:
        raise ValidationError("Title longer than 200 characters")


class OrderLifecycle:
    def __init__(
        self,
        session: AsyncSession,
        dispatcher: EventDispatcher,
        executors: ExecutorProfileStore | None = None,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.executors = executors or SqlExecutorProfileStore(session)

    async def get(self, order_id: int) -> Order:
        order = await self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _assigned_executor_id(self, actor: Actor) -> int | None:
        executor = await self.executors.get_by_user(actor.id)
        return executor.id if executor else None

    async def _ensure_active_category(self, category_id: int) -> None:
        category = await self.session.get(ServiceCategory, category_id)
        if category is None or not category.is_active:
            raise CategoryNotFoundError(category_id)

    def _move(self, order: Order, transition: Transition, actor: Actor, events: list[DomainEvent]) -> None:
        from_status = OrderStatus(order.status)
        order.status = next_status(order, transition)
        events.append(
            OrderStatusChanged(
                order_id=order.id,
                from_status=from_status.value,
                to_status=order.status.value,
                actor_id=actor.id,
            )
        )
        logger.info(
            "Order status changed",
            extra={
                "order_id": order.id,
                "actor_id": actor.id,
                "action": transition.value,
                "from_status": from_status.value,
                "to_status": order.status.value,
            },
        )

    async def _publish_locked(self, order: Order, actor: Actor, events: list[DomainEvent]) -> None:
        next_status(order, Transition.PUBLISH)
        missing = order.missing_required_fields()
        if missing:
            raise IncompleteOrderError(missing)
        await self._ensure_active_category(order.category_id)
        self._move(order, Transition.PUBLISH, actor, events)
        order.is_published = True
        await increment_services_count(self.session, order.category_id)

    async def _reject_pending(self, order_id: int, reason: str) -> int:
        result = await self.session.execute(
            update(OrderApplication)
            .where(
                OrderApplication.order_id == order_id,
                OrderApplication.status == ApplicationStatus.PENDING,
            )
            .values(status=ApplicationStatus.REJECTED, rejection_reason=reason)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    # Customer side

    async def create_order(self, actor: Actor, draft: OrderDraft) -> Order:
        if not actor.capabilities.can_post_orders:
            raise AuthorizationError("Only customers can post orders")
        values = draft.values()
        _validate_details(values)
        if draft.category_id is not None:
            await self._ensure_active_category(draft.category_id)

        for name in ("preferred_start_date", "deadline"):
            if values[name] is not None:
                values[name] = to_naive_utc(values[name])

        order = Order(customer_id=actor.id, status=OrderStatus.DRAFT, is_published=False, **values)
        events: list[DomainEvent] = []
        try:
            self.session.add(order)
            await self.session.flush()
            if draft.publish:
                await self._publish_locked(order, actor, events)
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise

        logger.info(
            "Order created",
            extra={"order_id": order.id, "customer_id": actor.id, "status": order.status.value},
        )
        dispatch_all(self.dispatcher, events)
        return order

    async def edit(self, order_id: int, actor: Actor, changes: Mapping[str, Any]) -> Order:
        """Change order details while it is still a draft or open without an executor."""
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown order fields: {', '.join(sorted(unknown))}")
        cleared = sorted(name for name in NON_NULLABLE_FIELDS if name in changes and changes[name] is None)
        if cleared:
            raise ValidationError(f"Order fields cannot be cleared: {', '.join(cleared)}")

        async with order_write_unit(self.session, order_id) as order:
            if order.customer_id != actor.id:
                raise AuthorizationError(f"Order {order_id} belongs to another customer")
            if order.status not in EDITABLE_STATUSES:
                raise IllegalTransitionError(
                    f"Order {order_id} is {order.status.value}; only draft or open orders can be edited"
                )
            # Budget and location are checked as a whole, dates only when they change
            to_check = {
                name: changes.get(name, getattr(order, name))
                for name in ("budget_from", "budget_to", "location_lat", "location_lng", "title")
            }
            to_check.update({k: v for k, v in changes.items() if k in ("preferred_start_date", "deadline")})
            _validate_details(to_check)
            if "category_id" in changes:
                if changes["category_id"] is None and order.status == OrderStatus.OPEN:
                    raise ValidationError("Published orders must keep a category")
                if changes["category_id"] is not None:
                    await self._ensure_active_category(changes["category_id"])
            if order.status == OrderStatus.OPEN:
                for name in ("title", "description", "address", "price_type"):
                    if name in changes and not changes[name]:
                        raise ValidationError(f"Published orders must keep {name}")
            for name, value in changes.items():
                if name in ("preferred_start_date", "deadline") and value is not None:
                    value = to_naive_utc(value)
                setattr(order, name, value)

        logger.info("Order edited", extra={"order_id": order_id, "count": len(changes)})
        return order

    async def publish(self, order_id: int, actor: Actor) -> Order:
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            if order.customer_id != actor.id:
                raise AuthorizationError(f"Order {order_id} belongs to another customer")
            await self._publish_locked(order, actor, events)
        dispatch_all(self.dispatcher, events)
        return order

    async def cancel(self, order_id: int, actor: Actor, reason: str | None = None) -> Order:
        """Customer (or staff) cancels; an assigned executor can only request it."""
        executor_id = await self._assigned_executor_id(actor)
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            if order.is_terminal:
                raise TerminalOrderError(order_id, OrderStatus(order.status).value)

            is_customer = order.customer_id == actor.id or actor.capabilities.can_moderate_orders
            is_executor = executor_id is not None and order.executor_id == executor_id

            if is_customer:
                self._move(order, Transition.CANCEL, actor, events)
                rejected = await self._reject_pending(order_id, reason or ORDER_CANCELLED_REASON)
                if rejected:
                    logger.info("Pending applications closed", extra={"order_id": order_id, "rejected_count": rejected})
            elif is_executor:
                if order.status != OrderStatus.IN_PROGRESS:
                    raise IllegalTransitionError(
                        f"Executors can only request cancellation of in-progress orders, order {order_id} "
                        f"is {order.status.value}"
                    )
                # Approval happens outside the engine; the status stays put
                order.cancellation_requested_at = utcnow()
                events.append(
                    OrderCancellationRequested(
                        order_id=order_id, executor_id=executor_id, customer_id=order.customer_id
                    )
                )
                logger.info("Cancellation requested", extra={"order_id": order_id, "executor_id": executor_id})
            else:
                raise AuthorizationError(f"Actor {actor.id} cannot cancel order {order_id}")

        dispatch_all(self.dispatcher, events)
        return order

    async def complete(self, order_id: int, actor: Actor, rating: int, review: str | None = None) -> Order:
        """Customer confirms the work and rates the executor."""
        check_rating(rating)
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            if order.customer_id != actor.id:
                raise AuthorizationError(f"Only the customer can confirm order {order_id}")
            self._move(order, Transition.CONFIRM, actor, events)
            order.actual_end_date = utcnow()
            order.rating_by_customer = rating
            order.review_by_customer = review
            events.append(
                OrderCompleted(
                    order_id=order_id,
                    customer_id=order.customer_id,
                    executor_id=order.executor_id,
                    rating=rating,
                )
            )
        dispatch_all(self.dispatcher, events)
        return order

    async def request_rework(self, order_id: int, actor: Actor) -> Order:
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            if order.customer_id != actor.id:
                raise AuthorizationError(f"Only the customer can send order {order_id} back to work")
            self._move(order, Transition.REQUEST_REWORK, actor, events)
        dispatch_all(self.dispatcher, events)
        return order

    # Executor side

    async def mark_done(self, order_id: int, actor: Actor) -> Order:
        executor_id = await self._assigned_executor_id(actor)
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            if executor_id is None or order.executor_id != executor_id:
                raise AuthorizationError(f"Only the assigned executor can finish order {order_id}")
            self._move(order, Transition.MARK_DONE, actor, events)
        dispatch_all(self.dispatcher, events)
        return order

    # Either side

    async def raise_dispute(self, order_id: int, actor: Actor, reason: str) -> Order:
        if not reason or not reason.strip():
            raise ValidationError("Describe the problem to open a dispute")
        executor_id = await self._assigned_executor_id(actor)
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            is_party = order.customer_id == actor.id or (
                executor_id is not None and order.executor_id == executor_id
            )
            if not is_party:
                raise AuthorizationError(f"Only the parties of order {order_id} can open a dispute")
            self._move(order, Transition.RAISE_DISPUTE, actor, events)
            order.dispute_reason = reason.strip()
        dispatch_all(self.dispatcher, events)
        return order

    async def rate(self, order_id: int, actor: Actor, rating: int, review: str | None = None) -> Order:
        """Counter-party rating after completion; each side rates once."""
        check_rating(rating)
        executor_id = await self._assigned_executor_id(actor)
        async with order_write_unit(self.session, order_id) as order:
            if order.status != OrderStatus.COMPLETED:
                raise IllegalTransitionError(f"Order {order_id} can be rated only after completion")
            if order.customer_id == actor.id:
                if order.rating_by_customer is not None:
                    raise ConflictError(f"Customer already rated order {order_id}")
                order.rating_by_customer = rating
                order.review_by_customer = review
            elif executor_id is not None and order.executor_id == executor_id:
                if order.rating_by_executor is not None:
                    raise ConflictError(f"Executor already rated order {order_id}")
                order.rating_by_executor = rating
                order.review_by_executor = review
            else:
                raise AuthorizationError(f"Only the parties of order {order_id} can rate it")

        logger.info(
            "Order rated",
            extra={"order_id": order_id, "actor_id": actor.id, "status": "fully rated" if order.is_fully_rated else None},
        )
        return order

    # Staff

    async def resolve_dispute(self, order_id: int, actor: Actor, outcome: OrderStatus | str) -> Order:
        if not actor.capabilities.can_moderate_orders:
            raise AuthorizationError("Only administrators can resolve disputes")
        outcome = OrderStatus(outcome)
        transitions = {
            OrderStatus.COMPLETED: Transition.RESOLVE_COMPLETED,
            OrderStatus.CANCELLED: Transition.RESOLVE_CANCELLED,
        }
        if outcome not in transitions:
            raise ValidationError("A dispute resolves to completed or cancelled")

        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            self._move(order, transitions[outcome], actor, events)
            if outcome == OrderStatus.COMPLETED:
                order.actual_end_date = utcnow()
                events.append(
                    OrderCompleted(order_id=order_id, customer_id=order.customer_id, executor_id=order.executor_id)
                )
            else:
                await self._reject_pending(order_id, ORDER_CANCELLED_REASON)
        dispatch_all(self.dispatcher, events)
        return order

    # Counters

    async def record_view(self, order_id: int) -> None:
        """Monotonic increment done in SQL, no lock needed."""
        result = await self.session.execute(
            update(Order).where(Order.id == order_id).values(views_count=Order.views_count + 1)
        )
        if not result.rowcount:
            await self.session.rollback()
            raise OrderNotFoundError(order_id)
        await self.session.commit()

    async def list_for_customer(self, actor: Actor) -> list[Order]:
        result = await self.session.execute(
            select(Order).where(Order.customer_id == actor.id).order_by(Order.created_at.desc(), Order.id.desc())
        )
        return list(result.scalars().all())
