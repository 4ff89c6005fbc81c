"""Bidding on orders: submit, accept, reject, withdraw, mark viewed."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.actors import Actor
from marketplace.errors import (
    ApplicationNotFoundError,
    ApplicationNotPendingError,
    AuthorizationError,
    DuplicateApplicationError,
    ExecutorAlreadySelectedError,
    ExecutorProfileNotFoundError,
    OrderNotAcceptingApplicationsError,
    OrderNotFoundError,
    ValidationError,
)
from marketplace.events import (
    ApplicationAccepted,
    ApplicationRejected,
    ApplicationSubmitted,
    DomainEvent,
    EventDispatcher,
    OrderStatusChanged,
    dispatch_all,
)
from marketplace.models import ApplicationStatus, Order, OrderApplication, OrderStatus
from marketplace.models.base import to_naive_utc, utcnow
from marketplace.services.executors import ExecutorProfileStore, ExecutorSnapshot, SqlExecutorProfileStore
from marketplace.services.lifecycle import Transition, next_status
from marketplace.services.locking import order_write_unit

logger = logging.getLogger(__name__)

ANOTHER_EXECUTOR_SELECTED = "Another executor was selected"


@dataclass(frozen=True)
class Bid:
    message: str
    proposed_price: Decimal | None = None
    proposed_duration_days: int | None = None
    available_from: datetime | None = None

    def validate(self) -> None:
        if not self.message or not self.message.strip():
            raise ValidationError("Application message must not be empty")
        if self.proposed_price is not None and self.proposed_price <= 0:
            raise ValidationError("Proposed price must be positive")
        if self.proposed_duration_days is not None and self.proposed_duration_days < 1:
            raise ValidationError("Proposed duration must be at least one day")


def require_order_owner(order: Order, actor: Actor) -> None:
    if order.customer_id != actor.id and not actor.capabilities.can_moderate_orders:
        raise AuthorizationError(f"Order {order.id} belongs to another customer")


class ApplicationWorkflow:
    def __init__(
        self,
        session: AsyncSession,
        dispatcher: EventDispatcher,
        executors: ExecutorProfileStore | None = None,
    ):
        self.session = session
        self.dispatcher = dispatcher
        self.executors = executors or SqlExecutorProfileStore(session)

    async def _executor_of(self, actor: Actor) -> ExecutorSnapshot:
        executor = await self.executors.get_by_user(actor.id)
        if executor is None:
            raise ExecutorProfileNotFoundError(f"User {actor.id} has no executor profile")
        return executor

    async def _application_on(self, order_id: int, application_id: int, lock: bool = False) -> OrderApplication:
        query = select(OrderApplication).where(
            OrderApplication.id == application_id,
            OrderApplication.order_id == order_id,
        )
        if lock:
            query = query.with_for_update()
        result = await self.session.execute(query.execution_options(populate_existing=True))
        application = result.scalars().first()
        if application is None:
            raise ApplicationNotFoundError(application_id)
        return application

    async def submit(self, order_id: int, actor: Actor, bid: Bid) -> OrderApplication:
        """Create a pending application and bump the order's counter."""
        if not actor.capabilities.can_bid:
            raise AuthorizationError("Only executors can apply to orders")
        bid.validate()
        executor = await self._executor_of(actor)

        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            if not order.can_receive_applications:
                raise OrderNotAcceptingApplicationsError(order_id)
            if order.customer_id == actor.id:
                raise ValidationError("Cannot apply to your own order")

            existing = await self.session.execute(
                select(OrderApplication.id).where(
                    OrderApplication.order_id == order_id,
                    OrderApplication.executor_id == executor.id,
                    OrderApplication.status != ApplicationStatus.WITHDRAWN,
                )
            )
            if existing.first() is not None:
                raise DuplicateApplicationError(order_id, executor.id)

            application = OrderApplication(
                order_id=order_id,
                executor_id=executor.id,
                message=bid.message.strip(),
                proposed_price=bid.proposed_price,
                proposed_duration_days=bid.proposed_duration_days,
                available_from=to_naive_utc(bid.available_from) if bid.available_from else None,
                status=ApplicationStatus.PENDING,
                is_viewed=False,
            )
            self.session.add(application)
            order.applications_count = (order.applications_count or 0) + 1
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise DuplicateApplicationError(order_id, executor.id) from exc

            events.append(
                ApplicationSubmitted(
                    order_id=order_id,
                    application_id=application.id,
                    executor_id=executor.id,
                    customer_id=order.customer_id,
                    proposed_price=bid.proposed_price,
                )
            )

        logger.info(
            "Application submitted",
            extra={"order_id": order_id, "application_id": application.id, "executor_id": executor.id},
        )
        dispatch_all(self.dispatcher, events)
        return application

    async def accept(self, order_id: int, application_id: int, actor: Actor) -> Order:
        """Accept one bid; siblings are rejected and the order starts, all in one unit."""
        events: list[DomainEvent] = []
        async with order_write_unit(self.session, order_id) as order:
            require_order_owner(order, actor)
            application = await self._application_on(order_id, application_id, lock=True)

            if application.status == ApplicationStatus.ACCEPTED:
                raise ApplicationNotPendingError(application_id, application.status.value)
            if order.executor_id is not None:
                raise ExecutorAlreadySelectedError(order_id)
            if not order.can_receive_applications:
                raise OrderNotAcceptingApplicationsError(order_id)
            if application.status != ApplicationStatus.PENDING:
                raise ApplicationNotPendingError(application_id, application.status.value)

            siblings = await self.session.execute(
                select(OrderApplication)
                .where(
                    OrderApplication.order_id == order_id,
                    OrderApplication.id != application_id,
                    OrderApplication.status == ApplicationStatus.PENDING,
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            rejected = list(siblings.scalars().all())
            for sibling in rejected:
                sibling.status = ApplicationStatus.REJECTED
                sibling.rejection_reason = ANOTHER_EXECUTOR_SELECTED

            application.status = ApplicationStatus.ACCEPTED
            from_status = order.status
            order.executor_id = application.executor_id
            order.status = next_status(order, Transition.ACCEPT_APPLICATION)
            order.actual_start_date = utcnow()
            # No proposed price means the posted budget stands
            order.agreed_price = application.proposed_price
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise ExecutorAlreadySelectedError(order_id) from exc

            events.append(
                ApplicationAccepted(
                    order_id=order_id,
                    application_id=application_id,
                    executor_id=application.executor_id,
                    rejected_application_ids=tuple(s.id for s in rejected),
                )
            )
            events.extend(
                ApplicationRejected(
                    order_id=order_id,
                    application_id=s.id,
                    executor_id=s.executor_id,
                    reason=ANOTHER_EXECUTOR_SELECTED,
                )
                for s in rejected
            )
            events.append(
                OrderStatusChanged(
                    order_id=order_id,
                    from_status=from_status.value,
                    to_status=OrderStatus.IN_PROGRESS.value,
                    actor_id=actor.id,
                )
            )

        logger.info(
            "Application accepted",
            extra={
                "order_id": order_id,
                "application_id": application_id,
                "executor_id": order.executor_id,
                "rejected_count": len(rejected),
                "from_status": from_status.value,
                "to_status": OrderStatus.IN_PROGRESS.value,
            },
        )
        dispatch_all(self.dispatcher, events)
        return order

    async def reject(
        self, order_id: int, application_id: int, actor: Actor, reason: str | None = None
    ) -> OrderApplication:
        async with order_write_unit(self.session, order_id) as order:
            require_order_owner(order, actor)
            application = await self._application_on(order_id, application_id, lock=True)
            if application.status != ApplicationStatus.PENDING:
                raise ApplicationNotPendingError(application_id, application.status.value)
            application.status = ApplicationStatus.REJECTED
            application.rejection_reason = reason.strip() if reason and reason.strip() else None

        logger.info(
            "Application rejected",
            extra={"order_id": order_id, "application_id": application_id, "reason": application.rejection_reason},
        )
        dispatch_all(
            self.dispatcher,
            [
                ApplicationRejected(
                    order_id=order_id,
                    application_id=application_id,
                    executor_id=application.executor_id,
                    reason=application.rejection_reason,
                )
            ],
        )
        return application

    async def withdraw(self, order_id: int, application_id: int, actor: Actor) -> OrderApplication:
        """Executor pulls back a pending bid. The order stays as it is."""
        executor = await self.executors.get_by_user(actor.id)
        async with order_write_unit(self.session, order_id):
            application = await self._application_on(order_id, application_id, lock=True)
            if executor is None or application.executor_id != executor.id:
                raise AuthorizationError(f"Application {application_id} belongs to another executor")
            if application.status != ApplicationStatus.PENDING:
                raise ApplicationNotPendingError(application_id, application.status.value)
            application.status = ApplicationStatus.WITHDRAWN

        logger.info(
            "Application withdrawn",
            extra={"order_id": order_id, "application_id": application_id, "executor_id": executor.id},
        )
        return application

    async def mark_viewed(self, order_id: int, application_id: int, actor: Actor) -> OrderApplication:
        """Idempotent; touches only ``is_viewed``."""
        order = await self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        require_order_owner(order, actor)
        application = await self._application_on(order_id, application_id)
        if not application.is_viewed:
            application.is_viewed = True
            await self.session.commit()
        return application

    async def list_for_order(self, order_id: int, actor: Actor) -> list[OrderApplication]:
        order = await self.session.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        require_order_owner(order, actor)
        result = await self.session.execute(
            select(OrderApplication)
            .where(OrderApplication.order_id == order_id)
            .order_by(OrderApplication.created_at.desc(), OrderApplication.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_executor(self, actor: Actor) -> list[OrderApplication]:
        executor = await self._executor_of(actor)
        result = await self.session.execute(
            select(OrderApplication)
            .where(OrderApplication.executor_id == executor.id)
            .order_by(OrderApplication.created_at.desc(), OrderApplication.id.desc())
        )
        return list(result.scalars().all())
