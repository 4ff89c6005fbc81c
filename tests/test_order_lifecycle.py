from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

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
from marketplace.events import OrderCancellationRequested, OrderCompleted, OrderStatusChanged
from marketplace.models import ApplicationStatus, Order, OrderApplication, OrderStatus, ServiceCategory, Urgency
from marketplace.models.base import utcnow
from marketplace.services.applications import Bid
from marketplace.services.lifecycle import TRANSITIONS, Transition, check_rating, next_status


@pytest.fixture
async def category(make_category):
    return await make_category()


@pytest.fixture
async def started_order(make_order, make_executor, category, workflow, executors, customer):
    """Заказ в работе: исполнитель выбран, заявка принята"""
    await make_executor(executors[0].id)
    order = await make_order(category.id)
    application = await workflow.submit(order.id, executors[0], Bid(message="Сделаю", proposed_price=Decimal("300000")))
    await workflow.accept(order.id, application.id, customer)
    return order


async def _reload(session, order_id):
    return await session.get(Order, order_id, populate_existing=True)


def test_transition_table_matches_state_machine():
    sources, target = TRANSITIONS[Transition.CANCEL]
    assert target == OrderStatus.CANCELLED
    assert OrderStatus.DRAFT not in sources
    assert TRANSITIONS[Transition.REQUEST_REWORK] == (
        frozenset({OrderStatus.WAITING_CONFIRMATION}),
        OrderStatus.IN_PROGRESS,
    )


def test_next_status_explains_expected_states():
    order = Order(id=1, status=OrderStatus.DRAFT)
    with pytest.raises(IllegalTransitionError, match="expected in_progress"):
        next_status(order, Transition.MARK_DONE)

    order.status = OrderStatus.COMPLETED
    with pytest.raises(TerminalOrderError):
        next_status(order, Transition.CANCEL)


@pytest.mark.parametrize("rating", [0, 6, 4.5, True, "5"])
def test_check_rating_rejects_out_of_range(rating):
    with pytest.raises(ValidationError):
        check_rating(rating)


@pytest.mark.asyncio
async def test_create_draft_and_publish_after_filling_address(lifecycle, make_order, category, customer, test_session):
    order = await make_order(category.id, publish=False, address=None)
    order_id = order.id
    assert order.status == OrderStatus.DRAFT
    assert not order.is_published

    with pytest.raises(IncompleteOrderError) as exc_info:
        await lifecycle.publish(order_id, customer)
    assert exc_info.value.missing == ["address"]
    assert (await _reload(test_session, order_id)).status == OrderStatus.DRAFT

    await lifecycle.edit(order_id, customer, {"address": "Ташкент, Юнусабад 12"})
    published = await lifecycle.publish(order_id, customer)

    assert published.status == OrderStatus.OPEN
    assert published.is_published
    assert published.can_receive_applications
    refreshed = await test_session.get(ServiceCategory, category.id, populate_existing=True)
    assert refreshed.services_count == 1


@pytest.mark.asyncio
async def test_create_and_publish_in_one_step(make_order, category, dispatcher):
    order = await make_order(category.id)
    assert order.status == OrderStatus.OPEN
    assert order.customer_id == 100
    (event,) = dispatcher.of_type(OrderStatusChanged)
    assert (event.from_status, event.to_status) == ("draft", "open")


@pytest.mark.asyncio
async def test_incomplete_publish_on_create_leaves_nothing_behind(make_order, category, test_session):
    with pytest.raises(IncompleteOrderError):
        await make_order(category.id, title=None)
    assert await test_session.scalar(select(func.count()).select_from(Order)) == 0


@pytest.mark.asyncio
async def test_create_validates_details(make_order, category, executors):
    with pytest.raises(ValidationError):
        await make_order(category.id, budget_from=Decimal("500"), budget_to=Decimal("100"))
    with pytest.raises(ValidationError):
        await make_order(category.id, point=None, location_lat=41.3)
    with pytest.raises(ValidationError):
        await make_order(category.id, deadline=utcnow() - timedelta(days=1))
    with pytest.raises(AuthorizationError):
        await make_order(category.id, actor=executors[0])


@pytest.mark.asyncio
async def test_publish_requires_active_category(make_order, make_category):
    archived = await make_category("Архив", slug="archive", is_active=False)
    with pytest.raises(CategoryNotFoundError):
        await make_order(archived.id)


@pytest.mark.asyncio
async def test_edit_rules(lifecycle, make_order, category, customer, other_customer, started_order):
    started_id = started_order.id
    order = await make_order(category.id)
    order_id = order.id

    edited = await lifecycle.edit(order_id, customer, {"title": "Заменить смеситель", "budget_to": Decimal("450000")})
    assert edited.title == "Заменить смеситель"

    with pytest.raises(ValidationError):
        await lifecycle.edit(order_id, customer, {"address": ""})
    with pytest.raises(ValidationError):
        await lifecycle.edit(order_id, customer, {"status": "completed"})
    with pytest.raises(ValidationError):
        await lifecycle.edit(order_id, customer, {"budget_from": Decimal("900000")})
    with pytest.raises(AuthorizationError):
        await lifecycle.edit(order_id, other_customer, {"title": "Чужой"})
    with pytest.raises(IllegalTransitionError):
        await lifecycle.edit(started_id, customer, {"title": "Поздно"})


@pytest.mark.asyncio
async def test_edit_cannot_clear_urgency_or_attachments(lifecycle, make_order, category, customer, test_session):
    order = await make_order(category.id, publish=False, attachments=["kran.jpg"])
    order_id = order.id

    with pytest.raises(ValidationError):
        await lifecycle.edit(order_id, customer, {"urgency": None})
    with pytest.raises(ValidationError):
        await lifecycle.edit(order_id, customer, {"attachments": None, "title": "Другое"})

    stored = await test_session.get(Order, order_id, populate_existing=True)
    assert stored.urgency == Urgency.MEDIUM
    assert stored.attachments == ["kran.jpg"]
    assert stored.title == "Починить кран"


@pytest.mark.asyncio
async def test_full_happy_path(lifecycle, started_order, executors, customer, dispatcher, test_session):
    order_id = started_order.id
    assert started_order.status == OrderStatus.IN_PROGRESS
    assert started_order.agreed_price == Decimal("300000")

    done = await lifecycle.mark_done(order_id, executors[0])
    assert done.status == OrderStatus.WAITING_CONFIRMATION

    completed = await lifecycle.complete(order_id, customer, 5, "Отлично")
    assert completed.status == OrderStatus.COMPLETED
    assert completed.rating_by_customer == 5
    assert completed.actual_end_date is not None
    (event,) = dispatcher.of_type(OrderCompleted)
    assert event.rating == 5

    with pytest.raises(IllegalTransitionError):
        await lifecycle.complete(order_id, customer, 5, "Ещё раз")
    assert (await _reload(test_session, order_id)).status == OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_rework_sends_order_back(lifecycle, started_order, executors, customer):
    order_id = started_order.id
    await lifecycle.mark_done(order_id, executors[0])

    order = await lifecycle.request_rework(order_id, customer)
    assert order.status == OrderStatus.IN_PROGRESS


@pytest.mark.asyncio
async def test_only_assigned_executor_marks_done(lifecycle, started_order, executors, make_executor, customer):
    order_id = started_order.id
    await make_executor(executors[1].id)

    with pytest.raises(AuthorizationError):
        await lifecycle.mark_done(order_id, executors[1])
    with pytest.raises(AuthorizationError):
        await lifecycle.complete(order_id, executors[0], 5)


@pytest.mark.asyncio
async def test_complete_requires_waiting_confirmation(lifecycle, started_order, customer):
    with pytest.raises(IllegalTransitionError, match="waiting_confirmation"):
        await lifecycle.complete(started_order.id, customer, 5)


@pytest.mark.asyncio
async def test_customer_cancel_closes_pending_applications(
    lifecycle, workflow, make_order, make_executor, category, executors, customer, test_session
):
    await make_executor(executors[0].id)
    order = await make_order(category.id)
    application = await workflow.submit(order.id, executors[0], Bid(message="Заявка"))

    cancelled = await lifecycle.cancel(order.id, customer, reason="Передумал")

    assert cancelled.status == OrderStatus.CANCELLED
    application = await test_session.get(OrderApplication, application.id, populate_existing=True)
    assert application.status == ApplicationStatus.REJECTED
    assert application.rejection_reason == "Передумал"

    with pytest.raises(TerminalOrderError):
        await lifecycle.cancel(order.id, customer)


@pytest.mark.asyncio
async def test_draft_cannot_be_cancelled(lifecycle, make_order, category, customer):
    order = await make_order(category.id, publish=False)
    with pytest.raises(IllegalTransitionError):
        await lifecycle.cancel(order.id, customer)


@pytest.mark.asyncio
async def test_executor_can_only_request_cancellation(
    lifecycle, started_order, executors, customer, other_customer, dispatcher
):
    order_id = started_order.id

    order = await lifecycle.cancel(order_id, executors[0])
    assert order.status == OrderStatus.IN_PROGRESS
    assert order.cancellation_requested_at is not None
    (event,) = dispatcher.of_type(OrderCancellationRequested)
    assert event.customer_id == customer.id

    with pytest.raises(AuthorizationError):
        await lifecycle.cancel(order_id, other_customer)


@pytest.mark.asyncio
async def test_dispute_and_resolution(lifecycle, started_order, executors, customer, admin, dispatcher):
    order_id = started_order.id

    with pytest.raises(ValidationError):
        await lifecycle.raise_dispute(order_id, executors[0], "  ")

    disputed = await lifecycle.raise_dispute(order_id, executors[0], "Заказчик не пускает в квартиру")
    assert disputed.status == OrderStatus.DISPUTED
    assert disputed.dispute_reason == "Заказчик не пускает в квартиру"

    with pytest.raises(AuthorizationError):
        await lifecycle.resolve_dispute(order_id, customer, OrderStatus.COMPLETED)
    with pytest.raises(ValidationError):
        await lifecycle.resolve_dispute(order_id, admin, "open")

    resolved = await lifecycle.resolve_dispute(order_id, admin, "completed")
    assert resolved.status == OrderStatus.COMPLETED
    assert dispatcher.of_type(OrderCompleted)


@pytest.mark.asyncio
async def test_parties_rate_each_other_once(lifecycle, started_order, executors, customer, other_customer):
    order_id = started_order.id
    await lifecycle.mark_done(order_id, executors[0])
    await lifecycle.complete(order_id, customer, 5)

    with pytest.raises(ConflictError):
        await lifecycle.rate(order_id, customer, 4)
    with pytest.raises(AuthorizationError):
        await lifecycle.rate(order_id, other_customer, 4)

    order = await lifecycle.rate(order_id, executors[0], 4, "Вежливый заказчик")
    assert order.rating_by_executor == 4
    assert order.is_fully_rated


@pytest.mark.asyncio
async def test_rate_requires_completion(lifecycle, started_order, customer):
    with pytest.raises(IllegalTransitionError):
        await lifecycle.rate(started_order.id, customer, 5)


@pytest.mark.asyncio
async def test_record_view_increments_counter(lifecycle, make_order, category, test_session):
    order = await make_order(category.id)
    await lifecycle.record_view(order.id)
    await lifecycle.record_view(order.id)

    assert (await _reload(test_session, order.id)).views_count == 2
    with pytest.raises(OrderNotFoundError):
        await lifecycle.record_view(9999)


@pytest.mark.asyncio
async def test_list_for_customer(lifecycle, make_order, category, customer, other_customer):
    first = await make_order(category.id)
    second = await make_order(category.id, publish=False)
    await make_order(category.id, actor=other_customer)

    orders = await lifecycle.list_for_customer(customer)
    assert {o.id for o in orders} == {first.id, second.id}
