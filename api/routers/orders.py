from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status

from api.deps import get_current_actor, get_optional_actor, get_order_catalog, get_order_lifecycle
from api.schemas import (
    CancelRequest,
    DisputeRequest,
    ExecutorResponse,
    OrderCreate,
    OrderPageResponse,
    OrderResponse,
    OrderUpdate,
    RatingRequest,
    ResolveDisputeRequest,
)
from marketplace.actors import Actor
from marketplace.models import OrderStatus, PriceType, Urgency
from marketplace.services.applications import require_order_owner
from marketplace.services.catalog import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_SEARCH_RADIUS_KM,
    MAX_PAGE_SIZE,
    OrderCatalog,
    OrderSearch,
)
from marketplace.services.lifecycle import OrderDraft, OrderLifecycle

router = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.create_order(actor, OrderDraft(**payload.model_dump()))


@router.get("/mine", response_model=list[OrderResponse])
async def list_my_orders(
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.list_for_customer(actor)


@router.get("/feed", response_model=list[OrderResponse])
async def get_feed(
    actor: Actor = Depends(get_current_actor),
    catalog: OrderCatalog = Depends(get_order_catalog),
):
    """Открытые заказы в категориях и радиусе исполнителя."""
    return await catalog.visible_orders_for_user(actor.id)


@router.get("/open", response_model=list[OrderResponse])
async def list_open_orders(
    category_id: int | None = Query(None),
    catalog: OrderCatalog = Depends(get_order_catalog),
):
    return await catalog.orders_accepting_applications(category_id)


@router.get("/search", response_model=OrderPageResponse)
async def search_orders(
    search: str | None = Query(None, max_length=200),
    category_id: int | None = Query(None),
    order_status: OrderStatus | None = Query(None, alias="status"),
    urgency: Urgency | None = Query(None),
    price_type: PriceType | None = Query(None),
    min_budget: Decimal | None = Query(None, ge=0),
    max_budget: Decimal | None = Query(None, ge=0),
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    radius: float = Query(DEFAULT_SEARCH_RADIUS_KM, gt=0, le=500),
    customer_id: int | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    actor: Actor | None = Depends(get_optional_actor),
    catalog: OrderCatalog = Depends(get_order_catalog),
):
    """Поиск заказов: сначала срочные, затем новые."""
    criteria = OrderSearch(
        text=search,
        category_id=category_id,
        status=order_status,
        urgency=urgency,
        price_type=price_type,
        min_budget=min_budget,
        max_budget=max_budget,
        lat=lat,
        lng=lng,
        radius_km=radius,
        customer_id=customer_id,
        page=page,
        limit=limit,
    )
    return await catalog.search_orders(criteria, actor)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: int, lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    return await lifecycle.get(order_id)


@router.post("/{order_id}/views", status_code=status.HTTP_204_NO_CONTENT)
async def record_view(order_id: int, lifecycle: OrderLifecycle = Depends(get_order_lifecycle)):
    await lifecycle.record_view(order_id)


@router.patch("/{order_id}", response_model=OrderResponse)
async def edit_order(
    order_id: int,
    payload: OrderUpdate,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.edit(order_id, actor, payload.model_dump(exclude_unset=True))


@router.post("/{order_id}/publish", response_model=OrderResponse)
async def publish_order(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.publish(order_id, actor)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: int,
    payload: CancelRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    """Отмена заказчиком; исполнитель может только запросить отмену."""
    return await lifecycle.cancel(order_id, actor, payload.reason)


@router.post("/{order_id}/done", response_model=OrderResponse)
async def mark_done(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.mark_done(order_id, actor)


@router.post("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: int,
    payload: RatingRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.complete(order_id, actor, payload.rating, payload.review)


@router.post("/{order_id}/rework", response_model=OrderResponse)
async def request_rework(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.request_rework(order_id, actor)


@router.post("/{order_id}/dispute", response_model=OrderResponse)
async def raise_dispute(
    order_id: int,
    payload: DisputeRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.raise_dispute(order_id, actor, payload.reason)


@router.post("/{order_id}/resolve", response_model=OrderResponse)
async def resolve_dispute(
    order_id: int,
    payload: ResolveDisputeRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.resolve_dispute(order_id, actor, payload.outcome)


@router.post("/{order_id}/rate", response_model=OrderResponse)
async def rate_order(
    order_id: int,
    payload: RatingRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
):
    return await lifecycle.rate(order_id, actor, payload.rating, payload.review)


@router.get("/{order_id}/executors", response_model=list[ExecutorResponse])
async def executors_in_range(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    lifecycle: OrderLifecycle = Depends(get_order_lifecycle),
    catalog: OrderCatalog = Depends(get_order_catalog),
):
    """Исполнители, которым заказ виден в ленте."""
    require_order_owner(await lifecycle.get(order_id), actor)
    return await catalog.executors_in_range(order_id)
