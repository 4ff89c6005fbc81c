from fastapi import APIRouter, Depends, status

from api.deps import get_application_workflow, get_current_actor
from api.schemas import ApplicationCreate, ApplicationResponse, OrderResponse, RejectRequest
from marketplace.actors import Actor
from marketplace.services.applications import ApplicationWorkflow, Bid

router = APIRouter()


@router.get("/applications/mine", response_model=list[ApplicationResponse])
async def list_my_applications(
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    return await workflow.list_for_executor(actor)


@router.post(
    "/{order_id}/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_application(
    order_id: int,
    payload: ApplicationCreate,
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    return await workflow.submit(order_id, actor, Bid(**payload.model_dump()))


@router.get("/{order_id}/applications", response_model=list[ApplicationResponse])
async def list_applications(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    return await workflow.list_for_order(order_id, actor)


@router.post("/{order_id}/applications/{application_id}/accept", response_model=OrderResponse)
async def accept_application(
    order_id: int,
    application_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    """Выбор исполнителя: остальные заявки отклоняются, заказ переходит в работу."""
    return await workflow.accept(order_id, application_id, actor)


@router.post("/{order_id}/applications/{application_id}/reject", response_model=ApplicationResponse)
async def reject_application(
    order_id: int,
    application_id: int,
    payload: RejectRequest,
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    return await workflow.reject(order_id, application_id, actor, payload.reason)


@router.post("/{order_id}/applications/{application_id}/withdraw", response_model=ApplicationResponse)
async def withdraw_application(
    order_id: int,
    application_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    return await workflow.withdraw(order_id, application_id, actor)


@router.post("/{order_id}/applications/{application_id}/viewed", response_model=ApplicationResponse)
async def mark_application_viewed(
    order_id: int,
    application_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: ApplicationWorkflow = Depends(get_application_workflow),
):
    return await workflow.mark_viewed(order_id, application_id, actor)
