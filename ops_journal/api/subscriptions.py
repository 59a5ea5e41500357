"""API routes for the caller's subscriptions."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from ..core import AuditSinkDep, CurrentUserDep, SessionDep, WriterDep
from ..schemas import SubscriptionCreate, SubscriptionResponse
from ..services import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


def get_subscription_service(session: SessionDep, audit: AuditSinkDep) -> SubscriptionService:
    return SubscriptionService(session, audit)


SubscriptionServiceDep = Annotated[SubscriptionService, Depends(get_subscription_service)]


@router.get("", response_model=list[SubscriptionResponse])
async def list_subscriptions(current_user: CurrentUserDep, service: SubscriptionServiceDep):
    return await service.list_for_user(current_user.actor)


@router.post(
    "",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Subscribe to a node",
    description="Creates the subscription, or updates it when one already exists for the node.",
)
async def subscribe(
    request: SubscriptionCreate,
    current_user: WriterDep,
    service: SubscriptionServiceDep,
):
    return await service.subscribe(
        current_user.actor,
        request.node_id,
        include_descendants=request.include_descendants,
        notify_on_edit=request.notify_on_edit,
        impact_threshold=request.impact_threshold,
    )


@router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unsubscribe(
    subscription_id: UUID,
    current_user: WriterDep,
    service: SubscriptionServiceDep,
):
    await service.unsubscribe(current_user.actor, subscription_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
