"""Web Push endpoints: subscription lifecycle and operator sends."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, Field
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.api.dependencies.push import get_push_backend
from barbershop_api.api.dependencies.security import require_internal_api_key
from barbershop_api.db.session import get_session, store_guard
from barbershop_api.models.push import PushSubscription
from barbershop_api.services.push import NotificationDispatcher, PushBackend, PushMessage

router = APIRouter(prefix="/push", tags=["push"])


class NotificationAction(BaseModel):
    action: str
    title: str


class NotificationContent(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = ""
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    data: dict[str, Any] | None = None
    actions: list[NotificationAction] | None = None

    def to_message(self) -> PushMessage:
        return PushMessage(
            title=self.title,
            body=self.body,
            icon=self.icon,
            badge=self.badge,
            tag=self.tag,
            data=self.data,
            actions=[action.model_dump() for action in self.actions] if self.actions else None,
        )


class SendRequest(BaseModel):
    userId: UUID | None = None
    userName: str | None = None
    notification: NotificationContent
    notificationType: str | None = None
    metadata: dict[str, Any] | None = None


class BroadcastRequest(BaseModel):
    notification: NotificationContent
    notificationType: str = "broadcast"
    metadata: dict[str, Any] | None = None


class SubscriptionKeys(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class SubscriptionPayload(BaseModel):
    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeys


class SubscribeRequest(BaseModel):
    userId: UUID
    subscription: SubscriptionPayload
    userAgent: str | None = Field(default=None, max_length=255)


class UnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)


class SubscriptionResponse(BaseModel):
    id: UUID
    userId: UUID
    endpoint: str


@router.get("/vapid-public-key")
async def get_vapid_public_key(backend: PushBackend = Depends(get_push_backend)) -> dict[str, str]:
    """Application server key for ``pushManager.subscribe``."""

    return {"publicKey": getattr(backend, "public_key", "")}


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
async def upsert_subscription(
    payload: SubscribeRequest,
    session: AsyncSession = Depends(get_session),
) -> SubscriptionResponse:
    """Store a browser subscription; an endpoint seen before is re-bound to the posting user."""

    endpoint = payload.subscription.endpoint
    async with store_guard(session, "save push subscription"):
        result = await session.execute(select(PushSubscription).where(PushSubscription.endpoint == endpoint))
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = PushSubscription(endpoint=endpoint)
            session.add(subscription)
        subscription.user_id = payload.userId
        subscription.p256dh = payload.subscription.keys.p256dh
        subscription.auth = payload.subscription.keys.auth
        subscription.user_agent = payload.userAgent
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Subscription changed concurrently")

    return SubscriptionResponse(id=subscription.id, userId=subscription.user_id, endpoint=subscription.endpoint)


@router.delete("/subscriptions", status_code=status.HTTP_204_NO_CONTENT)
async def delete_subscription(
    payload: UnsubscribeRequest,
    session: AsyncSession = Depends(get_session),
) -> Response:
    async with store_guard(session, "delete push subscription"):
        await session.execute(delete(PushSubscription).where(PushSubscription.endpoint == payload.endpoint))
        await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/send", dependencies=[Depends(require_internal_api_key)])
async def send_notification(
    payload: SendRequest,
    session: AsyncSession = Depends(get_session),
    backend: PushBackend = Depends(get_push_backend),
) -> dict[str, Any]:
    """Send to one user, or to everyone when ``userId`` is omitted."""

    dispatcher = NotificationDispatcher(session, backend)
    message = payload.notification.to_message()
    if payload.userId is None:
        result = await dispatcher.send_to_all(
            message,
            notification_type=payload.notificationType or "broadcast",
            metadata=payload.metadata,
        )
    else:
        result = await dispatcher.send_to_user(
            payload.userId,
            message,
            notification_type=payload.notificationType or "general",
            user_name=payload.userName,
            metadata=payload.metadata,
        )
    return result.as_payload()


@router.post("/send-all", dependencies=[Depends(require_internal_api_key)])
async def send_notification_to_all(
    payload: BroadcastRequest,
    session: AsyncSession = Depends(get_session),
    backend: PushBackend = Depends(get_push_backend),
) -> dict[str, Any]:
    dispatcher = NotificationDispatcher(session, backend)
    result = await dispatcher.send_to_all(
        payload.notification.to_message(),
        notification_type=payload.notificationType,
        metadata=payload.metadata,
    )
    return result.as_payload()
