from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.api.dependencies.security import require_internal_api_key
from barbershop_api.db.session import get_session, store_guard
from barbershop_api.models.notification import NotificationHistory, NotificationHistoryStatus, NotificationPreference

router = APIRouter(prefix="/notifications", tags=["Notifications"])

PREFERENCE_FIELDS = ("booking_confirmations", "booking_reminders", "chat_messages", "giveaways", "promotions")


class NotificationPreferenceResponse(BaseModel):
    booking_confirmations: bool = Field(..., description="Booking confirmation pushes")
    booking_reminders: bool = Field(..., description="Appointment reminder pushes")
    chat_messages: bool = Field(..., description="Chat message pushes")
    giveaways: bool = Field(..., description="Giveaway announcements and results")
    promotions: bool = Field(..., description="Broadcasts, promotions and win-back reminders")

    model_config = ConfigDict(from_attributes=True)


class NotificationPreferenceUpdateRequest(BaseModel):
    booking_confirmations: bool | None = None
    booking_reminders: bool | None = None
    chat_messages: bool | None = None
    giveaways: bool | None = None
    promotions: bool | None = None


class NotificationHistoryEntry(BaseModel):
    id: UUID
    user_id: UUID | None
    user_name: str | None
    notification_type: str
    title: str
    body: str | None
    status: NotificationHistoryStatus
    sent_count: int
    total_subscriptions: int
    error_details: str | None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias=AliasChoices("metadata_json", "metadata"))
    created_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


async def _ensure_preference(session: AsyncSession, user_id: UUID) -> NotificationPreference:
    async with store_guard(session, "load notification preferences"):
        result = await session.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        preference = result.scalar_one_or_none()
        if preference is not None:
            return preference

        preference = NotificationPreference(user_id=user_id, **{field: True for field in PREFERENCE_FIELDS})
        session.add(preference)
        try:
            await session.commit()
        except IntegrityError:
            await session.rollback()
            result = await session.execute(
                select(NotificationPreference).where(NotificationPreference.user_id == user_id)
            )
            return result.scalar_one()
        await session.refresh(preference)
        return preference


@router.get(
    "/preferences/{user_id}",
    response_model=NotificationPreferenceResponse,
    status_code=status.HTTP_200_OK,
)
async def get_notification_preferences(
    user_id: UUID, session: AsyncSession = Depends(get_session)
) -> NotificationPreferenceResponse:
    """Fetch notification preferences for the user, creating defaults if necessary."""

    preference = await _ensure_preference(session, user_id)
    return NotificationPreferenceResponse.model_validate(preference)


@router.patch(
    "/preferences/{user_id}",
    response_model=NotificationPreferenceResponse,
    status_code=status.HTTP_200_OK,
)
async def update_notification_preferences(
    user_id: UUID,
    payload: NotificationPreferenceUpdateRequest,
    session: AsyncSession = Depends(get_session),
) -> NotificationPreferenceResponse:
    preference = await _ensure_preference(session, user_id)

    changes = {field: value for field, value in payload.model_dump(exclude_unset=True).items() if value is not None}
    if changes:
        async with store_guard(session, "update notification preferences"):
            for field, value in changes.items():
                setattr(preference, field, value)
            await session.commit()
            await session.refresh(preference)

    return NotificationPreferenceResponse.model_validate(preference)


@router.get(
    "/history",
    response_model=list[NotificationHistoryEntry],
    dependencies=[Depends(require_internal_api_key)],
)
async def list_notification_history(
    limit: int = Query(50, ge=1, le=500),
    notification_type: str | None = Query(default=None, alias="type"),
    session: AsyncSession = Depends(get_session),
) -> list[NotificationHistoryEntry]:
    """Most recent dispatch audit rows, newest first."""

    stmt = select(NotificationHistory).order_by(NotificationHistory.created_at.desc()).limit(limit)
    if notification_type:
        stmt = stmt.where(NotificationHistory.notification_type == notification_type)
    async with store_guard(session, "list notification history"):
        result = await session.execute(stmt)
        rows = result.scalars().all()
    return [NotificationHistoryEntry.model_validate(row) for row in rows]
