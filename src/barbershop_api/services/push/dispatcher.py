"""Fan a logical notification out to push subscriptions and audit the result."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.core.settings import settings
from barbershop_api.db.session import store_guard
from barbershop_api.models.notification import NotificationHistory, NotificationHistoryStatus
from barbershop_api.models.push import PushSubscription
from barbershop_api.models.user import User
from barbershop_api.observability.loyalty import get_loyalty_store

from .backend import DeliveryOutcome, DeliveryResult, PushBackend, SubscriptionTarget, Urgency
from .preferences import PreferenceFilter, preference_field_for

SKIPPED_DETAIL = "User disabled this notification type"


@dataclass
class PushMessage:
    """Notification content as rendered by the service worker."""

    title: str
    body: str
    icon: str | None = None
    badge: str | None = None
    tag: str | None = None
    data: dict[str, Any] | None = None
    actions: list[dict[str, str]] | None = None

    def to_payload(self, default_icon: str) -> bytes:
        payload: dict[str, Any] = {
            "title": self.title,
            "body": self.body,
            "icon": self.icon or default_icon,
            "badge": self.badge or default_icon,
        }
        if self.tag is not None:
            payload["tag"] = self.tag
        if self.data is not None:
            payload["data"] = self.data
        if self.actions:
            payload["actions"] = self.actions
        return json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")


@dataclass
class DispatchResult:
    status: NotificationHistoryStatus
    sent: int
    total: int
    errors: list[str] = field(default_factory=list)
    users_notified: int | None = None
    skipped: int | None = None
    message: str | None = None

    def as_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": True, "sent": self.sent, "total": self.total}
        if self.users_notified is not None:
            payload["usersNotified"] = self.users_notified
        if self.skipped is not None:
            payload["skipped"] = self.skipped
        if self.errors:
            payload["errors"] = list(self.errors)
        if self.message:
            payload["message"] = self.message
        return payload


@dataclass(frozen=True, slots=True)
class _Recipient:
    subscription_id: UUID
    user_id: UUID
    target: SubscriptionTarget


@dataclass
class _FanOutReport:
    sent: int = 0
    errors: list[str] = field(default_factory=list)
    gone: list[UUID] = field(default_factory=list)
    users_notified: set[UUID] = field(default_factory=set)


class NotificationDispatcher:
    """Targeted and broadcast push delivery with pruning and history."""

    def __init__(
        self,
        db_session: AsyncSession,
        backend: PushBackend,
        *,
        preference_filter: PreferenceFilter | None = None,
        max_concurrency: int | None = None,
        urgency: Urgency | None = None,
        ttl_seconds: int | None = None,
        default_icon: str | None = None,
    ) -> None:
        self._db = db_session
        self._backend = backend
        self._preferences = preference_filter or PreferenceFilter(db_session)
        self._max_concurrency = max(max_concurrency or settings.push_max_concurrency, 1)
        self._urgency: Urgency = urgency or settings.push_default_urgency
        self._ttl_seconds = ttl_seconds or settings.push_default_ttl_seconds
        self._default_icon = default_icon or settings.push_default_icon
        self._observability = get_loyalty_store()

    async def send_to_user(
        self,
        user_id: UUID,
        message: PushMessage,
        *,
        notification_type: str = "general",
        user_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Deliver to every subscription of one user."""

        if not await self._preferences.is_allowed(notification_type, user_id):
            logger.info(
                "Push suppressed by user preference",
                user_id=str(user_id),
                notification_type=notification_type,
                preference=preference_field_for(notification_type),
            )
            result = DispatchResult(NotificationHistoryStatus.SKIPPED, sent=0, total=0, message=SKIPPED_DETAIL)
            await self._finish(result, message, notification_type, user_id=user_id, user_name=user_name,
                               metadata=metadata, error_details=SKIPPED_DETAIL)
            return result

        recipients = await self._load_recipients(user_id)
        if user_name is None:
            user_name = await self._resolve_user_name(user_id)

        if not recipients:
            logger.info("No push subscriptions for user", user_id=str(user_id))
            result = DispatchResult(
                NotificationHistoryStatus.NO_SUBSCRIBERS, sent=0, total=0, message="No subscriptions found"
            )
            await self._finish(result, message, notification_type, user_id=user_id, user_name=user_name,
                               metadata=metadata)
            return result

        report = await self._fan_out(recipients, message)
        status = NotificationHistoryStatus.SENT if report.sent else NotificationHistoryStatus.FAILED
        result = DispatchResult(status, sent=report.sent, total=len(recipients), errors=report.errors)
        await self._finish(result, message, notification_type, user_id=user_id, user_name=user_name,
                           metadata=metadata, gone=report.gone)
        logger.info(
            "Push notification sent to user",
            user_id=str(user_id),
            notification_type=notification_type,
            sent=report.sent,
            total=len(recipients),
            pruned=len(report.gone),
        )
        return result

    async def send_to_all(
        self,
        message: PushMessage,
        *,
        notification_type: str = "broadcast",
        metadata: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Deliver to every subscription in the system, honoring category opt-outs."""

        recipients = await self._load_recipients(None)
        if not recipients:
            result = DispatchResult(
                NotificationHistoryStatus.NO_SUBSCRIBERS,
                sent=0,
                total=0,
                users_notified=0,
                skipped=0,
                message="No subscriptions found",
            )
            await self._finish(result, message, notification_type, metadata=metadata)
            return result

        allowed = await self._preferences.filter(notification_type, {r.user_id for r in recipients})
        targets = [recipient for recipient in recipients if recipient.user_id in allowed]
        skipped = len(recipients) - len(targets)

        report = await self._fan_out(targets, message)
        if not targets:
            status = NotificationHistoryStatus.SKIPPED
        elif report.sent:
            status = NotificationHistoryStatus.SENT
        else:
            status = NotificationHistoryStatus.FAILED

        result = DispatchResult(
            status,
            sent=report.sent,
            total=len(recipients),
            errors=report.errors,
            users_notified=len(report.users_notified),
            skipped=skipped,
        )
        history_metadata = {
            **(metadata or {}),
            "users_notified": len(report.users_notified),
            "skipped": skipped,
        }
        await self._finish(result, message, notification_type, metadata=history_metadata, gone=report.gone)
        logger.bind(
            notification_type=notification_type,
            sent=report.sent,
            total=len(recipients),
            skipped=skipped,
            users_notified=len(report.users_notified),
            pruned=len(report.gone),
        ).info("Broadcast push completed")
        return result

    async def _load_recipients(self, user_id: UUID | None) -> list[_Recipient]:
        stmt = select(PushSubscription)
        if user_id is not None:
            stmt = stmt.where(PushSubscription.user_id == user_id)
        async with store_guard(self._db, "load push subscriptions"):
            result = await self._db.execute(stmt)
            subscriptions: Sequence[PushSubscription] = result.scalars().all()
        return [
            _Recipient(
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                target=SubscriptionTarget(
                    endpoint=subscription.endpoint,
                    p256dh=subscription.p256dh,
                    auth=subscription.auth,
                ),
            )
            for subscription in subscriptions
        ]

    async def _resolve_user_name(self, user_id: UUID) -> str | None:
        async with store_guard(self._db, "resolve user name"):
            result = await self._db.execute(select(User.full_name).where(User.id == user_id))
            return result.scalar_one_or_none()

    async def _fan_out(self, recipients: Iterable[_Recipient], message: PushMessage) -> _FanOutReport:
        payload = message.to_payload(self._default_icon)
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _deliver(recipient: _Recipient) -> tuple[_Recipient, DeliveryResult]:
            async with semaphore:
                try:
                    result = await self._backend.deliver(
                        recipient.target,
                        payload,
                        urgency=self._urgency,
                        ttl_seconds=self._ttl_seconds,
                    )
                except Exception as exc:  # pragma: no cover - backend bugs stay per-subscription
                    logger.exception("Push backend raised", subscription_id=str(recipient.subscription_id))
                    result = DeliveryResult(DeliveryOutcome.TRANSIENT_FAILURE, error=str(exc))
            return recipient, result

        deliveries = await asyncio.gather(*(_deliver(recipient) for recipient in recipients))

        report = _FanOutReport()
        for recipient, result in deliveries:
            self._observability.record_push_outcome(result.outcome.value)
            if result.outcome is DeliveryOutcome.DELIVERED:
                report.sent += 1
                report.users_notified.add(recipient.user_id)
            elif result.outcome is DeliveryOutcome.GONE:
                logger.info("Push subscription expired", subscription_id=str(recipient.subscription_id))
                report.gone.append(recipient.subscription_id)
            else:
                report.errors.append(result.error or "unknown push failure")
        return report

    async def _finish(
        self,
        result: DispatchResult,
        message: PushMessage,
        notification_type: str,
        *,
        user_id: UUID | None = None,
        user_name: str | None = None,
        metadata: dict[str, Any] | None = None,
        error_details: str | None = None,
        gone: Sequence[UUID] = (),
    ) -> None:
        """Prune dead subscriptions and append the history row in one commit."""

        async with store_guard(self._db, "record notification history"):
            if gone:
                await self._db.execute(delete(PushSubscription).where(PushSubscription.id.in_(list(gone))))
            self._db.add(
                NotificationHistory(
                    user_id=user_id,
                    user_name=user_name,
                    notification_type=notification_type,
                    title=message.title,
                    body=message.body,
                    status=result.status,
                    sent_count=result.sent,
                    total_subscriptions=result.total,
                    error_details=error_details or ("; ".join(result.errors) if result.errors else None),
                    metadata_json=metadata,
                )
            )
            await self._db.commit()
        self._observability.record_dispatch(result.status.value)


__all__ = ["DispatchResult", "NotificationDispatcher", "PushMessage"]
