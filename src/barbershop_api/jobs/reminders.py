"""Booking and inactivity reminder jobs."""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict
from uuid import UUID
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.core.settings import settings
from barbershop_api.db.session import SessionFactory, resolve_session, store_guard
from barbershop_api.models.booking import Booking
from barbershop_api.models.notification import NotificationHistoryStatus
from barbershop_api.models.user import User
from barbershop_api.services.push import NotificationDispatcher, PushBackend, PushMessage, build_push_backend


@dataclass(frozen=True, slots=True)
class _ReminderTarget:
    booking_id: UUID
    user_id: UUID
    booking_date: dt.date
    booking_time: dt.time


async def _with_backend(
    push_backend: PushBackend | None,
    job_name: str,
    work: Callable[[PushBackend], Awaitable[Dict[str, Any]]],
) -> Dict[str, Any]:
    backend = push_backend
    owns_backend = False
    if backend is None:
        backend = build_push_backend()
        owns_backend = backend is not None
    if backend is None:
        logger.warning("Reminder job skipped", job=job_name, reason="push notifications not configured")
        return {"sent": 0, "skipped": True}
    try:
        return await work(backend)
    finally:
        if owns_backend:
            await backend.aclose()  # type: ignore[attr-defined]


def _hour_window(day: dt.date, hour: int):
    start = dt.time(hour=hour)
    clause = and_(Booking.booking_date == day, Booking.booking_time >= start)
    if hour < 23:
        clause = and_(clause, Booking.booking_time < dt.time(hour=hour + 1))
    return clause


async def _bookings_in_hour(session: AsyncSession, day: dt.date, hour: int) -> list[_ReminderTarget]:
    stmt = (
        select(Booking.id, Booking.user_id, Booking.booking_date, Booking.booking_time)
        .where(
            _hour_window(day, hour),
            Booking.is_cancelled.is_(False),
            Booking.user_id.is_not(None),
        )
        .order_by(Booking.booking_time)
    )
    async with store_guard(session, "load reminder bookings"):
        result = await session.execute(stmt)
        rows = result.all()
    return [_ReminderTarget(*row) for row in rows]


def one_hour_message(target: _ReminderTarget) -> PushMessage:
    return PushMessage(
        title="Your appointment is in 1 hour!",
        body=f"Reminder: your appointment is today at {target.booking_time.strftime('%H:%M')}. See you soon!",
        tag=f"booking-reminder-{target.booking_id}",
        data={"type": "booking-reminder-1h", "url": "/user", "bookingId": str(target.booking_id)},
    )


def day_before_message(target: _ReminderTarget) -> PushMessage:
    return PushMessage(
        title="Reminder: appointment tomorrow",
        body=(
            f"Your appointment is tomorrow, {target.booking_date.strftime('%A %d %B')}, "
            f"at {target.booking_time.strftime('%H:%M')}. See you soon!"
        ),
        tag=f"booking-reminder-{target.booking_id}",
        data={"type": "booking-reminder-24h", "url": "/user", "bookingId": str(target.booking_id)},
    )


async def run_booking_reminders(
    *,
    session_factory: SessionFactory,
    push_backend: PushBackend | None = None,
    now: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Send 1-hour and 24-hour appointment reminders for the current hour."""

    local_now = (now or dt.datetime.now(dt.timezone.utc)).astimezone(ZoneInfo(settings.business_timezone))
    in_one_hour = local_now + dt.timedelta(hours=1)
    tomorrow = local_now + dt.timedelta(days=1)

    async def _work(backend: PushBackend) -> Dict[str, Any]:
        session = await resolve_session(session_factory)
        async with session as managed_session:
            dispatcher = NotificationDispatcher(managed_session, backend)
            soon = await _bookings_in_hour(managed_session, in_one_hour.date(), in_one_hour.hour)
            next_day = await _bookings_in_hour(managed_session, tomorrow.date(), local_now.hour)

            planned = [(target, one_hour_message(target)) for target in soon]
            planned += [(target, day_before_message(target)) for target in next_day]

            sent = 0
            for target, message in planned:
                result = await dispatcher.send_to_user(
                    target.user_id,
                    message,
                    notification_type="booking_reminder",
                    metadata={"booking_id": str(target.booking_id)},
                )
                if result.sent:
                    sent += 1

        summary = {"one_hour": len(soon), "day_before": len(next_day), "sent": sent}
        logger.bind(summary=summary).info("Booking reminders completed")
        return summary

    return await _with_backend(push_backend, "booking_reminders", _work)


def inactive_message(full_name: str | None) -> PushMessage:
    first_name = (full_name or "").split(" ")[0] or "there"
    return PushMessage(
        title="We miss you!",
        body=f"Hi {first_name}, it's been a while since your last visit. Time for a fresh cut?",
        tag="inactive-reminder",
        data={"type": "inactive-reminder", "url": "/booking"},
        actions=[{"action": "book", "title": "Book now"}],
    )


async def run_inactive_user_reminders(
    *,
    session_factory: SessionFactory,
    push_backend: PushBackend | None = None,
    now: dt.datetime | None = None,
    inactive_days: int | None = None,
) -> Dict[str, Any]:
    """Nudge customers whose most recent booking is older than the inactivity window."""

    days = inactive_days or settings.inactive_reminder_days
    local_today = (now or dt.datetime.now(dt.timezone.utc)).astimezone(ZoneInfo(settings.business_timezone)).date()
    cutoff = local_today - dt.timedelta(days=days)

    async def _work(backend: PushBackend) -> Dict[str, Any]:
        session = await resolve_session(session_factory)
        async with session as managed_session:
            stmt = (
                select(User.id, User.full_name)
                .join(Booking, Booking.user_id == User.id)
                .where(User.is_banned.is_(False))
                .group_by(User.id, User.full_name)
                .having(func.max(Booking.booking_date) < cutoff)
            )
            async with store_guard(managed_session, "load inactive users"):
                result = await managed_session.execute(stmt)
                users = result.all()

            dispatcher = NotificationDispatcher(managed_session, backend)
            sent = 0
            skipped = 0
            for user_id, full_name in users:
                outcome = await dispatcher.send_to_user(
                    user_id,
                    inactive_message(full_name),
                    notification_type="inactive_reminder",
                    user_name=full_name,
                    metadata={"inactive_days": days},
                )
                if outcome.sent:
                    sent += 1
                elif outcome.status is NotificationHistoryStatus.SKIPPED:
                    skipped += 1

        summary = {"candidates": len(users), "sent": sent, "skipped": skipped, "cutoff": cutoff.isoformat()}
        logger.bind(summary=summary).info("Inactive user reminders completed")
        return summary

    return await _with_backend(push_backend, "inactive_user_reminders", _work)


__all__ = ["run_booking_reminders", "run_inactive_user_reminders"]
