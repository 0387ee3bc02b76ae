import json
from datetime import date, datetime, time
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select

from barbershop_api.jobs.loyalty import run_loyalty_sweep
from barbershop_api.jobs.reminders import run_booking_reminders, run_inactive_user_reminders
from barbershop_api.models.booking import Booking
from barbershop_api.models.notification import NotificationHistory, NotificationPreference
from barbershop_api.models.push import PushSubscription
from barbershop_api.models.user import User

MADRID = ZoneInfo("Europe/Madrid")


async def _customer(session, email: str, **fields) -> User:
    user = User(email=email, **fields)
    session.add(user)
    await session.flush()
    session.add(PushSubscription(user_id=user.id, endpoint=f"https://push.example/{email}", p256dh="p", auth="a"))
    return user


def _booking(user: User | None, day: date, at: time, **fields) -> Booking:
    return Booking(
        user_id=user.id if user else None,
        booking_date=day,
        booking_time=at,
        total_price=Decimal("15.00"),
        **fields,
    )


def _payloads(backend) -> list[dict]:
    return [json.loads(message["payload"]) for message in backend.sent_messages]


@pytest.mark.asyncio
async def test_loyalty_sweep_job_credits_and_notifies_inline(session_factory, push_backend) -> None:
    async with session_factory() as session:
        user = await _customer(session, "sweep@example.com")
        session.add(_booking(user, date(2026, 5, 4), time(9, 30)))
        await session.commit()

    summary = await run_loyalty_sweep(
        session_factory=session_factory,
        push_backend=push_backend,
        now=datetime(2026, 5, 4, 11, 0, tzinfo=MADRID),
    )

    assert summary["scanned"] == 1
    assert summary["credited"] == 1
    [payload] = _payloads(push_backend)
    assert payload["data"]["type"] == "loyalty_stamp"


@pytest.mark.asyncio
async def test_booking_reminders_pick_the_right_hours(session_factory, push_backend) -> None:
    now = datetime(2026, 5, 4, 15, 5, tzinfo=MADRID)
    async with session_factory() as session:
        soon = await _customer(session, "soon@example.com")
        tomorrow = await _customer(session, "tomorrow@example.com")
        later = await _customer(session, "later@example.com")
        muted = await _customer(session, "muted@example.com")
        session.add_all(
            [
                _booking(soon, date(2026, 5, 4), time(16, 30)),
                _booking(tomorrow, date(2026, 5, 5), time(15, 0)),
                _booking(later, date(2026, 5, 4), time(17, 0)),
                _booking(later, date(2026, 5, 4), time(16, 0), is_cancelled=True),
                _booking(None, date(2026, 5, 4), time(16, 15), client_name="Walk-in"),
                _booking(muted, date(2026, 5, 4), time(16, 45)),
            ]
        )
        # reminders are transactional, so the switch does not suppress them
        session.add(NotificationPreference(user_id=muted.id, booking_reminders=False, promotions=False))
        await session.commit()

    summary = await run_booking_reminders(session_factory=session_factory, push_backend=push_backend, now=now)

    assert summary == {"one_hour": 2, "day_before": 1, "sent": 3}
    types = sorted(payload["data"]["type"] for payload in _payloads(push_backend))
    assert types == ["booking-reminder-1h", "booking-reminder-1h", "booking-reminder-24h"]


@pytest.mark.asyncio
async def test_booking_reminders_skip_without_push(session_factory, monkeypatch) -> None:
    monkeypatch.setattr("barbershop_api.jobs.reminders.build_push_backend", lambda: None)

    summary = await run_booking_reminders(session_factory=session_factory)

    assert summary == {"sent": 0, "skipped": True}


@pytest.mark.asyncio
async def test_inactive_reminders_target_lapsed_customers(session_factory, push_backend) -> None:
    now = datetime(2026, 5, 4, 11, 0, tzinfo=MADRID)
    async with session_factory() as session:
        lapsed = await _customer(session, "lapsed@example.com", full_name="Pablo Ortega")
        regular = await _customer(session, "regular@example.com")
        upcoming = await _customer(session, "upcoming@example.com")
        banned = await _customer(session, "banned@example.com", is_banned=True)
        opted_out = await _customer(session, "optout@example.com")
        await _customer(session, "never@example.com")
        session.add_all(
            [
                _booking(lapsed, date(2026, 3, 1), time(10, 0)),
                _booking(regular, date(2026, 3, 1), time(10, 0)),
                _booking(regular, date(2026, 4, 20), time(10, 0)),
                _booking(upcoming, date(2026, 2, 1), time(10, 0)),
                _booking(upcoming, date(2026, 5, 10), time(10, 0)),
                _booking(banned, date(2026, 1, 1), time(10, 0)),
                _booking(opted_out, date(2026, 1, 1), time(10, 0)),
            ]
        )
        session.add(NotificationPreference(user_id=opted_out.id, promotions=False))
        await session.commit()

    summary = await run_inactive_user_reminders(session_factory=session_factory, push_backend=push_backend, now=now)

    assert summary["candidates"] == 2
    assert summary["sent"] == 1
    assert summary["skipped"] == 1
    [payload] = _payloads(push_backend)
    assert payload["body"].startswith("Hi Pablo")
    assert payload["actions"] == [{"action": "book", "title": "Book now"}]

    async with session_factory() as session:
        rows = (await session.execute(select(NotificationHistory.status))).scalars().all()
        assert sorted(status.value for status in rows) == ["sent", "skipped"]
