import json

import pytest
from sqlalchemy import select

from barbershop_api.models.notification import NotificationHistory, NotificationHistoryStatus, NotificationPreference
from barbershop_api.models.push import PushSubscription
from barbershop_api.models.user import User
from barbershop_api.observability.loyalty import get_loyalty_store
from barbershop_api.services.push import DeliveryOutcome, InMemoryPushBackend, NotificationDispatcher, PushMessage


async def _user_with_subscriptions(session, email: str, endpoints: list[str], **user_fields) -> User:
    user = User(email=email, **user_fields)
    session.add(user)
    await session.flush()
    for endpoint in endpoints:
        session.add(PushSubscription(user_id=user.id, endpoint=endpoint, p256dh="p256dh", auth="auth"))
    await session.commit()
    return user


async def _history(session) -> list[NotificationHistory]:
    result = await session.execute(select(NotificationHistory))
    return list(result.scalars().all())


def test_message_payload_defaults_icon_and_badge() -> None:
    payload = json.loads(PushMessage(title="T", body="B", data={"url": "/x"}).to_payload("/icon.png"))

    assert payload == {"title": "T", "body": "B", "icon": "/icon.png", "badge": "/icon.png", "data": {"url": "/x"}}


@pytest.mark.asyncio
async def test_send_to_user_prunes_gone_and_reports_errors(session_factory) -> None:
    backend = InMemoryPushBackend(
        outcomes={
            "https://push.example/gone": DeliveryOutcome.GONE,
            "https://push.example/flaky": DeliveryOutcome.TRANSIENT_FAILURE,
        }
    )
    async with session_factory() as session:
        user = await _user_with_subscriptions(
            session,
            "multi@example.com",
            ["https://push.example/ok", "https://push.example/gone", "https://push.example/flaky"],
            full_name="Ana Ruiz",
        )

        dispatcher = NotificationDispatcher(session, backend, max_concurrency=2)
        result = await dispatcher.send_to_user(user.id, PushMessage(title="Hola", body="Test"))

        assert result.status is NotificationHistoryStatus.SENT
        assert result.sent == 1
        assert result.total == 3
        assert len(result.errors) == 1
        assert result.as_payload() == {"success": True, "sent": 1, "total": 3, "errors": result.errors}

        remaining = (await session.execute(select(PushSubscription.endpoint))).scalars().all()
        assert sorted(remaining) == ["https://push.example/flaky", "https://push.example/ok"]

        [row] = await _history(session)
        assert row.user_id == user.id
        assert row.user_name == "Ana Ruiz"
        assert row.status is NotificationHistoryStatus.SENT
        assert row.sent_count == 1
        assert row.total_subscriptions == 3
        assert row.error_details

    deliveries = get_loyalty_store().snapshot().push["deliveries"]
    assert deliveries == {"delivered": 1, "gone": 1, "transient_failure": 1}


@pytest.mark.asyncio
async def test_send_to_user_without_subscriptions(session_factory, push_backend) -> None:
    async with session_factory() as session:
        user = await _user_with_subscriptions(session, "none@example.com", [])

        result = await NotificationDispatcher(session, push_backend).send_to_user(
            user.id, PushMessage(title="T", body="B")
        )

        assert result.status is NotificationHistoryStatus.NO_SUBSCRIBERS
        assert result.as_payload()["sent"] == 0
        [row] = await _history(session)
        assert row.status is NotificationHistoryStatus.NO_SUBSCRIBERS
    assert push_backend.sent_messages == []


@pytest.mark.asyncio
async def test_send_to_user_respects_opt_out(session_factory, push_backend) -> None:
    async with session_factory() as session:
        user = await _user_with_subscriptions(session, "optout@example.com", ["https://push.example/a"])
        session.add(NotificationPreference(user_id=user.id, chat_messages=False))
        await session.commit()

        result = await NotificationDispatcher(session, push_backend).send_to_user(
            user.id, PushMessage(title="New message", body="..."), notification_type="chat_message"
        )

        assert result.status is NotificationHistoryStatus.SKIPPED
        assert result.as_payload() == {
            "success": True,
            "sent": 0,
            "total": 0,
            "message": "User disabled this notification type",
        }
        [row] = await _history(session)
        assert row.status is NotificationHistoryStatus.SKIPPED
        assert row.notification_type == "chat_message"
    assert push_backend.sent_messages == []


@pytest.mark.asyncio
async def test_all_failures_mark_history_failed(session_factory) -> None:
    backend = InMemoryPushBackend(outcomes={"https://push.example/down": DeliveryOutcome.TRANSIENT_FAILURE})
    async with session_factory() as session:
        user = await _user_with_subscriptions(session, "down@example.com", ["https://push.example/down"])

        result = await NotificationDispatcher(session, backend).send_to_user(user.id, PushMessage(title="T", body="B"))

        assert result.status is NotificationHistoryStatus.FAILED
        remaining = (await session.execute(select(PushSubscription))).scalars().all()
        assert len(remaining) == 1


@pytest.mark.asyncio
async def test_broadcast_skips_opted_out_users(session_factory, push_backend) -> None:
    async with session_factory() as session:
        await _user_with_subscriptions(
            session, "first@example.com", ["https://push.example/1a", "https://push.example/1b"]
        )
        await _user_with_subscriptions(session, "second@example.com", ["https://push.example/2"])
        muted = await _user_with_subscriptions(session, "muted@example.com", ["https://push.example/3"])
        session.add(NotificationPreference(user_id=muted.id, promotions=False))
        await session.commit()

        result = await NotificationDispatcher(session, push_backend).send_to_all(
            PushMessage(title="Promo", body="20% off"), metadata={"campaign": "autumn"}
        )

        assert result.status is NotificationHistoryStatus.SENT
        assert result.as_payload() == {"success": True, "sent": 3, "total": 4, "usersNotified": 2, "skipped": 1}
        [row] = await _history(session)
        assert row.user_id is None
        assert row.metadata_json == {"campaign": "autumn", "users_notified": 2, "skipped": 1}

    endpoints = sorted(message["endpoint"] for message in push_backend.sent_messages)
    assert endpoints == ["https://push.example/1a", "https://push.example/1b", "https://push.example/2"]


@pytest.mark.asyncio
async def test_broadcast_with_no_subscriptions(session_factory, push_backend) -> None:
    async with session_factory() as session:
        result = await NotificationDispatcher(session, push_backend).send_to_all(PushMessage(title="T", body="B"))

        assert result.status is NotificationHistoryStatus.NO_SUBSCRIBERS
        assert result.as_payload()["usersNotified"] == 0
        [row] = await _history(session)
        assert row.status is NotificationHistoryStatus.NO_SUBSCRIBERS
