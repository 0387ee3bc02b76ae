from uuid import uuid4

import pytest

from barbershop_api.models.notification import NotificationPreference
from barbershop_api.models.user import User
from barbershop_api.services.push.preferences import PreferenceFilter, preference_field_for


@pytest.mark.parametrize(
    "category, field",
    [
        ("chat_message", "chat_messages"),
        ("giveaway_winner", "giveaways"),
        ("new_giveaway", "giveaways"),
        ("admin_broadcast", "promotions"),
        ("inactive_reminder", "promotions"),
        ("booking_reminder", None),
        ("loyalty_stamp", None),
        ("general", None),
        (None, None),
        ("something_new", None),
    ],
)
def test_category_mapping(category, field) -> None:
    assert preference_field_for(category) == field


@pytest.mark.asyncio
async def test_filter_drops_only_explicit_opt_outs(session_factory) -> None:
    async with session_factory() as session:
        opted_out = User(email="out@example.com")
        opted_in = User(email="in@example.com")
        no_row = User(email="norow@example.com")
        session.add_all([opted_out, opted_in, no_row])
        await session.flush()
        session.add_all(
            [
                NotificationPreference(user_id=opted_out.id, promotions=False),
                NotificationPreference(user_id=opted_in.id, promotions=True, chat_messages=False),
            ]
        )
        await session.commit()

        preferences = PreferenceFilter(session)
        allowed = await preferences.filter("admin_broadcast", [opted_out.id, opted_in.id, no_row.id])

        assert allowed == {opted_in.id, no_row.id}
        assert not await preferences.is_allowed("chat_message", opted_in.id)
        assert await preferences.is_allowed("chat_message", opted_out.id)


@pytest.mark.asyncio
async def test_transactional_categories_bypass_preferences(session_factory) -> None:
    async with session_factory() as session:
        user = User(email="all-off@example.com")
        session.add(user)
        await session.flush()
        session.add(
            NotificationPreference(
                user_id=user.id,
                booking_confirmations=False,
                booking_reminders=False,
                chat_messages=False,
                giveaways=False,
                promotions=False,
            )
        )
        await session.commit()

        preferences = PreferenceFilter(session)

        assert await preferences.is_allowed("booking_reminder", user.id)
        assert await preferences.is_allowed("loyalty_stamp", user.id)
        assert not await preferences.is_allowed("promotion", user.id)


@pytest.mark.asyncio
async def test_large_candidate_sets_are_filtered(session_factory) -> None:
    async with session_factory() as session:
        user = User(email="big@example.com")
        session.add(user)
        await session.flush()
        session.add(NotificationPreference(user_id=user.id, giveaways=False))
        await session.commit()

        candidates = {uuid4() for _ in range(600)} | {user.id}
        allowed = await PreferenceFilter(session).filter("new_giveaway", candidates)

        assert user.id not in allowed
        assert len(allowed) == 600
