"""Category-based push suppression."""

from __future__ import annotations

from typing import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.db.session import store_guard
from barbershop_api.models.notification import NotificationPreference

# notification type -> preference column; None means transactional (never suppressed)
CATEGORY_PREFERENCE_FIELDS: Mapping[str, str | None] = {
    "general": None,
    "booking_confirmation": None,
    "booking_reminder": None,
    "loyalty_stamp": None,
    "chat_message": "chat_messages",
    "giveaway_winner": "giveaways",
    "new_giveaway": "giveaways",
    "admin_broadcast": "promotions",
    "admin_message": "promotions",
    "broadcast": "promotions",
    "inactive_reminder": "promotions",
    "promotion": "promotions",
}


_IN_CLAUSE_LIMIT = 500


def preference_field_for(category: str | None) -> str | None:
    return CATEGORY_PREFERENCE_FIELDS.get(category or "general")


class PreferenceFilter:
    """Drop recipients who switched a category off; missing rows count as opted in."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def filter(self, category: str | None, candidate_user_ids: Iterable[UUID]) -> set[UUID]:
        candidates = set(candidate_user_ids)
        field = preference_field_for(category)
        if field is None or not candidates:
            return candidates
        return candidates - await self._disabled_users(field, candidates)

    async def is_allowed(self, category: str | None, user_id: UUID) -> bool:
        return user_id in await self.filter(category, [user_id])

    async def _disabled_users(self, field: str, candidates: set[UUID]) -> set[UUID]:
        column = getattr(NotificationPreference, field)
        stmt = select(NotificationPreference.user_id).where(column.is_(False))
        if len(candidates) <= _IN_CLAUSE_LIMIT:
            stmt = stmt.where(NotificationPreference.user_id.in_(candidates))
        async with store_guard(self._db, "load notification preferences"):
            result = await self._db.execute(stmt)
        return set(result.scalars().all()) & candidates


__all__ = ["CATEGORY_PREFERENCE_FIELDS", "PreferenceFilter", "preference_field_for"]
