"""Fire-and-forget push after a successful credit."""

from __future__ import annotations

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.db.session import SessionFactory, resolve_session
from barbershop_api.services.push import NotificationDispatcher, PushBackend, PushMessage

from .crediting import CreditOutcome


def build_credit_message(outcome: CreditOutcome) -> PushMessage:
    if outcome.free_cut_granted:
        title = "Free cut unlocked!"
        body = f"You have {outcome.stamp_count} stamps and a free cut waiting for you."
    else:
        title = "New loyalty stamp"
        body = f"Thanks for your visit! You now have {outcome.stamp_count} stamps."
    return PushMessage(
        title=title,
        body=body,
        tag="loyalty-stamp",
        data={
            "url": "/profile",
            "type": "loyalty_stamp",
            "stampCount": outcome.stamp_count,
            "freeCutsAvailable": outcome.free_cuts_available,
        },
    )


class PushCreditNotifier:
    """Sends the stamp notification in its own session; never raises."""

    def __init__(self, session_factory: SessionFactory, backend: PushBackend | None) -> None:
        self._session_factory = session_factory
        self._backend = backend

    async def __call__(self, outcome: CreditOutcome) -> None:
        if not outcome.credited:
            return
        if self._backend is None:
            logger.info("Push not configured; skipping loyalty notification", user_id=str(outcome.user_id))
            return

        try:
            session = await resolve_session(self._session_factory)
            async with session as managed_session:
                await self._send(managed_session, outcome)
        except Exception:
            logger.exception(
                "Loyalty notification failed",
                user_id=str(outcome.user_id),
                booking_id=str(outcome.booking_id) if outcome.booking_id else None,
            )

    async def _send(self, session: AsyncSession, outcome: CreditOutcome) -> None:
        dispatcher = NotificationDispatcher(session, self._backend)
        await dispatcher.send_to_user(
            outcome.user_id,
            build_credit_message(outcome),
            notification_type="loyalty_stamp",
            metadata={
                "booking_id": str(outcome.booking_id) if outcome.booking_id else None,
                "credited_by": outcome.credited_by.value,
            },
        )


__all__ = ["PushCreditNotifier", "build_credit_message"]
