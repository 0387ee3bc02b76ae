"""Scheduled loyalty sweep."""

from __future__ import annotations

import datetime as dt
from typing import Any, Dict

from loguru import logger

from barbershop_api.db.session import SessionFactory, resolve_session
from barbershop_api.observability.tracing import get_tracer
from barbershop_api.services.loyalty import LoyaltyCreditingService, PushCreditNotifier
from barbershop_api.services.push import PushBackend, build_push_backend


async def run_loyalty_sweep(
    *,
    session_factory: SessionFactory,
    push_backend: PushBackend | None = None,
    now: dt.datetime | None = None,
) -> Dict[str, Any]:
    """Credit every booking that finished at least the grace period ago."""

    backend = push_backend
    owns_backend = False
    if backend is None:
        backend = build_push_backend()
        owns_backend = backend is not None
    notifier = PushCreditNotifier(session_factory, backend)

    started = dt.datetime.now(dt.timezone.utc)
    try:
        with get_tracer().start_as_current_span("loyalty.sweep") as span:
            session = await resolve_session(session_factory)
            async with session as managed_session:
                service = LoyaltyCreditingService(managed_session)
                result = await service.sweep(now, on_credit=notifier)
            span.set_attribute("loyalty.scanned", result.scanned)
            span.set_attribute("loyalty.credited", result.credited)
    finally:
        if owns_backend:
            await backend.aclose()  # type: ignore[union-attr]

    summary = {
        "scanned": result.scanned,
        "credited": result.credited,
        "message": result.message,
        "duration_seconds": (dt.datetime.now(dt.timezone.utc) - started).total_seconds(),
    }
    logger.bind(summary=summary).info("Loyalty sweep job completed")
    return summary


__all__ = ["run_loyalty_sweep"]
