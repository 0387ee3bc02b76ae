"""Loyalty crediting endpoints: scheduled sweep trigger and counter QR scan."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from barbershop_api.api.dependencies.push import get_optional_push_backend
from barbershop_api.api.dependencies.security import require_internal_api_key
from barbershop_api.db.session import get_session, get_session_factory
from barbershop_api.services.loyalty import LoyaltyCreditingService, PushCreditNotifier, UnknownLoyaltyTokenError
from barbershop_api.services.push import PushBackend

router = APIRouter(
    prefix="/loyalty",
    tags=["loyalty"],
    dependencies=[Depends(require_internal_api_key)],
)


class SweepResponse(BaseModel):
    credited: int
    scanned: int
    message: str


class ScanRequest(BaseModel):
    loyalty_token: str | None = Field(default=None, description="Token encoded in the customer's QR code")
    operator: str | None = Field(default=None, description="Staff member performing the scan")


class ScanResponse(BaseModel):
    success: bool
    message: str | None = None
    error: str | None = None
    userName: str | None = None
    username: str | None = None
    newCount: int | None = None
    freeCutsAvailable: int | None = None
    bookingId: UUID | None = None


@router.post("/sweep", response_model=SweepResponse)
async def run_sweep(
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    push_backend: PushBackend | None = Depends(get_optional_push_backend),
) -> SweepResponse:
    """Credit every booking whose appointment ended at least the grace period ago."""

    service = LoyaltyCreditingService(session)
    summary = await service.sweep()

    notifier = PushCreditNotifier(session_factory, push_backend)
    for outcome in summary.outcomes:
        background_tasks.add_task(notifier, outcome)

    return SweepResponse(credited=summary.credited, scanned=summary.scanned, message=summary.message)


@router.post("/scan", response_model=ScanResponse, response_model_exclude_none=True)
async def scan_loyalty_qr(
    payload: ScanRequest,
    background_tasks: BackgroundTasks,
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    push_backend: PushBackend | None = Depends(get_optional_push_backend),
) -> ScanResponse:
    token = (payload.loyalty_token or "").strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token not provided")

    service = LoyaltyCreditingService(session)
    try:
        result = await service.scan_loyalty_token(token, operator=payload.operator)
    except UnknownLoyaltyTokenError:
        return ScanResponse(success=False, error="Invalid QR code. Customer not found.")

    outcome = result.outcome
    if not result.success:
        logger.info("QR scan did not credit", user_id=str(outcome.user_id), booking_id=str(outcome.booking_id))
        return ScanResponse(
            success=False,
            error=result.message,
            userName=result.user_name,
            username=result.username,
            newCount=outcome.stamp_count,
            freeCutsAvailable=outcome.free_cuts_available,
            bookingId=outcome.booking_id,
        )

    background_tasks.add_task(PushCreditNotifier(session_factory, push_backend), outcome)
    return ScanResponse(
        success=True,
        message=result.message,
        userName=result.user_name,
        username=result.username,
        newCount=outcome.stamp_count,
        freeCutsAvailable=outcome.free_cuts_available,
        bookingId=outcome.booking_id,
    )
