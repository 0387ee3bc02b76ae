"""Exactly-once loyalty crediting for completed bookings."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable
from uuid import UUID
from zoneinfo import ZoneInfo

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from barbershop_api.core.settings import settings
from barbershop_api.db.session import store_guard
from barbershop_api.models.admin import AdminActionLog
from barbershop_api.models.booking import Booking, LoyaltyCreditSource, is_due_for_credit
from barbershop_api.models.loyalty import LoyaltyAccount
from barbershop_api.models.user import User
from barbershop_api.observability.loyalty import get_loyalty_store


class UnknownLoyaltyTokenError(LookupError):
    """Raised when a scanned token does not belong to any customer."""


class CreditStatus(str, Enum):
    CREDITED = "credited"
    ALREADY_CREDITED = "already_credited"
    NOT_ELIGIBLE = "not_eligible"


@dataclass(frozen=True)
class CreditOutcome:
    user_id: UUID
    booking_id: UUID | None
    credited_by: LoyaltyCreditSource
    status: CreditStatus
    stamp_count: int
    free_cuts_available: int
    free_cut_granted: bool = False

    @property
    def credited(self) -> bool:
        return self.status is CreditStatus.CREDITED


@dataclass
class SweepSummary:
    scanned: int
    credited: int
    outcomes: list[CreditOutcome] = field(default_factory=list)

    @property
    def message(self) -> str:
        if not self.scanned:
            return "No bookings to credit"
        return f"Credited {self.credited} bookings"


@dataclass(frozen=True)
class ScanResult:
    outcome: CreditOutcome
    user_name: str | None
    username: str | None

    @property
    def success(self) -> bool:
        return self.outcome.credited

    @property
    def message(self) -> str:
        if self.outcome.status is CreditStatus.NOT_ELIGIBLE:
            return "Booking is no longer eligible for a stamp"
        if not self.outcome.credited:
            return "Visit already credited"
        if self.outcome.free_cut_granted:
            return "Stamp added! Free cut unlocked"
        return "Stamp added successfully!"


CreditCallback = Callable[[CreditOutcome], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class _DueBooking:
    booking_id: UUID
    user_id: UUID


class LoyaltyCreditingService:
    """Credits bookings at most once; every counter change happens inside SQL."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        stamps_per_free_cut: int | None = None,
        min_booking_total: float | None = None,
        grace: timedelta | None = None,
        business_tz: ZoneInfo | None = None,
    ) -> None:
        self._db = db_session
        self._stamps_per_free_cut = stamps_per_free_cut or settings.loyalty_stamps_per_free_cut
        if min_booking_total is None:
            min_booking_total = settings.loyalty_min_booking_total
        self._min_total = Decimal(str(min_booking_total))
        self._grace = grace if grace is not None else timedelta(minutes=settings.loyalty_credit_grace_minutes)
        self._tz = business_tz or ZoneInfo(settings.business_timezone)
        self._observability = get_loyalty_store()

    async def credit_once(
        self,
        booking_id: UUID,
        user_id: UUID,
        credited_by: LoyaltyCreditSource,
    ) -> CreditOutcome:
        """Mark the booking credited and add one stamp when it is still eligible.

        Eligibility is re-checked in the same UPDATE that claims the booking, so a
        booking cancelled or repriced after it was selected is never credited.
        """

        await self._ensure_account(user_id)
        async with store_guard(self._db, "credit booking"):
            claim = await self._db.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.user_id == user_id,
                    Booking.loyalty_credited.is_(False),
                    Booking.is_cancelled.is_(False),
                    Booking.total_price >= self._min_total,
                )
                .values(
                    loyalty_credited=True,
                    loyalty_credited_by=credited_by,
                    loyalty_credited_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            if claim.rowcount == 0:
                await self._db.rollback()
                status = await self._unclaimed_status(booking_id)
                if status is CreditStatus.ALREADY_CREDITED:
                    self._observability.record_credit_race(credited_by.value)
                logger.info(
                    "Booking not credited",
                    booking_id=str(booking_id),
                    user_id=str(user_id),
                    credited_by=credited_by.value,
                    status=status.value,
                )
                stamps, free_cuts = await self._read_counters(user_id)
                return CreditOutcome(
                    user_id=user_id,
                    booking_id=booking_id,
                    credited_by=credited_by,
                    status=status,
                    stamp_count=stamps,
                    free_cuts_available=free_cuts,
                )

            outcome = await self._increment(user_id, booking_id, credited_by)
            await self._db.commit()

        self._observability.record_credit(credited_by.value, free_cut_granted=outcome.free_cut_granted)
        logger.info(
            "Loyalty stamp credited",
            booking_id=str(booking_id),
            user_id=str(user_id),
            credited_by=credited_by.value,
            stamp_count=outcome.stamp_count,
            free_cut_granted=outcome.free_cut_granted,
        )
        return outcome

    async def grant_stamp(self, user_id: UUID, credited_by: LoyaltyCreditSource) -> CreditOutcome:
        """Add one stamp that is not tied to a booking."""

        await self._ensure_account(user_id)
        async with store_guard(self._db, "grant loyalty stamp"):
            outcome = await self._increment(user_id, None, credited_by)
            await self._db.commit()
        self._observability.record_credit(credited_by.value, free_cut_granted=outcome.free_cut_granted)
        logger.info(
            "Unlinked loyalty stamp granted",
            user_id=str(user_id),
            credited_by=credited_by.value,
            stamp_count=outcome.stamp_count,
        )
        return outcome

    async def find_due_bookings(self, now: datetime | None = None) -> list[Booking]:
        """Eligible uncredited bookings whose appointment ended at least ``grace`` ago."""

        now = now or datetime.now(timezone.utc)
        local_today = now.astimezone(self._tz).date()
        stmt = (
            select(Booking)
            .where(
                Booking.loyalty_credited.is_(False),
                Booking.is_cancelled.is_(False),
                Booking.user_id.is_not(None),
                Booking.total_price >= self._min_total,
                Booking.booking_date <= local_today,
            )
            .order_by(Booking.booking_date, Booking.booking_time)
        )
        async with store_guard(self._db, "load due bookings"):
            result = await self._db.execute(stmt)
            candidates = result.scalars().all()
        return [
            booking
            for booking in candidates
            if is_due_for_credit(booking, now=now, grace=self._grace, tz=self._tz)
        ]

    async def sweep(
        self,
        now: datetime | None = None,
        *,
        on_credit: CreditCallback | None = None,
    ) -> SweepSummary:
        """Credit every due booking with ``auto``; safe to run concurrently with itself."""

        due = [
            _DueBooking(booking_id=booking.id, user_id=booking.user_id)
            for booking in await self.find_due_bookings(now)
        ]
        summary = SweepSummary(scanned=len(due), credited=0)
        for item in due:
            outcome = await self.credit_once(item.booking_id, item.user_id, LoyaltyCreditSource.AUTO)
            if not outcome.credited:
                continue
            summary.credited += 1
            summary.outcomes.append(outcome)
            if on_credit is not None:
                await on_credit(outcome)

        self._observability.record_sweep(scanned=summary.scanned, credited=summary.credited)
        logger.bind(scanned=summary.scanned, credited=summary.credited).info("Loyalty sweep finished")
        return summary

    async def scan_loyalty_token(self, token: str, *, operator: str | None = None) -> ScanResult:
        """Credit the visit behind a scanned loyalty QR code."""

        async with store_guard(self._db, "resolve loyalty token"):
            result = await self._db.execute(
                select(User.id, User.full_name, User.username).where(User.loyalty_token == token)
            )
            profile = result.one_or_none()
        if profile is None:
            logger.warning("Unknown loyalty token scanned", operator=operator)
            raise UnknownLoyaltyTokenError(token)
        user_id, user_name, username = profile

        booking_id = await self._latest_eligible_booking(user_id)
        if booking_id is None:
            outcome = await self.grant_stamp(user_id, LoyaltyCreditSource.QR)
        else:
            outcome = await self.credit_once(booking_id, user_id, LoyaltyCreditSource.QR)

        if outcome.credited:
            await self._log_scan(outcome, user_name=user_name or username, operator=operator)
        return ScanResult(outcome=outcome, user_name=user_name, username=username)

    async def _latest_eligible_booking(self, user_id: UUID) -> UUID | None:
        stmt = (
            select(Booking.id)
            .where(
                Booking.user_id == user_id,
                Booking.loyalty_credited.is_(False),
                Booking.is_cancelled.is_(False),
                Booking.total_price >= self._min_total,
            )
            .order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
            .limit(1)
        )
        async with store_guard(self._db, "load latest booking"):
            result = await self._db.execute(stmt)
            return result.scalar_one_or_none()

    async def _log_scan(self, outcome: CreditOutcome, *, user_name: str | None, operator: str | None) -> None:
        async with store_guard(self._db, "record admin action"):
            self._db.add(
                AdminActionLog(
                    action_type="loyalty_qr_scan",
                    description=f"QR stamp added for {user_name or 'customer'} ({outcome.stamp_count} stamps)",
                    target_user_id=outcome.user_id,
                    target_user_name=user_name,
                    metadata_json={
                        "booking_id": str(outcome.booking_id) if outcome.booking_id else None,
                        "stamp_count": outcome.stamp_count,
                        "free_cuts_available": outcome.free_cuts_available,
                        "free_cut_granted": outcome.free_cut_granted,
                        "operator": operator,
                    },
                )
            )
            await self._db.commit()

    async def _ensure_account(self, user_id: UUID) -> None:
        async with store_guard(self._db, "ensure loyalty account"):
            result = await self._db.execute(
                select(LoyaltyAccount.id).where(LoyaltyAccount.user_id == user_id)
            )
            if result.scalar_one_or_none() is not None:
                return

            self._db.add(LoyaltyAccount(user_id=user_id, stamp_count=0, free_cuts_available=0))
            try:
                await self._db.commit()
                logger.info("Created loyalty account", user_id=str(user_id))
            except IntegrityError:
                await self._db.rollback()
                logger.warning("Detected race when creating loyalty account", user_id=str(user_id))
                result = await self._db.execute(
                    select(LoyaltyAccount.id).where(LoyaltyAccount.user_id == user_id)
                )
                result.scalar_one()

    async def _increment(
        self,
        user_id: UUID,
        booking_id: UUID | None,
        credited_by: LoyaltyCreditSource,
    ) -> CreditOutcome:
        stamps_after = LoyaltyAccount.stamp_count + 1
        stmt = (
            update(LoyaltyAccount)
            .where(LoyaltyAccount.user_id == user_id)
            .values(
                stamp_count=stamps_after,
                free_cuts_available=LoyaltyAccount.free_cuts_available
                + case((stamps_after % self._stamps_per_free_cut == 0, 1), else_=0),
            )
            .returning(LoyaltyAccount.stamp_count, LoyaltyAccount.free_cuts_available)
            .execution_options(synchronize_session=False)
        )
        row = (await self._db.execute(stmt)).one()
        stamps, free_cuts = int(row[0]), int(row[1])
        return CreditOutcome(
            user_id=user_id,
            booking_id=booking_id,
            credited_by=credited_by,
            status=CreditStatus.CREDITED,
            stamp_count=stamps,
            free_cuts_available=free_cuts,
            free_cut_granted=stamps % self._stamps_per_free_cut == 0,
        )

    async def _unclaimed_status(self, booking_id: UUID) -> CreditStatus:
        async with store_guard(self._db, "read booking credit state"):
            result = await self._db.execute(select(Booking.loyalty_credited).where(Booking.id == booking_id))
            credited = result.scalar_one_or_none()
        return CreditStatus.ALREADY_CREDITED if credited else CreditStatus.NOT_ELIGIBLE

    async def _read_counters(self, user_id: UUID) -> tuple[int, int]:
        async with store_guard(self._db, "read loyalty counters"):
            result = await self._db.execute(
                select(LoyaltyAccount.stamp_count, LoyaltyAccount.free_cuts_available).where(
                    LoyaltyAccount.user_id == user_id
                )
            )
            row = result.one_or_none()
        if row is None:
            return 0, 0
        return int(row[0]), int(row[1])


__all__ = [
    "CreditCallback",
    "CreditOutcome",
    "CreditStatus",
    "LoyaltyCreditingService",
    "ScanResult",
    "SweepSummary",
    "UnknownLoyaltyTokenError",
]
