"""Booking rows as written by the booking screens; the engine only owns the loyalty columns."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from enum import Enum
from uuid import uuid4
from zoneinfo import ZoneInfo

from sqlalchemy import Boolean, Column, Date, DateTime, Enum as SqlEnum, ForeignKey, Index, Numeric, String, Time, func
from sqlalchemy.dialects.postgresql import UUID

from barbershop_api.db.base import Base


class LoyaltyCreditSource(str, Enum):
    """Trigger that credited a booking."""

    AUTO = "auto"
    QR = "qr"


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_loyalty_pending", "loyalty_credited", "is_cancelled", "booking_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    client_name = Column(String, nullable=True)
    booking_date = Column(Date, nullable=False)
    booking_time = Column(Time, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False, default=0, server_default="0")
    is_cancelled = Column(Boolean, nullable=False, default=False, server_default="false")
    loyalty_credited = Column(Boolean, nullable=False, default=False, server_default="false")
    loyalty_credited_by = Column(
        SqlEnum(
            LoyaltyCreditSource,
            name="loyalty_credit_source",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=True,
    )
    loyalty_credited_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def scheduled_at(self, tz: ZoneInfo) -> datetime:
        """Start of the appointment as an aware datetime in the shop's timezone."""

        return combine_local(self.booking_date, self.booking_time, tz)


def combine_local(day: date, at: time, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, at.replace(tzinfo=None), tzinfo=tz)


def is_due_for_credit(booking: Booking, *, now: datetime, grace: timedelta, tz: ZoneInfo) -> bool:
    return booking.scheduled_at(tz) + grace <= now
