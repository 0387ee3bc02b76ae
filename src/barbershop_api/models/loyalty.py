"""Stamp-card loyalty accounts."""

from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, func
from sqlalchemy.dialects.postgresql import UUID

from barbershop_api.db.base import Base


class LoyaltyAccount(Base):
    """One stamp card per customer; counters only move through the crediting service."""

    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        CheckConstraint("stamp_count >= 0", name="stamp_count_non_negative"),
        CheckConstraint("free_cuts_available >= 0", name="free_cuts_non_negative"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    stamp_count = Column(Integer, nullable=False, default=0, server_default="0")
    free_cuts_available = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
