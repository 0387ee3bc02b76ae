from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum as SqlEnum, ForeignKey, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from barbershop_api.db.base import Base


class NotificationHistoryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    NO_SUBSCRIBERS = "no_subscribers"
    SKIPPED = "skipped"


class NotificationPreference(Base):
    """Per-user push category switches."""

    __tablename__ = "notification_preferences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    booking_confirmations = Column(Boolean, nullable=False, default=True, server_default="true")
    booking_reminders = Column(Boolean, nullable=False, default=True, server_default="true")
    chat_messages = Column(Boolean, nullable=False, default=True, server_default="true")
    giveaways = Column(Boolean, nullable=False, default=True, server_default="true")
    promotions = Column(Boolean, nullable=False, default=True, server_default="true")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class NotificationHistory(Base):
    """Append-only audit row, one per dispatch call."""

    __tablename__ = "notification_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    user_name = Column(String, nullable=True)
    notification_type = Column(String(64), nullable=False, default="general")
    title = Column(String, nullable=False)
    body = Column(Text, nullable=True)
    status = Column(
        SqlEnum(
            NotificationHistoryStatus,
            name="notification_history_status",
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
    )
    sent_count = Column(Integer, nullable=False, default=0)
    total_subscriptions = Column(Integer, nullable=False, default=0)
    error_details = Column(Text, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
