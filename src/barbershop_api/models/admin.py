from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, String, Text, func
from sqlalchemy.dialects.postgresql import UUID

from barbershop_api.db.base import Base


class AdminActionLog(Base):
    """Operator-visible audit trail (QR stamps and similar counter actions)."""

    __tablename__ = "admin_action_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    action_type = Column(String(64), nullable=False, index=True)
    description = Column(Text, nullable=False)
    target_user_id = Column(UUID(as_uuid=True), nullable=True)
    target_user_name = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
