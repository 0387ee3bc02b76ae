"""Users, bookings, loyalty accounts, push subscriptions and notification audit tables.

Revision ID: 20261017_01
Revises:
Create Date: 2026-10-17
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "20261017_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)

loyalty_credit_source = sa.Enum("auto", "qr", name="loyalty_credit_source")
notification_history_status = sa.Enum(
    "sent", "failed", "no_subscribers", "skipped", name="notification_history_status"
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("username", sa.String(length=64), nullable=True),
        sa.Column("loyalty_token", sa.String(length=128), nullable=True),
        sa.Column("is_banned", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_loyalty_token", "users", ["loyalty_token"], unique=True)

    op.create_table(
        "bookings",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("client_name", sa.String(), nullable=True),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("booking_time", sa.Time(), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("loyalty_credited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("loyalty_credited_by", loyalty_credit_source, nullable=True),
        sa.Column("loyalty_credited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_bookings_user_id_users", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index(
        "ix_bookings_loyalty_pending", "bookings", ["loyalty_credited", "is_cancelled", "booking_date"]
    )

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("stamp_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("free_cuts_available", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_loyalty_accounts_user_id"),
        sa.CheckConstraint("stamp_count >= 0", name="ck_loyalty_accounts_stamp_count_non_negative"),
        sa.CheckConstraint("free_cuts_available >= 0", name="ck_loyalty_accounts_free_cuts_non_negative"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_loyalty_accounts_user_id_users", ondelete="CASCADE"
        ),
    )

    op.create_table(
        "push_subscriptions",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.String(length=255), nullable=False),
        sa.Column("auth", sa.String(length=255), nullable=False),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("endpoint", name="uq_push_subscriptions_endpoint"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_push_subscriptions_user_id_users", ondelete="CASCADE"
        ),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    op.create_table(
        "notification_preferences",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=False),
        sa.Column("booking_confirmations", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("booking_reminders", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("chat_messages", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("giveaways", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("promotions", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_notification_preferences_user_id"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_notification_preferences_user_id_users", ondelete="CASCADE"
        ),
    )

    op.create_table(
        "notification_history",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("user_id", UUID, nullable=True),
        sa.Column("user_name", sa.String(), nullable=True),
        sa.Column("notification_type", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("status", notification_history_status, nullable=False),
        sa.Column("sent_count", sa.Integer(), nullable=False),
        sa.Column("total_subscriptions", sa.Integer(), nullable=False),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notification_history_user_id", "notification_history", ["user_id"])
    op.create_index("ix_notification_history_created_at", "notification_history", ["created_at"])

    op.create_table(
        "admin_action_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("target_user_id", UUID, nullable=True),
        sa.Column("target_user_name", sa.String(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_admin_action_logs_action_type", "admin_action_logs", ["action_type"])


def downgrade() -> None:
    op.drop_table("admin_action_logs")
    op.drop_table("notification_history")
    op.drop_table("notification_preferences")
    op.drop_table("push_subscriptions")
    op.drop_table("loyalty_accounts")
    op.drop_table("bookings")
    op.drop_table("users")
    notification_history_status.drop(op.get_bind(), checkfirst=True)
    loyalty_credit_source.drop(op.get_bind(), checkfirst=True)
