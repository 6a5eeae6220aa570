"""Initial marketplace schema

Revision ID: 20260301_000000
Revises:
Create Date: 2026-03-01 00:00:00

Notes:
- Users, apartments, pricing rules, bookings, chats, messages, reviews, favorites.
- On PostgreSQL, bookings get an exclusion constraint so two PENDING/CONFIRMED bookings of
  one apartment can never hold overlapping [start_date, end_date) ranges.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from nestrent.models import APARTMENT_TYPES, BOOKING_STATUSES, MODERATION_STATUSES, one_of


revision: str = "20260301_000000"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "apartments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("host_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("district", sa.String(120), nullable=False),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("rooms", sa.Integer(), nullable=True),
        sa.Column("area", sa.Integer(), nullable=True),
        sa.Column("floor", sa.Integer(), nullable=True),
        sa.Column("amenities", sa.JSON(), nullable=False),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.Column("min_stay", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_promoted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rejection_reason", sa.String(500), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(one_of("status", MODERATION_STATUSES), name="ck_apartments_status"),
        sa.CheckConstraint(one_of("type", APARTMENT_TYPES), name="ck_apartments_type"),
    )
    op.create_index("ix_apartments_host_id", "apartments", ["host_id"])
    op.create_index("ix_apartments_status", "apartments", ["status"])
    op.create_index("ix_apartments_status_published", "apartments", ["status", "is_published"])

    op.create_table(
        "pricing_rules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("apartment_id", sa.Integer(), sa.ForeignKey("apartments.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("price", sa.Integer(), nullable=True),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint("apartment_id", "date", name="uq_pricing_rules_apartment_date"),
    )
    op.create_index("ix_pricing_rules_apartment_id", "pricing_rules", ["apartment_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("apartment_id", sa.Integer(), sa.ForeignKey("apartments.id"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_price", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("comment", sa.String(1000), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.CheckConstraint("start_date < end_date", name="ck_bookings_range"),
        sa.CheckConstraint(one_of("status", BOOKING_STATUSES), name="ck_bookings_status"),
    )
    op.create_index("ix_bookings_apartment_id", "bookings", ["apartment_id"])
    op.create_index("ix_bookings_tenant_id", "bookings", ["tenant_id"])
    op.create_index("ix_bookings_apartment_status", "bookings", ["apartment_id", "status"])
    op.create_index("ix_bookings_apartment_start", "bookings", ["apartment_id", "start_date"])
    op.create_index("ix_bookings_apartment_end", "bookings", ["apartment_id", "end_date"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE bookings ADD CONSTRAINT ex_bookings_no_overlap
            EXCLUDE USING gist (
                apartment_id WITH =,
                daterange(start_date, end_date, '[)') WITH &&
            ) WHERE (status IN ('PENDING', 'CONFIRMED'))
            """
        )

    op.create_table(
        "chats",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("apartment_id", sa.Integer(), sa.ForeignKey("apartments.id"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("host_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("apartment_id", "tenant_id", "host_id", name="uq_chats_triple"),
    )
    op.create_index("ix_chats_tenant_id", "chats", ["tenant_id"])
    op.create_index("ix_chats_host_id", "chats", ["host_id"])
    op.create_index("ix_chats_apartment_id", "chats", ["apartment_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("chat_id", sa.Integer(), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("sender_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.String(2000), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_messages_chat_id", "messages", ["chat_id"])
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_chat_created_at", "messages", ["chat_id", "created_at"])

    op.create_table(
        "reviews",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("author_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("host_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("apartment_id", sa.Integer(), sa.ForeignKey("apartments.id"), nullable=True),
        sa.Column("chat_id", sa.Integer(), sa.ForeignKey("chats.id"), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.String(2000), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        *_timestamps(),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating"),
        sa.CheckConstraint(one_of("status", MODERATION_STATUSES), name="ck_reviews_status"),
    )
    op.create_index("ix_reviews_host_id", "reviews", ["host_id"])
    op.create_index("ix_reviews_author_id", "reviews", ["author_id"])
    op.create_index("ix_reviews_status", "reviews", ["status"])

    op.create_table(
        "favorites",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("apartment_id", sa.Integer(), sa.ForeignKey("apartments.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "apartment_id", name="uq_favorites_user_apartment"),
    )
    op.create_index("ix_favorites_user_id", "favorites", ["user_id"])


def downgrade() -> None:
    for table in ("favorites", "reviews", "messages", "chats", "bookings", "pricing_rules", "apartments", "users"):
        op.drop_table(table)
