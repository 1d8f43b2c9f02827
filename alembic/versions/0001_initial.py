"""mentors, products, orders, payments, session packs, seats and sessions

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "mentors",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=False),
        sa.Column("max_active_students", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("google_calendar_id", sa.String(length=255), nullable=True),
        sa.Column("google_refresh_token", sa.Text(), nullable=True),
        sa.Column("time_zone", sa.String(length=64), nullable=True),
        sa.Column("working_hours", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("max_active_students >= 0", name="ck_mentor_capacity_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mentors_user_id", "mentors", ["user_id"], unique=True)

    op.create_table(
        "mentorship_products",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("mentor_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="usd"),
        sa.Column("sessions_per_pack", sa.Integer(), nullable=False, server_default=sa.text("4")),
        sa.Column("validity_days", sa.Integer(), nullable=False, server_default=sa.text("30")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("sessions_per_pack > 0", name="ck_product_sessions_positive"),
        sa.CheckConstraint("validity_days > 0", name="ck_product_validity_positive"),
        sa.CheckConstraint("price_cents >= 0", name="ck_product_price_non_negative"),
        sa.ForeignKeyConstraint(["mentor_id"], ["mentors.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_mentorship_products_mentor_id", "mentorship_products", ["mentor_id"], unique=False)

    op.create_table(
        "orders",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=False),
        sa.Column("product_id", sa.String(length=36), nullable=True),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("original_amount_cents", sa.Integer(), nullable=True),
        sa.Column("discount_amount_cents", sa.Integer(), nullable=True),
        sa.Column("discount_code", sa.String(length=120), nullable=True),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="usd"),
        *_timestamps(),
        sa.CheckConstraint(
            "status in ('pending','paid','refunded','failed','canceled')",
            name="ck_order_status",
        ),
        sa.CheckConstraint("provider in ('stripe','paypal')", name="ck_order_provider"),
        sa.CheckConstraint("total_amount_cents >= 0", name="ck_order_total_non_negative"),
        sa.ForeignKeyConstraint(["product_id"], ["mentorship_products.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_orders_user_id", "orders", ["user_id"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("order_id", sa.String(length=36), nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("provider_payment_id", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="usd"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("refunded_amount_cents", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("status in ('pending','completed','refunded','failed')", name="ck_payment_status"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_payment_amount_non_negative"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "provider_payment_id", name="uq_payment_provider_payment_id"),
    )
    op.create_index("ix_payments_order_id", "payments", ["order_id"], unique=False)

    op.create_table(
        "session_packs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=False),
        sa.Column("mentor_id", sa.String(length=36), nullable=False),
        sa.Column("payment_id", sa.String(length=36), nullable=False),
        sa.Column("total_sessions", sa.Integer(), nullable=False, server_default=sa.text("4")),
        sa.Column("remaining_sessions", sa.Integer(), nullable=False, server_default=sa.text("4")),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("status in ('active','depleted','expired','refunded')", name="ck_session_pack_status"),
        sa.CheckConstraint("remaining_sessions >= 0", name="ck_session_pack_remaining_non_negative"),
        sa.CheckConstraint("remaining_sessions <= total_sessions", name="ck_session_pack_remaining_le_total"),
        sa.ForeignKeyConstraint(["mentor_id"], ["mentors.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_id", name="uq_session_pack_payment"),
    )
    op.create_index("ix_session_packs_user_id", "session_packs", ["user_id"], unique=False)
    op.create_index("ix_session_packs_mentor_id", "session_packs", ["mentor_id"], unique=False)
    op.create_index("ix_session_packs_expires_at", "session_packs", ["expires_at"], unique=False)

    op.create_table(
        "seat_reservations",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("mentor_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=False),
        sa.Column("session_pack_id", sa.String(length=36), nullable=False),
        sa.Column("seat_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("grace_period_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.CheckConstraint("status in ('active','grace','released')", name="ck_seat_reservation_status"),
        sa.ForeignKeyConstraint(["mentor_id"], ["mentors.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_pack_id"], ["session_packs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_pack_id", name="uq_seat_reservation_pack"),
    )
    op.create_index("ix_seat_reservations_user_id", "seat_reservations", ["user_id"], unique=False)
    op.create_index("ix_seat_reservations_mentor_status", "seat_reservations", ["mentor_id", "status"], unique=False)

    op.create_table(
        "mentor_sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("mentor_id", sa.String(length=36), nullable=False),
        sa.Column("student_id", sa.String(length=120), nullable=False),
        sa.Column("session_pack_id", sa.String(length=36), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="scheduled"),
        sa.Column("google_calendar_event_id", sa.String(length=255), nullable=True),
        sa.Column("recording_consent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("pack_debited_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status in ('scheduled','completed','canceled','no_show')",
            name="ck_mentor_session_status",
        ),
        sa.ForeignKeyConstraint(["mentor_id"], ["mentors.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_pack_id"], ["session_packs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("google_calendar_event_id", name="uq_mentor_session_calendar_event"),
    )
    op.create_index("ix_mentor_sessions_student_id", "mentor_sessions", ["student_id"], unique=False)
    op.create_index("ix_mentor_sessions_pack_status", "mentor_sessions", ["session_pack_id", "status"], unique=False)
    # two bookings of the same mentor slot cannot both stay scheduled
    op.create_index(
        "uq_mentor_sessions_mentor_slot_scheduled",
        "mentor_sessions",
        ["mentor_id", "scheduled_at"],
        unique=True,
        postgresql_where=sa.text("status = 'scheduled'"),
    )


def downgrade() -> None:
    op.drop_index("uq_mentor_sessions_mentor_slot_scheduled", table_name="mentor_sessions")
    op.drop_index("ix_mentor_sessions_pack_status", table_name="mentor_sessions")
    op.drop_index("ix_mentor_sessions_student_id", table_name="mentor_sessions")
    op.drop_table("mentor_sessions")
    op.drop_index("ix_seat_reservations_mentor_status", table_name="seat_reservations")
    op.drop_index("ix_seat_reservations_user_id", table_name="seat_reservations")
    op.drop_table("seat_reservations")
    op.drop_index("ix_session_packs_expires_at", table_name="session_packs")
    op.drop_index("ix_session_packs_mentor_id", table_name="session_packs")
    op.drop_index("ix_session_packs_user_id", table_name="session_packs")
    op.drop_table("session_packs")
    op.drop_index("ix_payments_order_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_orders_user_id", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_mentorship_products_mentor_id", table_name="mentorship_products")
    op.drop_table("mentorship_products")
    op.drop_index("ix_mentors_user_id", table_name="mentors")
    op.drop_table("mentors")
