from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.common import TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin, utcnow

ORDER_STATUSES = ("pending", "paid", "refunded", "failed", "canceled")
PAYMENT_STATUSES = ("pending", "completed", "refunded", "failed")
PAYMENT_PROVIDERS = ("stripe", "paypal")
PACK_STATUSES = ("active", "depleted", "expired", "refunded")
SEAT_STATUSES = ("active", "grace", "released")
SESSION_STATUSES = ("scheduled", "completed", "canceled", "no_show")


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    joined = ",".join(f"'{v}'" for v in values)
    return f"{column} in ({joined})"


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Mentor(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "mentors"
    __table_args__ = (CheckConstraint("max_active_students >= 0", name="ck_mentor_capacity_non_negative"),)

    user_id: Mapped[str] = mapped_column(String(120), unique=True, index=True, nullable=False)
    max_active_students: Mapped[int] = mapped_column(Integer, default=10, nullable=False)
    google_calendar_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    google_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_zone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # weekday "0" (Sunday) .. "6" -> [{"start": "HH:MM", "end": "HH:MM"}]
    working_hours: Mapped[dict | None] = mapped_column(JSONType, nullable=True)

    @property
    def calendar_id(self) -> str:
        return self.google_calendar_id or "primary"


class MentorshipProduct(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "mentorship_products"
    __table_args__ = (
        CheckConstraint("sessions_per_pack > 0", name="ck_product_sessions_positive"),
        CheckConstraint("validity_days > 0", name="ck_product_validity_positive"),
        CheckConstraint("price_cents >= 0", name="ck_product_price_non_negative"),
    )

    mentor_id: Mapped[str] = mapped_column(ForeignKey("mentors.id", ondelete="CASCADE"), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="usd", nullable=False)
    sessions_per_pack: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    validity_days: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(_in_clause("status", ORDER_STATUSES), name="ck_order_status"),
        CheckConstraint(_in_clause("provider", PAYMENT_PROVIDERS), name="ck_order_provider"),
        CheckConstraint("total_amount_cents >= 0", name="ck_order_total_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    product_id: Mapped[str | None] = mapped_column(
        ForeignKey("mentorship_products.id", ondelete="SET NULL"),
        nullable=True,
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    total_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    original_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_code: Mapped[str | None] = mapped_column(String(120), nullable=True)
    currency: Mapped[str] = mapped_column(String(8), default="usd", nullable=False)


class Payment(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("provider", "provider_payment_id", name="uq_payment_provider_payment_id"),
        CheckConstraint(_in_clause("status", PAYMENT_STATUSES), name="ck_payment_status"),
        CheckConstraint("amount_cents >= 0", name="ck_payment_amount_non_negative"),
    )

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    provider_payment_id: Mapped[str] = mapped_column(String(120), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="usd", nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    refunded_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)


class SessionPack(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "session_packs"
    __table_args__ = (
        UniqueConstraint("payment_id", name="uq_session_pack_payment"),
        CheckConstraint(_in_clause("status", PACK_STATUSES), name="ck_session_pack_status"),
        CheckConstraint("remaining_sessions >= 0", name="ck_session_pack_remaining_non_negative"),
        CheckConstraint("remaining_sessions <= total_sessions", name="ck_session_pack_remaining_le_total"),
    )

    user_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    mentor_id: Mapped[str] = mapped_column(ForeignKey("mentors.id", ondelete="CASCADE"), index=True)
    payment_id: Mapped[str] = mapped_column(ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    remaining_sessions: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)


class SeatReservation(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "seat_reservations"
    __table_args__ = (
        UniqueConstraint("session_pack_id", name="uq_seat_reservation_pack"),
        CheckConstraint(_in_clause("status", SEAT_STATUSES), name="ck_seat_reservation_status"),
        Index("ix_seat_reservations_mentor_status", "mentor_id", "status"),
    )

    mentor_id: Mapped[str] = mapped_column(ForeignKey("mentors.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    session_pack_id: Mapped[str] = mapped_column(
        ForeignKey("session_packs.id", ondelete="CASCADE"),
        nullable=False,
    )
    seat_expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    grace_period_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)


class MentorSession(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "mentor_sessions"
    __table_args__ = (
        UniqueConstraint("google_calendar_event_id", name="uq_mentor_session_calendar_event"),
        CheckConstraint(_in_clause("status", SESSION_STATUSES), name="ck_mentor_session_status"),
        Index(
            "uq_mentor_sessions_mentor_slot_scheduled",
            "mentor_id",
            "scheduled_at",
            unique=True,
            postgresql_where=text("status = 'scheduled'"),
            sqlite_where=text("status = 'scheduled'"),
        ),
        Index("ix_mentor_sessions_pack_status", "session_pack_id", "status"),
    )

    mentor_id: Mapped[str] = mapped_column(ForeignKey("mentors.id", ondelete="CASCADE"), nullable=False)
    student_id: Mapped[str] = mapped_column(String(120), index=True, nullable=False)
    session_pack_id: Mapped[str] = mapped_column(
        ForeignKey("session_packs.id", ondelete="CASCADE"),
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="scheduled", nullable=False)
    google_calendar_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recording_consent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pack_debited_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
