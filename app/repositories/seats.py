from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.mentorship import SeatReservation

HELD_SEAT_STATUSES = ("active", "grace")


async def get_seat_by_pack(db: AsyncSession, pack_id: str) -> SeatReservation | None:
    return (
        await db.execute(select(SeatReservation).where(SeatReservation.session_pack_id == pack_id))
    ).scalar_one_or_none()


async def get_or_create_seat(
    db: AsyncSession,
    *,
    pack_id: str,
    mentor_id: str,
    user_id: str,
    seat_expires_at: datetime,
) -> tuple[SeatReservation, bool]:
    existing = await get_seat_by_pack(db, pack_id)
    if existing is not None:
        return existing, False

    row = SeatReservation(
        mentor_id=mentor_id,
        user_id=user_id,
        session_pack_id=pack_id,
        seat_expires_at=seat_expires_at,
        status="active",
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_seat_by_pack(db, pack_id)
        if existing is None:
            raise
        return existing, False
    return row, True


async def release_seat_by_pack(db: AsyncSession, pack_id: str) -> bool:
    """Release the pack's seat. Releasing an already released seat is a no-op.

    Returns False only when the pack has no seat at all.
    """
    await db.execute(
        update(SeatReservation)
        .where(SeatReservation.session_pack_id == pack_id, SeatReservation.status != "released")
        .values(status="released", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return await get_seat_by_pack(db, pack_id) is not None


async def start_seat_grace(db: AsyncSession, pack_id: str, grace_period_ends_at: datetime) -> SeatReservation | None:
    """Move an active seat into grace.

    A seat already in grace keeps its original deadline, so a re-run never
    extends the grace period.
    """
    await db.execute(
        update(SeatReservation)
        .where(SeatReservation.session_pack_id == pack_id, SeatReservation.status == "active")
        .values(status="grace", grace_period_ends_at=grace_period_ends_at, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    seat = await get_seat_by_pack(db, pack_id)
    if seat is not None:
        await db.refresh(seat)
    return seat


async def count_held_seats(db: AsyncSession, mentor_id: str) -> int:
    total = (
        await db.execute(
            select(func.count(SeatReservation.id)).where(
                SeatReservation.mentor_id == mentor_id,
                SeatReservation.status.in_(HELD_SEAT_STATUSES),
            )
        )
    ).scalar_one()
    return int(total or 0)


async def list_elapsed_grace_seats(db: AsyncSession, now: datetime) -> list[SeatReservation]:
    rows = (
        await db.execute(
            select(SeatReservation).where(
                SeatReservation.status == "grace",
                SeatReservation.grace_period_ends_at.is_not(None),
                SeatReservation.grace_period_ends_at <= now,
            )
        )
    ).scalars().all()
    return list(rows)


async def list_grace_seats_ending_between(
    db: AsyncSession,
    now: datetime,
    threshold: datetime,
) -> list[SeatReservation]:
    rows = (
        await db.execute(
            select(SeatReservation)
            .where(
                SeatReservation.status == "grace",
                SeatReservation.grace_period_ends_at.is_not(None),
                SeatReservation.grace_period_ends_at > now,
                SeatReservation.grace_period_ends_at <= threshold,
            )
            .order_by(SeatReservation.grace_period_ends_at)
        )
    ).scalars().all()
    return list(rows)
