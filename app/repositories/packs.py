from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.mentorship import MentorSession, SeatReservation, SessionPack

# Terminal states that a balance change must never overwrite.
_STICKY_PACK_STATUSES = ("refunded", "expired")


@dataclass(frozen=True, slots=True)
class PackBalance:
    pack_id: str
    remaining_sessions: int
    status: str


async def get_pack(db: AsyncSession, pack_id: str) -> SessionPack | None:
    return (await db.execute(select(SessionPack).where(SessionPack.id == pack_id))).scalar_one_or_none()


async def get_pack_by_payment(db: AsyncSession, payment_id: str) -> SessionPack | None:
    return (
        await db.execute(select(SessionPack).where(SessionPack.payment_id == payment_id))
    ).scalar_one_or_none()


async def get_pack_with_seat(
    db: AsyncSession,
    pack_id: str,
    user_id: str,
) -> tuple[SessionPack | None, SeatReservation | None]:
    row = (
        await db.execute(
            select(SessionPack, SeatReservation)
            .outerjoin(SeatReservation, SeatReservation.session_pack_id == SessionPack.id)
            .where(SessionPack.id == pack_id, SessionPack.user_id == user_id)
            .limit(1)
        )
    ).first()
    if row is None:
        return None, None
    return row[0], row[1]


async def get_or_create_pack(
    db: AsyncSession,
    *,
    payment_id: str,
    user_id: str,
    mentor_id: str,
    total_sessions: int,
    expires_at: datetime,
) -> tuple[SessionPack, bool]:
    existing = await get_pack_by_payment(db, payment_id)
    if existing is not None:
        return existing, False

    row = SessionPack(
        user_id=user_id,
        mentor_id=mentor_id,
        payment_id=payment_id,
        total_sessions=total_sessions,
        remaining_sessions=total_sessions,
        purchased_at=utcnow(),
        expires_at=expires_at,
        status="active",
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await get_pack_by_payment(db, payment_id)
        if existing is None:
            raise
        return existing, False
    return row, True


def _decrement_statement(pack_id: str):
    return (
        update(SessionPack)
        .where(SessionPack.id == pack_id)
        .values(
            remaining_sessions=case(
                (SessionPack.remaining_sessions > 0, SessionPack.remaining_sessions - 1),
                else_=0,
            ),
            # SET expressions see the pre-update row, so "<= 1" means "0 after this decrement".
            status=case(
                (SessionPack.status.in_(_STICKY_PACK_STATUSES), SessionPack.status),
                (SessionPack.remaining_sessions <= 1, "depleted"),
                else_=SessionPack.status,
            ),
            updated_at=utcnow(),
        )
        .returning(SessionPack.id, SessionPack.remaining_sessions, SessionPack.status)
        .execution_options(synchronize_session=False)
    )


async def decrement_remaining_sessions(db: AsyncSession, pack_id: str) -> PackBalance | None:
    """Atomically take one session off the pack, flooring at zero.

    The depleted flip happens in the same UPDATE so concurrent completions
    cannot lose an update between the decrement and the status change.
    """
    row = (await db.execute(_decrement_statement(pack_id))).first()
    await db.commit()
    if row is None:
        return None
    return PackBalance(pack_id=row[0], remaining_sessions=row[1], status=row[2])


async def debit_pack_for_session(
    db: AsyncSession,
    *,
    session_id: str,
    pack_id: str,
) -> tuple[PackBalance | None, bool]:
    """Charge the pack for a completed session exactly once.

    Returns the balance after the call and whether this call applied the debit.
    A retried completion job finds the session already marked and only reads
    the current balance.
    """
    claimed = await db.execute(
        update(MentorSession)
        .where(
            MentorSession.id == session_id,
            MentorSession.status == "completed",
            MentorSession.pack_debited_at.is_(None),
        )
        .values(pack_debited_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount == 1:
        row = (await db.execute(_decrement_statement(pack_id))).first()
        await db.commit()
        if row is None:
            return None, True
        return PackBalance(pack_id=row[0], remaining_sessions=row[1], status=row[2]), True

    await db.rollback()
    pack = await get_pack(db, pack_id)
    if pack is None:
        return None, False
    return PackBalance(pack_id=pack.id, remaining_sessions=pack.remaining_sessions, status=pack.status), False


async def set_pack_status(
    db: AsyncSession,
    pack_id: str,
    status: str,
    *,
    remaining_sessions: int | None = None,
) -> None:
    values: dict = {"status": status, "updated_at": utcnow()}
    if remaining_sessions is not None:
        values["remaining_sessions"] = remaining_sessions
    await db.execute(
        update(SessionPack)
        .where(SessionPack.id == pack_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def expire_lapsed_packs(db: AsyncSession, now: datetime) -> int:
    """Flip active packs whose validity has run out to expired."""
    result = await db.execute(
        update(SessionPack)
        .where(SessionPack.status == "active", SessionPack.expires_at <= now)
        .values(status="expired", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return int(result.rowcount or 0)


async def list_lapsed_packs(db: AsyncSession, now: datetime) -> list[SessionPack]:
    """Expired or depleted packs past expiry that still hold a seat."""
    rows = (
        await db.execute(
            select(SessionPack)
            .join(SeatReservation, SeatReservation.session_pack_id == SessionPack.id)
            .where(
                SessionPack.status.in_(("expired", "depleted")),
                SessionPack.expires_at <= now,
                SeatReservation.status.in_(("active", "grace")),
            )
            .order_by(SessionPack.expires_at)
        )
    ).scalars().all()
    return list(rows)
