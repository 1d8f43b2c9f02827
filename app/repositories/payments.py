from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.mentorship import Payment


async def get_payment_by_provider_id(db: AsyncSession, provider: str, provider_payment_id: str) -> Payment | None:
    return (
        await db.execute(
            select(Payment).where(
                Payment.provider == provider,
                Payment.provider_payment_id == provider_payment_id,
            )
        )
    ).scalar_one_or_none()


async def get_or_create_payment(
    db: AsyncSession,
    *,
    order_id: str,
    provider: str,
    provider_payment_id: str,
    amount_cents: int,
    currency: str,
) -> tuple[Payment, bool]:
    """Insert the completed payment once per (provider, provider_payment_id)."""
    existing = await get_payment_by_provider_id(db, provider, provider_payment_id)
    if existing is not None:
        return existing, False

    row = Payment(
        order_id=order_id,
        provider=provider,
        provider_payment_id=provider_payment_id,
        amount_cents=amount_cents,
        currency=currency.lower(),
        status="completed",
    )
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        # lost the race against a concurrent delivery of the same fact
        await db.rollback()
        existing = await get_payment_by_provider_id(db, provider, provider_payment_id)
        if existing is None:
            raise
        return existing, False
    return row, True


async def mark_payment_refunded(db: AsyncSession, payment_id: str, refunded_amount_cents: int) -> None:
    await db.execute(
        update(Payment)
        .where(Payment.id == payment_id)
        .values(status="refunded", refunded_amount_cents=refunded_amount_cents, updated_at=utcnow())
    )
    await db.commit()


async def get_payment_for_order(db: AsyncSession, order_id: str) -> Payment | None:
    return (
        await db.execute(
            select(Payment)
            .where(Payment.order_id == order_id, Payment.status.in_(("completed", "refunded")))
            .order_by(Payment.created_at)
            .limit(1)
        )
    ).scalar_one_or_none()
