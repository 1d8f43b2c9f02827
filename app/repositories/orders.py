from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.mentorship import Order


async def get_order(db: AsyncSession, order_id: str) -> Order | None:
    return (await db.execute(select(Order).where(Order.id == order_id))).scalar_one_or_none()


async def mark_order_paid(
    db: AsyncSession,
    order_id: str,
    *,
    total_amount_cents: int,
    original_amount_cents: int | None = None,
    discount_amount_cents: int | None = None,
    discount_code: str | None = None,
) -> None:
    values: dict = {
        "status": "paid",
        "total_amount_cents": total_amount_cents,
        "updated_at": utcnow(),
    }
    if original_amount_cents is not None:
        values["original_amount_cents"] = original_amount_cents
    if discount_amount_cents:
        values["discount_amount_cents"] = discount_amount_cents
    if discount_code:
        values["discount_code"] = discount_code
    await db.execute(update(Order).where(Order.id == order_id).values(**values))
    await db.commit()


async def update_order_status(db: AsyncSession, order_id: str, status: str) -> None:
    await db.execute(update(Order).where(Order.id == order_id).values(status=status, updated_at=utcnow()))
    await db.commit()
