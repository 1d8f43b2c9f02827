from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import MentorNotFoundError
from app.models.mentorship import Mentor, MentorshipProduct
from app.repositories.seats import count_held_seats


@dataclass(frozen=True, slots=True)
class SeatAvailability:
    available: bool
    active_seats: int
    max_seats: int
    remaining_seats: int


async def get_mentor(db: AsyncSession, mentor_id: str) -> Mentor | None:
    return (await db.execute(select(Mentor).where(Mentor.id == mentor_id))).scalar_one_or_none()


async def get_product(db: AsyncSession, product_id: str) -> MentorshipProduct | None:
    return (
        await db.execute(select(MentorshipProduct).where(MentorshipProduct.id == product_id))
    ).scalar_one_or_none()


async def get_seat_availability(db: AsyncSession, mentor_id: str) -> SeatAvailability:
    mentor = await get_mentor(db, mentor_id)
    if mentor is None:
        raise MentorNotFoundError(f"Mentor {mentor_id} not found")
    held = await count_held_seats(db, mentor_id)
    remaining = max(0, mentor.max_active_students - held)
    return SeatAvailability(
        available=remaining > 0,
        active_seats=held,
        max_seats=mentor.max_active_students,
        remaining_seats=remaining,
    )
