"""Booking eligibility for a session pack.

The checks run in a fixed order so the same state always yields the same
code: ownership, expiry by clock, requested time against expiry, pack status,
remaining balance, seat. Expiry is read from the clock before the status
column because the status only flips when the sweeper runs.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.common import utcnow
from app.models.mentorship import SeatReservation, SessionPack
from app.repositories.packs import get_pack_with_seat

IneligibleCode = Literal[
    "PACK_NOT_FOUND",
    "PACK_EXPIRED",
    "SCHEDULED_AFTER_EXPIRATION",
    "PACK_NOT_ACTIVE",
    "NO_REMAINING_SESSIONS",
    "SEAT_NOT_ACTIVE",
]


@dataclass(frozen=True, slots=True)
class Eligible:
    valid: Literal[True] = True


@dataclass(frozen=True, slots=True)
class Ineligible:
    code: IneligibleCode
    reason: str
    valid: Literal[False] = False


EligibilityResult = Eligible | Ineligible


def evaluate_eligibility(
    pack: SessionPack | None,
    seat: SeatReservation | None,
    *,
    user_id: str,
    now: datetime,
    scheduled_at: datetime | None = None,
) -> EligibilityResult:
    if pack is None or pack.user_id != user_id:
        return Ineligible("PACK_NOT_FOUND", "Session pack not found or you don't have access to it")

    if pack.expires_at < now:
        return Ineligible("PACK_EXPIRED", "Session pack has expired. Bookings are no longer allowed.")

    if scheduled_at is not None and scheduled_at > pack.expires_at:
        return Ineligible("SCHEDULED_AFTER_EXPIRATION", "Session cannot be scheduled after the pack expires.")

    if pack.status != "active":
        return Ineligible("PACK_NOT_ACTIVE", f"Session pack is {pack.status}. Bookings are not allowed.")

    if pack.remaining_sessions <= 0:
        return Ineligible("NO_REMAINING_SESSIONS", "No remaining sessions available. Please renew your pack.")

    if seat is None:
        return Ineligible("SEAT_NOT_ACTIVE", "Seat reservation not found. Please contact support.")
    if seat.status != "active":
        return Ineligible("SEAT_NOT_ACTIVE", f"Seat is {seat.status}. Bookings are not allowed.")

    return Eligible()


async def validate_booking_eligibility(
    db: AsyncSession,
    pack_id: str,
    user_id: str,
    scheduled_at: datetime | None = None,
    *,
    now: datetime | None = None,
) -> EligibilityResult:
    pack, seat = await get_pack_with_seat(db, pack_id, user_id)
    return evaluate_eligibility(pack, seat, user_id=user_id, now=now or utcnow(), scheduled_at=scheduled_at)
