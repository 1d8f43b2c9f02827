from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.deps import get_booking_service, get_calendars
from app.core.config import settings
from app.db.session import get_db
from app.repositories.mentors import get_seat_availability
from app.schemas.booking import (
    AvailabilityOut,
    BusyWindowOut,
    CreateSessionIn,
    CreateSessionOut,
    SeatAvailabilityOut,
    SessionOut,
)
from app.services.auth import AuthUser, get_current_user
from app.services.availability import DEFAULT_SLOT_MINUTES, get_mentor_availability
from app.services.booking import BookingService
from app.services.calendar import CalendarProvider

router = APIRouter(tags=["booking"])


@router.get("/mentors/{mentor_id}/availability", response_model=AvailabilityOut)
async def mentor_availability(
    mentor_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    slot_minutes: int = Query(default=DEFAULT_SLOT_MINUTES, alias="slotMinutes"),
    db: AsyncSession = Depends(get_db),
    calendars: CalendarProvider = Depends(get_calendars),
) -> AvailabilityOut:
    result = await get_mentor_availability(
        db,
        calendars,
        mentor_id,
        start,
        end,
        slot_minutes,
        max_range_days=settings.availability_max_range_days,
        max_slots=settings.availability_max_slots,
    )
    return AvailabilityOut(
        mentor_id=result.mentor_id,
        calendar_id=result.calendar_id,
        time_min=result.time_min,
        time_max=result.time_max,
        slot_minutes=result.slot_minutes,
        busy=[BusyWindowOut(start=str(b.get("start")), end=str(b.get("end"))) for b in result.busy],
        available_slots=result.available_slots,
        truncated=result.truncated,
        mentor_time_zone=result.mentor_time_zone,
        working_hours_configured=result.working_hours_configured,
    )


@router.get("/mentors/{mentor_id}/seats", response_model=SeatAvailabilityOut)
async def mentor_seats(mentor_id: str, db: AsyncSession = Depends(get_db)) -> SeatAvailabilityOut:
    seats = await get_seat_availability(db, mentor_id)
    return SeatAvailabilityOut(
        available=seats.available,
        active_seats=seats.active_seats,
        max_seats=seats.max_seats,
        remaining_seats=seats.remaining_seats,
    )


@router.post("/sessions", response_model=CreateSessionOut)
async def create_session(
    payload: CreateSessionIn,
    db: AsyncSession = Depends(get_db),
    booking: BookingService = Depends(get_booking_service),
    current_user: AuthUser = Depends(get_current_user),
) -> CreateSessionOut:
    result = await booking.book(
        db,
        pack_id=payload.session_pack_id,
        student_id=current_user.user_id,
        scheduled_at=payload.scheduled_at,
        recording_consent=payload.recording_consent,
    )
    row = result.session
    return CreateSessionOut(
        session=SessionOut(
            id=row.id,
            mentor_id=row.mentor_id,
            student_id=row.student_id,
            session_pack_id=row.session_pack_id,
            scheduled_at=row.scheduled_at,
            status=row.status,
            google_calendar_event_id=row.google_calendar_event_id,
            recording_consent=row.recording_consent,
        ),
        created=result.created,
    )
