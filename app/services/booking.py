"""Session booking.

A booking attempt moves through validated -> calendar checked -> event
created -> persisted. The calendar event is created before the session row so
the only partial state a failure can leave is an event without a row, which
the compensating delete cleans up. A row without an event would promise a
slot the mentor's calendar does not show.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    CALENDAR_NOT_CONNECTED,
    OUTSIDE_WORKING_HOURS,
    TIME_SLOT_UNAVAILABLE,
    BookingIneligibleError,
    ConflictError,
    MentorNotFoundError,
    ValidationError,
)
from app.models.mentorship import MentorSession
from app.repositories.mentors import get_mentor
from app.repositories.packs import get_pack
from app.repositories.sessions import find_scheduled_session, insert_session
from app.services.availability import normalize_busy_windows
from app.services.calendar import CalendarProvider, CalendarService
from app.services.eligibility import Ineligible, validate_booking_eligibility
from app.services.working_hours import WorkingHoursFilter

logger = logging.getLogger(__name__)

SESSION_SUMMARY = "Mentorship session"


@dataclass(frozen=True, slots=True)
class BookingResult:
    session: MentorSession
    created: bool


class SlotUnavailableError(ConflictError):
    default_code = TIME_SLOT_UNAVAILABLE


class BookingService:
    def __init__(self, calendars: CalendarProvider, *, session_minutes: int = 60) -> None:
        self._calendars = calendars
        self._session_minutes = session_minutes

    async def book(
        self,
        db: AsyncSession,
        *,
        pack_id: str,
        student_id: str,
        scheduled_at: datetime,
        recording_consent: bool = False,
    ) -> BookingResult:
        if scheduled_at.tzinfo is None:
            raise ValidationError("scheduledAt must include a timezone offset", code="INVALID_SCHEDULED_AT")
        start = scheduled_at.astimezone(timezone.utc)
        end = start + timedelta(minutes=self._session_minutes)

        eligibility = await validate_booking_eligibility(db, pack_id, student_id, start)
        if isinstance(eligibility, Ineligible):
            raise BookingIneligibleError(eligibility.reason, code=eligibility.code)

        existing = await find_scheduled_session(db, student_id=student_id, pack_id=pack_id, scheduled_at=start)
        if existing is not None:
            logger.info("Booking for pack %s at %s already exists (session %s)", pack_id, start, existing.id)
            return BookingResult(session=existing, created=False)

        pack = await get_pack(db, pack_id)
        mentor = await get_mentor(db, pack.mentor_id) if pack is not None else None
        if mentor is None:
            raise MentorNotFoundError("Mentor not found")
        calendar = self._calendars.for_mentor(mentor)
        if calendar is None:
            raise ConflictError("Mentor has not connected Google Calendar", code=CALENDAR_NOT_CONNECTED)
        # survives the rollback on a failed insert
        mentor_id, calendar_id = mentor.id, mentor.calendar_id

        hours = WorkingHoursFilter(mentor.time_zone, mentor.working_hours)
        if not hours.allows(start, end):
            raise ValidationError("Selected time is outside mentor working hours", code=OUTSIDE_WORKING_HOURS)

        busy = await calendar.query_busy(calendar_id, start, end)
        if any(window.overlaps(start, end) for window in normalize_busy_windows(busy)):
            raise SlotUnavailableError("Time slot is no longer available", details={"busy": busy})

        event_id = await calendar.create_event(
            calendar_id,
            summary=SESSION_SUMMARY,
            description=f"Mentorship session booking\nStudent: {student_id}\nSession pack: {pack_id}",
            start=start,
            end=end,
            metadata={"session_pack_id": pack_id, "student_id": student_id},
        )

        try:
            row = await insert_session(
                db,
                mentor_id=mentor_id,
                student_id=student_id,
                pack_id=pack_id,
                scheduled_at=start,
                google_calendar_event_id=event_id,
                recording_consent=recording_consent,
            )
        except IntegrityError as exc:
            await db.rollback()
            await self._compensate(calendar, calendar_id, event_id)
            # A concurrent retry of this very request won the insert.
            existing = await find_scheduled_session(db, student_id=student_id, pack_id=pack_id, scheduled_at=start)
            if existing is not None:
                return BookingResult(session=existing, created=False)
            # partial unique index on (mentor_id, scheduled_at) for scheduled sessions
            raise SlotUnavailableError("Time slot is no longer available") from exc
        except BaseException:
            # cancellation included: no event outlives a failed insert unlogged
            await self._compensate(calendar, calendar_id, event_id)
            await db.rollback()
            raise

        logger.info("Booked session %s for pack %s at %s (event %s)", row.id, pack_id, start, event_id)
        return BookingResult(session=row, created=True)

    async def _compensate(self, calendar: CalendarService, calendar_id: str, event_id: str) -> None:
        try:
            await calendar.delete_event(calendar_id, event_id)
        except Exception:
            # Not retried here: the orphaned event needs the reconciliation pass.
            logger.exception(
                "ALERT compensation failed: calendar event %s on %s left without a session row",
                event_id,
                calendar_id,
            )
        else:
            logger.warning("Deleted calendar event %s after failed session insert", event_id)
