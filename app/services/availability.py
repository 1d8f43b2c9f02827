from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import CALENDAR_NOT_CONNECTED, ConflictError, MentorNotFoundError, ValidationError
from app.repositories.mentors import get_mentor
from app.services.calendar import CalendarProvider
from app.services.working_hours import WorkingHoursFilter

DEFAULT_SLOT_MINUTES = 60
MIN_SLOT_MINUTES = 15
MAX_SLOT_MINUTES = 180
MAX_RANGE_DAYS = 31
MAX_SLOTS = 500

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_US = timedelta(microseconds=1)


@dataclass(frozen=True, slots=True)
class Interval:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass(slots=True)
class SlotComputation:
    slots: list[datetime] = field(default_factory=list)
    truncated: bool = False


@dataclass(slots=True)
class MentorAvailability:
    mentor_id: str
    calendar_id: str
    time_min: datetime
    time_max: datetime
    slot_minutes: int
    busy: list[dict[str, Any]]
    available_slots: list[datetime]
    truncated: bool
    mentor_time_zone: str | None
    working_hours_configured: bool


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_bound(raw: object) -> datetime | None:
    if isinstance(raw, datetime):
        return _as_utc(raw)
    if not isinstance(raw, str) or not raw.strip():
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _as_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def normalize_busy_windows(busy: Iterable[dict[str, Any]]) -> list[Interval]:
    """Drop malformed windows, then merge overlapping or touching ones.

    The result is sorted by start and pairwise disjoint.
    """
    intervals: list[Interval] = []
    for item in busy:
        if not isinstance(item, dict):
            continue
        start = _parse_bound(item.get("start"))
        end = _parse_bound(item.get("end"))
        if start is None or end is None or end <= start:
            continue
        intervals.append(Interval(start, end))
    intervals.sort(key=lambda i: (i.start, i.end))

    merged: list[Interval] = []
    for item in intervals:
        if merged and item.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, item.end))
            continue
        merged.append(item)
    return merged


def ceil_to_slot(value: datetime, slot_minutes: int) -> datetime:
    slot_us = slot_minutes * 60 * 1_000_000
    elapsed_us = (_as_utc(value) - _EPOCH) // _ONE_US
    return _EPOCH + timedelta(microseconds=-(-elapsed_us // slot_us) * slot_us)


def compute_available_slots(
    busy: list[Interval],
    start: datetime,
    end: datetime,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    *,
    hours_filter: WorkingHoursFilter | None = None,
    max_slots: int = MAX_SLOTS,
) -> SlotComputation:
    """Walk slot boundaries from ``start`` to ``end`` against merged busy windows.

    ``busy`` must come from :func:`normalize_busy_windows`. The busy pointer
    only moves forward, so the scan is linear in slots plus busy windows.
    """
    out = SlotComputation()
    step = timedelta(minutes=slot_minutes)
    end = _as_utc(end)
    cursor = ceil_to_slot(start, slot_minutes)
    idx = 0

    while cursor + step <= end:
        slot_end = cursor + step
        while idx < len(busy) and busy[idx].end <= cursor:
            idx += 1
        blocked = idx < len(busy) and busy[idx].overlaps(cursor, slot_end)

        if not blocked and (hours_filter is None or hours_filter.allows(cursor, slot_end)):
            out.slots.append(cursor)
            if len(out.slots) >= max_slots:
                out.truncated = True
                break
        cursor = slot_end
    return out


def validate_window(
    start: datetime,
    end: datetime,
    slot_minutes: int,
    *,
    max_range_days: int = MAX_RANGE_DAYS,
) -> tuple[datetime, datetime]:
    start, end = _as_utc(start), _as_utc(end)
    if not start < end:
        raise ValidationError("start must be before end", code="INVALID_TIME_RANGE")
    if end - start > timedelta(days=max_range_days):
        raise ValidationError(f"Date range too large (max {max_range_days} days)", code="INVALID_TIME_RANGE")
    if not MIN_SLOT_MINUTES <= slot_minutes <= MAX_SLOT_MINUTES:
        raise ValidationError(
            f"slotMinutes must be between {MIN_SLOT_MINUTES} and {MAX_SLOT_MINUTES}",
            code="INVALID_SLOT_MINUTES",
        )
    return start, end


async def get_mentor_availability(
    db: AsyncSession,
    calendars: CalendarProvider,
    mentor_id: str,
    start: datetime,
    end: datetime,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    *,
    max_range_days: int = MAX_RANGE_DAYS,
    max_slots: int = MAX_SLOTS,
) -> MentorAvailability:
    start, end = validate_window(start, end, slot_minutes, max_range_days=max_range_days)

    mentor = await get_mentor(db, mentor_id)
    if mentor is None:
        raise MentorNotFoundError("Mentor not found")
    calendar = calendars.for_mentor(mentor)
    if calendar is None:
        raise ConflictError("Mentor has not connected Google Calendar", code=CALENDAR_NOT_CONNECTED)

    raw_busy = await calendar.query_busy(mentor.calendar_id, start, end)
    hours_filter = WorkingHoursFilter(mentor.time_zone, mentor.working_hours)
    result = compute_available_slots(
        normalize_busy_windows(raw_busy),
        start,
        end,
        slot_minutes,
        hours_filter=hours_filter,
        max_slots=max_slots,
    )
    return MentorAvailability(
        mentor_id=mentor.id,
        calendar_id=mentor.calendar_id,
        time_min=start,
        time_max=end,
        slot_minutes=slot_minutes,
        busy=raw_busy,
        available_slots=result.slots,
        truncated=result.truncated,
        mentor_time_zone=mentor.time_zone,
        working_hours_configured=bool(mentor.working_hours),
    )
