"""Mentor working-hours filter.

Working hours are stored per local weekday (``"0"`` = Sunday .. ``"6"``) as
``{"start": "HH:MM", "end": "HH:MM"}`` intervals in the mentor's timezone.

The filter is fail-open: when the mentor has no timezone, no working hours,
or a timezone pytz does not know, every slot passes and the calendar alone
decides availability.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone

import pytz

logger = logging.getLogger(__name__)

_HHMM_RE = re.compile(r"^(\d{2}):(\d{2})$")


def parse_hhmm(value: object) -> int | None:
    m = _HHMM_RE.match(str(value or ""))
    if not m:
        return None
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh > 23 or mm > 59:
        return None
    return hh * 60 + mm


def _weekday_key(local: datetime) -> str:
    # Python's weekday() is Monday=0; stored keys are Sunday=0.
    return str((local.weekday() + 1) % 7)


def _intervals_for(working_hours: dict, day_key: str) -> list[tuple[int, int]]:
    raw = working_hours.get(day_key) or []
    out: list[tuple[int, int]] = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        start = parse_hhmm(item.get("start"))
        end = parse_hhmm(item.get("end"))
        if start is None or end is None or end <= start:
            continue
        out.append((start, end))
    return out


def _minute_of_day(local: datetime) -> float:
    # seconds count: 16:00:30 is past a 16:00 boundary
    return local.hour * 60 + local.minute + (local.second + local.microsecond / 1_000_000) / 60


class WorkingHoursFilter:
    def __init__(self, time_zone: str | None, working_hours: dict | None) -> None:
        self._tz = None
        self._working_hours = working_hours or None
        if time_zone and self._working_hours:
            try:
                self._tz = pytz.timezone(time_zone)
            except pytz.UnknownTimeZoneError:
                logger.warning("Unknown mentor timezone %r, working hours not enforced", time_zone)

    @property
    def active(self) -> bool:
        return self._tz is not None and bool(self._working_hours)

    def allows(self, slot_start: datetime, slot_end: datetime) -> bool:
        if not self.active:
            return True

        local_start = slot_start.astimezone(timezone.utc).astimezone(self._tz)
        local_end = slot_end.astimezone(timezone.utc).astimezone(self._tz)
        if local_start.date() != local_end.date():
            return False
        start_minutes = _minute_of_day(local_start)
        end_minutes = _minute_of_day(local_end)

        for start, end in _intervals_for(self._working_hours, _weekday_key(local_start)):
            if start_minutes >= start and end_minutes <= end:
                return True
        return False
