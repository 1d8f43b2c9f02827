from __future__ import annotations

from datetime import datetime

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BusyWindowOut(BaseModel):
    start: str
    end: str


class AvailabilityOut(CamelModel):
    mentor_id: str
    calendar_id: str
    time_min: datetime
    time_max: datetime
    slot_minutes: int
    busy: list[BusyWindowOut] = Field(default_factory=list)
    available_slots: list[datetime] = Field(default_factory=list)
    truncated: bool = False
    mentor_time_zone: str | None = None
    working_hours_configured: bool = False


class SeatAvailabilityOut(CamelModel):
    available: bool
    active_seats: int
    max_seats: int
    remaining_seats: int


class CreateSessionIn(CamelModel):
    session_pack_id: str = Field(min_length=1)
    scheduled_at: AwareDatetime
    recording_consent: bool = False


class SessionOut(CamelModel):
    id: str
    mentor_id: str
    student_id: str
    session_pack_id: str
    scheduled_at: datetime
    status: str
    google_calendar_event_id: str | None = None
    recording_consent: bool = False


class CreateSessionOut(CamelModel):
    session: SessionOut
    created: bool
