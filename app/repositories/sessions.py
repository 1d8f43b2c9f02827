from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.mentorship import MentorSession


async def get_session(db: AsyncSession, session_id: str) -> MentorSession | None:
    return (await db.execute(select(MentorSession).where(MentorSession.id == session_id))).scalar_one_or_none()


async def find_scheduled_session(
    db: AsyncSession,
    *,
    student_id: str,
    pack_id: str,
    scheduled_at: datetime,
) -> MentorSession | None:
    return (
        await db.execute(
            select(MentorSession)
            .where(
                MentorSession.student_id == student_id,
                MentorSession.session_pack_id == pack_id,
                MentorSession.scheduled_at == scheduled_at,
                MentorSession.status == "scheduled",
            )
            .limit(1)
        )
    ).scalar_one_or_none()


async def has_scheduled_session(db: AsyncSession, pack_id: str) -> bool:
    row = (
        await db.execute(
            select(MentorSession.id)
            .where(MentorSession.session_pack_id == pack_id, MentorSession.status == "scheduled")
            .limit(1)
        )
    ).first()
    return row is not None


async def count_completed_sessions(db: AsyncSession, pack_id: str) -> int:
    total = (
        await db.execute(
            select(func.count(MentorSession.id)).where(
                MentorSession.session_pack_id == pack_id,
                MentorSession.status == "completed",
            )
        )
    ).scalar_one()
    return int(total or 0)


async def insert_session(
    db: AsyncSession,
    *,
    mentor_id: str,
    student_id: str,
    pack_id: str,
    scheduled_at: datetime,
    google_calendar_event_id: str,
    recording_consent: bool = False,
) -> MentorSession:
    row = MentorSession(
        mentor_id=mentor_id,
        student_id=student_id,
        session_pack_id=pack_id,
        scheduled_at=scheduled_at,
        status="scheduled",
        google_calendar_event_id=google_calendar_event_id,
        recording_consent=recording_consent,
    )
    db.add(row)
    await db.commit()
    return row
