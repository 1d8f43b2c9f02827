from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import InvariantViolation, PackNotFoundError, SessionNotFoundError, ValidationError
from app.models.common import utcnow
from app.repositories.packs import debit_pack_for_session, set_pack_status
from app.repositories.seats import start_seat_grace
from app.repositories.sessions import count_completed_sessions, get_session
from app.services.facts import RENEWAL_REMINDER, FactSink

logger = logging.getLogger(__name__)

# Reminder points of the four-session pack. Not derived from total_sessions.
REMINDER_AFTER_SESSIONS = (3, 4)
GRACE_PERIOD = timedelta(hours=72)


@dataclass(frozen=True, slots=True)
class SessionCompleted:
    session_id: str
    session_pack_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SessionCompleted:
        if not payload.get("session_id"):
            raise ValidationError("session completed fact missing session_id", code="INVALID_FACT")
        pack_id = payload.get("session_pack_id")
        return cls(session_id=str(payload["session_id"]), session_pack_id=str(pack_id) if pack_id else None)


@dataclass(frozen=True, slots=True)
class CompletionResult:
    session_id: str
    session_pack_id: str
    remaining_sessions: int
    pack_status: str
    completed_sessions: int
    debited: bool
    grace_period_ends_at: datetime | None = None
    reminder_session_number: int | None = None


class SessionCompletionWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        facts: FactSink,
        *,
        grace_period: timedelta = GRACE_PERIOD,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._facts = facts
        self._grace_period = grace_period
        self._clock = clock

    async def run(self, fact: SessionCompleted) -> CompletionResult:
        async with self._session_factory() as db:
            session = await get_session(db, fact.session_id)
            if session is None:
                raise SessionNotFoundError(f"Session {fact.session_id} not found")
            # Stale or duplicated completion events must not touch the balance.
            if session.status != "completed":
                raise InvariantViolation(
                    f"Session {session.id} is {session.status}, expected completed",
                    details={"session_id": session.id, "status": session.status},
                )
            if fact.session_pack_id and fact.session_pack_id != session.session_pack_id:
                raise InvariantViolation(
                    f"Session {session.id} belongs to pack {session.session_pack_id}, not {fact.session_pack_id}",
                )

            # read before the debit: a rollback there expires loaded rows
            session_id, pack_id, student_id = session.id, session.session_pack_id, session.student_id
            balance, debited = await debit_pack_for_session(db, session_id=session_id, pack_id=pack_id)
            if balance is None:
                raise PackNotFoundError(f"Session pack {pack_id} not found")
            if not debited:
                logger.info("Session %s was already charged to pack %s", session_id, pack_id)

            completed = await count_completed_sessions(db, pack_id)
            pack_status = balance.status

            grace_ends_at: datetime | None = None
            if balance.remaining_sessions == 0:
                seat = await start_seat_grace(db, pack_id, self._clock() + self._grace_period)
                if seat is None:
                    logger.warning("Depleted pack %s has no seat reservation", pack_id)
                elif seat.status == "grace":
                    grace_ends_at = seat.grace_period_ends_at
                if pack_status == "active":
                    await set_pack_status(db, pack_id, "depleted")
                    pack_status = "depleted"

            reminder: int | None = None
            if completed in REMINDER_AFTER_SESSIONS:
                reminder = completed
                payload: dict[str, Any] = {
                    "user_id": student_id,
                    "session_pack_id": pack_id,
                    "session_number": completed,
                }
                if completed == REMINDER_AFTER_SESSIONS[-1]:
                    deadline = grace_ends_at or self._clock() + self._grace_period
                    payload["grace_period_ends_at"] = deadline.isoformat()
                await self._facts.emit(
                    RENEWAL_REMINDER,
                    payload,
                    dedupe_key=f"{RENEWAL_REMINDER}:{pack_id}:{completed}",
                )

            logger.info(
                "Completed session %s: pack %s has %s remaining (%s), %s completed",
                session_id,
                pack_id,
                balance.remaining_sessions,
                pack_status,
                completed,
            )
            return CompletionResult(
                session_id=session_id,
                session_pack_id=pack_id,
                remaining_sessions=balance.remaining_sessions,
                pack_status=pack_status,
                completed_sessions=completed,
                debited=debited,
                grace_period_ends_at=grace_ends_at,
                reminder_session_number=reminder,
            )
