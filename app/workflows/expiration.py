"""Hourly seat housekeeping.

Works on sets rather than rows under lock. Two overlapping runs are harmless:
expiring an expired pack or releasing a released seat changes nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.common import utcnow
from app.repositories.packs import expire_lapsed_packs, list_lapsed_packs
from app.repositories.seats import list_elapsed_grace_seats, list_grace_seats_ending_between, release_seat_by_pack
from app.repositories.sessions import has_scheduled_session
from app.services.facts import FINAL_GRACE_WARNING, FactSink

logger = logging.getLogger(__name__)

FINAL_WARNING_WINDOW = timedelta(hours=12)


@dataclass(frozen=True, slots=True)
class SweepReport:
    expired_packs: int
    released_lapsed: int
    kept_for_scheduled: int
    released_grace: int

    @property
    def released(self) -> int:
        return self.released_lapsed + self.released_grace


@dataclass(frozen=True, slots=True)
class FinalWarningReport:
    warned: int
    seat_ids: tuple[str, ...] = ()


class ExpirationSweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        facts: FactSink,
        *,
        final_warning_window: timedelta = FINAL_WARNING_WINDOW,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._facts = facts
        self._final_warning_window = final_warning_window
        self._clock = clock

    async def sweep(self) -> SweepReport:
        now = self._clock()
        async with self._session_factory() as db:
            expired = await expire_lapsed_packs(db, now)

            released_lapsed = 0
            kept = 0
            lapsed_ids = [pack.id for pack in await list_lapsed_packs(db, now)]
            for pack_id in lapsed_ids:
                # in-flight sessions finish on the seat they were booked with
                if await has_scheduled_session(db, pack_id):
                    kept += 1
                    continue
                await release_seat_by_pack(db, pack_id)
                released_lapsed += 1

            grace_pack_ids = [seat.session_pack_id for seat in await list_elapsed_grace_seats(db, now)]
            for pack_id in grace_pack_ids:
                await release_seat_by_pack(db, pack_id)

        report = SweepReport(
            expired_packs=expired,
            released_lapsed=released_lapsed,
            kept_for_scheduled=kept,
            released_grace=len(grace_pack_ids),
        )
        logger.info(
            "Expiration sweep: %s packs expired, %s lapsed seats released (%s kept for scheduled sessions), "
            "%s grace seats released",
            report.expired_packs,
            report.released_lapsed,
            report.kept_for_scheduled,
            report.released_grace,
        )
        return report

    async def send_final_warnings(self) -> FinalWarningReport:
        now = self._clock()
        async with self._session_factory() as db:
            seats = await list_grace_seats_ending_between(db, now, now + self._final_warning_window)

        # One warning per seat per hourly run; a later run inside the window warns again.
        bucket = now.strftime("%Y%m%d%H")
        for seat in seats:
            await self._facts.emit(
                FINAL_GRACE_WARNING,
                {
                    "user_id": seat.user_id,
                    "session_pack_id": seat.session_pack_id,
                    "seat_id": seat.id,
                    "grace_period_ends_at": seat.grace_period_ends_at.isoformat(),
                },
                dedupe_key=f"{FINAL_GRACE_WARNING}:{seat.id}:{bucket}",
            )

        logger.info("Final grace warnings sent for %s seats", len(seats))
        return FinalWarningReport(warned=len(seats), seat_ids=tuple(seat.id for seat in seats))
