"""Turn emitted facts into notification requests for the delivery channels."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import MentorNotFoundError, PackNotFoundError, ValidationError
from app.repositories.mentors import get_mentor
from app.repositories.packs import get_pack
from app.services.notifications import NotificationSink

logger = logging.getLogger(__name__)

PURCHASE_ONBOARDING = "purchase_onboarding"
RENEWAL_REMINDER = "renewal_reminder"
FINAL_RENEWAL_REMINDER = "final_renewal_reminder"
GRACE_PERIOD_FINAL_WARNING = "grace_period_final_warning"


def _require(payload: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if not payload.get(k)]
    if missing:
        raise ValidationError(f"fact payload missing {', '.join(missing)}", code="INVALID_FACT")


class ReminderHandlers:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], notifier: NotificationSink) -> None:
        self._session_factory = session_factory
        self._notifier = notifier

    async def onboarding_eligible(self, payload: dict[str, Any]) -> bool:
        _require(payload, "order_id", "user_id", "pack_id")
        async with self._session_factory() as db:
            pack = await get_pack(db, payload["pack_id"])
            if pack is None:
                raise PackNotFoundError(f"Session pack {payload['pack_id']} not found for order {payload['order_id']}")
            mentor = await get_mentor(db, pack.mentor_id)
            if mentor is None:
                raise MentorNotFoundError(f"Mentor {pack.mentor_id} not found for session pack {pack.id}")

        await self._notifier.send(
            {
                "type": PURCHASE_ONBOARDING,
                "user_id": payload["user_id"],
                "session_pack_id": pack.id,
                "mentor_id": mentor.id,
                "order_id": payload["order_id"],
                "provider": payload.get("provider"),
                "message": "Your mentorship is ready. Book your first session from the dashboard.",
            }
        )
        return True

    async def renewal_reminder(self, payload: dict[str, Any]) -> bool:
        _require(payload, "user_id", "session_pack_id", "session_number")
        async with self._session_factory() as db:
            pack = await get_pack(db, payload["session_pack_id"])
        if pack is None:
            raise PackNotFoundError(f"Session pack {payload['session_pack_id']} not found")

        session_number = int(payload["session_number"])
        if session_number == 3:
            message: dict[str, Any] = {
                "type": RENEWAL_REMINDER,
                "message": "You have 1 session remaining. Renew now to continue your mentorship.",
            }
        elif session_number == 4:
            grace_ends = payload.get("grace_period_ends_at")
            message = {
                "type": FINAL_RENEWAL_REMINDER,
                "message": (
                    "Your pack is complete. Renew within 72 hours to keep your seat. "
                    f"Grace period ends: {grace_ends}"
                ),
                "grace_period_ends_at": grace_ends,
            }
        else:
            logger.info("No renewal reminder for session %s of pack %s", session_number, pack.id)
            return False

        await self._notifier.send(
            {
                **message,
                "user_id": payload["user_id"],
                "session_pack_id": pack.id,
                "session_number": session_number,
            }
        )
        return True

    async def final_grace_warning(self, payload: dict[str, Any]) -> bool:
        _require(payload, "session_pack_id")
        async with self._session_factory() as db:
            pack = await get_pack(db, payload["session_pack_id"])
        if pack is None:
            logger.warning("Skipping final grace warning, pack %s is gone", payload["session_pack_id"])
            return False

        await self._notifier.send(
            {
                "type": GRACE_PERIOD_FINAL_WARNING,
                "user_id": pack.user_id,
                "session_pack_id": pack.id,
                "message": "Your seat will be released in 12 hours. Renew now to keep your mentorship active.",
                "grace_period_ends_at": payload.get("grace_period_ends_at"),
            }
        )
        return True
