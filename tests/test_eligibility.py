from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models.mentorship import SeatReservation, SessionPack
from app.services.eligibility import Eligible, Ineligible, evaluate_eligibility, validate_booking_eligibility

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _pack(**overrides) -> SessionPack:
    values = {
        "id": "pack-1",
        "user_id": "student-1",
        "mentor_id": "mentor-1",
        "payment_id": "payment-1",
        "total_sessions": 4,
        "remaining_sessions": 2,
        "purchased_at": NOW - timedelta(days=5),
        "expires_at": NOW + timedelta(days=25),
        "status": "active",
    }
    values.update(overrides)
    return SessionPack(**values)


def _seat(status: str = "active") -> SeatReservation:
    return SeatReservation(
        id="seat-1",
        mentor_id="mentor-1",
        user_id="student-1",
        session_pack_id="pack-1",
        seat_expires_at=NOW + timedelta(days=25),
        status=status,
    )


def _code(result) -> str | None:
    return result.code if isinstance(result, Ineligible) else None


def test_active_pack_with_active_seat_is_eligible() -> None:
    result = evaluate_eligibility(_pack(), _seat(), user_id="student-1", now=NOW, scheduled_at=NOW + timedelta(days=1))
    assert isinstance(result, Eligible)
    assert result.valid is True


def test_missing_pack_and_foreign_pack_look_the_same() -> None:
    assert _code(evaluate_eligibility(None, None, user_id="student-1", now=NOW)) == "PACK_NOT_FOUND"
    assert _code(evaluate_eligibility(_pack(), _seat(), user_id="someone-else", now=NOW)) == "PACK_NOT_FOUND"


def test_expiry_is_read_from_the_clock_before_status() -> None:
    # status still says active because the sweeper has not run yet
    pack = _pack(expires_at=NOW - timedelta(minutes=1))
    assert _code(evaluate_eligibility(pack, _seat(), user_id="student-1", now=NOW)) == "PACK_EXPIRED"


def test_booking_after_pack_expiry_is_rejected() -> None:
    pack = _pack(expires_at=NOW + timedelta(days=1))
    result = evaluate_eligibility(pack, _seat(), user_id="student-1", now=NOW, scheduled_at=NOW + timedelta(days=2))
    assert _code(result) == "SCHEDULED_AFTER_EXPIRATION"


@pytest.mark.parametrize("status", ["depleted", "expired", "refunded"])
def test_inactive_pack_status(status: str) -> None:
    result = evaluate_eligibility(_pack(status=status), _seat(), user_id="student-1", now=NOW)
    assert _code(result) == "PACK_NOT_ACTIVE"
    assert status in result.reason


def test_no_remaining_sessions() -> None:
    result = evaluate_eligibility(_pack(remaining_sessions=0), _seat(), user_id="student-1", now=NOW)
    assert _code(result) == "NO_REMAINING_SESSIONS"


@pytest.mark.parametrize("seat", [None, _seat("grace"), _seat("released")])
def test_seat_must_be_active(seat) -> None:
    assert _code(evaluate_eligibility(_pack(), seat, user_id="student-1", now=NOW)) == "SEAT_NOT_ACTIVE"


def test_checks_run_in_fixed_order() -> None:
    # expired, inactive, empty and seatless all at once: expiry wins
    pack = _pack(expires_at=NOW - timedelta(days=1), status="depleted", remaining_sessions=0)
    assert _code(evaluate_eligibility(pack, None, user_id="student-1", now=NOW)) == "PACK_EXPIRED"

    pack = _pack(status="refunded", remaining_sessions=0)
    assert _code(evaluate_eligibility(pack, _seat("released"), user_id="student-1", now=NOW)) == "PACK_NOT_ACTIVE"


@pytest.mark.asyncio
async def test_validate_booking_eligibility_reads_pack_and_seat(db, seed) -> None:
    provisioned = await seed.provisioned_pack(user_id="student-db")

    ok = await validate_booking_eligibility(db, provisioned.pack.id, "student-db")
    assert isinstance(ok, Eligible)

    other = await validate_booking_eligibility(db, provisioned.pack.id, "intruder")
    assert _code(other) == "PACK_NOT_FOUND"


@pytest.mark.asyncio
async def test_validate_booking_eligibility_sees_grace_seat(db, seed) -> None:
    provisioned = await seed.provisioned_pack(seat_status="grace")
    result = await validate_booking_eligibility(db, provisioned.pack.id, provisioned.pack.user_id)
    assert _code(result) == "SEAT_NOT_ACTIVE"
