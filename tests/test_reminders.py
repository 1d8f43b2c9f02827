from __future__ import annotations

import pytest

from app.core.errors import PackNotFoundError, ValidationError
from app.workflows.reminders import ReminderHandlers


@pytest.mark.asyncio
async def test_onboarding_message(session_factory, seed, notifier) -> None:
    provisioned = await seed.provisioned_pack()
    handlers = ReminderHandlers(session_factory, notifier)

    sent = await handlers.onboarding_eligible(
        {
            "order_id": provisioned.order.id,
            "user_id": provisioned.pack.user_id,
            "pack_id": provisioned.pack.id,
            "provider": "stripe",
        }
    )

    assert sent is True
    [message] = notifier.sent
    assert message["type"] == "purchase_onboarding"
    assert message["user_id"] == provisioned.pack.user_id
    assert message["mentor_id"] == provisioned.mentor.id
    assert message["session_pack_id"] == provisioned.pack.id


@pytest.mark.asyncio
async def test_onboarding_requires_an_existing_pack(session_factory, notifier) -> None:
    handlers = ReminderHandlers(session_factory, notifier)
    with pytest.raises(PackNotFoundError):
        await handlers.onboarding_eligible({"order_id": "o1", "user_id": "u1", "pack_id": "missing"})
    with pytest.raises(ValidationError):
        await handlers.onboarding_eligible({"order_id": "o1", "user_id": "u1"})
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_reminder_after_third_session(session_factory, seed, notifier) -> None:
    provisioned = await seed.provisioned_pack(remaining_sessions=1)

    await ReminderHandlers(session_factory, notifier).renewal_reminder(
        {"user_id": provisioned.pack.user_id, "session_pack_id": provisioned.pack.id, "session_number": 3}
    )

    [message] = notifier.sent
    assert message["type"] == "renewal_reminder"
    assert message["message"] == "You have 1 session remaining. Renew now to continue your mentorship."
    assert message["session_number"] == 3


@pytest.mark.asyncio
async def test_final_reminder_carries_the_grace_deadline(session_factory, seed, notifier) -> None:
    provisioned = await seed.provisioned_pack(remaining_sessions=0, pack_status="depleted")
    deadline = "2026-03-05T12:00:00+00:00"

    await ReminderHandlers(session_factory, notifier).renewal_reminder(
        {
            "user_id": provisioned.pack.user_id,
            "session_pack_id": provisioned.pack.id,
            "session_number": 4,
            "grace_period_ends_at": deadline,
        }
    )

    [message] = notifier.sent
    assert message["type"] == "final_renewal_reminder"
    assert message["grace_period_ends_at"] == deadline
    assert message["message"].endswith(f"Grace period ends: {deadline}")


@pytest.mark.asyncio
async def test_other_session_numbers_send_nothing(session_factory, seed, notifier) -> None:
    provisioned = await seed.provisioned_pack()

    sent = await ReminderHandlers(session_factory, notifier).renewal_reminder(
        {"user_id": provisioned.pack.user_id, "session_pack_id": provisioned.pack.id, "session_number": 2}
    )

    assert sent is False
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_final_grace_warning(session_factory, seed, notifier) -> None:
    provisioned = await seed.provisioned_pack(remaining_sessions=0, pack_status="depleted", seat_status="grace")
    handlers = ReminderHandlers(session_factory, notifier)

    assert await handlers.final_grace_warning({"session_pack_id": provisioned.pack.id}) is True
    assert await handlers.final_grace_warning({"session_pack_id": "gone"}) is False

    [message] = notifier.sent
    assert message["type"] == "grace_period_final_warning"
    assert message["user_id"] == provisioned.pack.user_id
    assert "12 hours" in message["message"]
