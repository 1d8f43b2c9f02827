from __future__ import annotations

import pytest

from app.core.errors import PaymentNotFoundError
from app.models.mentorship import Order, Payment, SeatReservation, SessionPack
from app.workflows.refund import PaymentRefunded, RefundWorkflow


async def _state(session_factory, provisioned):
    async with session_factory() as db:
        return (
            await db.get(Order, provisioned.order.id),
            await db.get(Payment, provisioned.payment.id),
            await db.get(SessionPack, provisioned.pack.id),
            await db.get(SeatReservation, provisioned.seat.id),
        )


@pytest.mark.asyncio
async def test_refund_revokes_the_entitlement(session_factory, seed, gateway) -> None:
    provisioned = await seed.provisioned_pack(remaining_sessions=3)
    gateway.refunds[provisioned.payment.provider_payment_id] = 40000
    fact = PaymentRefunded(provider="stripe", provider_payment_id=provisioned.payment.provider_payment_id, charge_id="ch_1")

    result = await RefundWorkflow(session_factory, gateway).run(fact)

    order, payment, pack, seat = await _state(session_factory, provisioned)
    assert result.session_pack_id == pack.id
    assert result.refunded_amount_cents == 40000
    assert seat.status == "released"
    assert (pack.status, pack.remaining_sessions) == ("refunded", 0)
    assert (payment.status, payment.refunded_amount_cents) == ("refunded", 40000)
    assert order.status == "refunded"


@pytest.mark.asyncio
async def test_refund_amount_falls_back_to_payment_amount(session_factory, seed, gateway) -> None:
    provisioned = await seed.provisioned_pack()
    fact = PaymentRefunded(provider="paypal", provider_payment_id=provisioned.payment.provider_payment_id)
    async with session_factory() as db:
        payment = await db.get(Payment, provisioned.payment.id)
        payment.provider = "paypal"
        await db.commit()

    result = await RefundWorkflow(session_factory, gateway).run(fact)

    assert result.refunded_amount_cents == 40000


@pytest.mark.asyncio
async def test_second_refund_delivery_is_a_no_op(session_factory, seed, gateway) -> None:
    provisioned = await seed.provisioned_pack()
    gateway.refunds[provisioned.payment.provider_payment_id] = 20000
    fact = PaymentRefunded(provider="stripe", provider_payment_id=provisioned.payment.provider_payment_id)
    workflow = RefundWorkflow(session_factory, gateway)

    await workflow.run(fact)
    gateway.refunds[provisioned.payment.provider_payment_id] = 99999
    again = await workflow.run(fact)

    assert again.already_processed is True
    assert again.refunded_amount_cents == 20000
    _, payment, _, _ = await _state(session_factory, provisioned)
    assert payment.refunded_amount_cents == 20000


@pytest.mark.asyncio
async def test_refund_without_capture_fails_permanently(session_factory, gateway) -> None:
    fact = PaymentRefunded(provider="stripe", provider_payment_id="pi_unknown", charge_id="ch_9")
    with pytest.raises(PaymentNotFoundError) as exc:
        await RefundWorkflow(session_factory, gateway).run(fact)
    assert exc.value.details == {"refund_id": None, "charge_id": "ch_9"}


@pytest.mark.asyncio
async def test_refund_of_depleted_pack_keeps_refunded_sticky(session_factory, seed, gateway) -> None:
    provisioned = await seed.provisioned_pack(remaining_sessions=0, pack_status="depleted", seat_status="grace")
    fact = PaymentRefunded(provider="stripe", provider_payment_id=provisioned.payment.provider_payment_id)

    await RefundWorkflow(session_factory, gateway).run(fact)

    _, _, pack, seat = await _state(session_factory, provisioned)
    assert pack.status == "refunded"
    assert seat.status == "released"
