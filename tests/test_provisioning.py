from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.core.errors import ORDER_REFUNDED, ConflictError, OrderNotFoundError, ProductNotFoundError, ValidationError
from app.models.mentorship import Order, Payment, SeatReservation, SessionPack
from app.services.catalog import DatabaseProductCatalog
from app.services.facts import ONBOARDING_ELIGIBLE
from app.services.payments import CheckoutDetails
from app.workflows.provisioning import PaymentCompleted, ProvisioningWorkflow
from app.workflows.refund import PaymentRefunded, RefundWorkflow


def _workflow(session_factory, gateway, facts, clock, **kwargs) -> ProvisioningWorkflow:
    return ProvisioningWorkflow(
        session_factory,
        gateway,
        DatabaseProductCatalog(),
        facts,
        order_fetch_backoff_seconds=0,
        clock=clock,
        **kwargs,
    )


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return int((await db.execute(select(func.count()).select_from(model))).scalar_one())


@pytest.fixture
def checkout(gateway) -> CheckoutDetails:
    details = CheckoutDetails(
        provider_payment_id="pi_123",
        amount_total_cents=36000,
        currency="usd",
        amount_subtotal_cents=40000,
        discount_amount_cents=4000,
        discount_code="SPRING10",
    )
    gateway.checkouts["cs_123"] = details
    return details


@pytest.mark.asyncio
async def test_provisioning_creates_payment_pack_and_seat(session_factory, seed, gateway, facts, clock, checkout) -> None:
    mentor = await seed.mentor()
    product = await seed.product(mentor, sessions_per_pack=4, validity_days=30)
    order = await seed.order(product)
    fact = PaymentCompleted(provider="stripe", checkout_id="cs_123", order_id=order.id, product_id=product.id)

    result = await _workflow(session_factory, gateway, facts, clock).run(fact)

    assert result.already_processed is False
    async with session_factory() as db:
        paid = await db.get(Order, order.id)
        payment = await db.get(Payment, result.payment_id)
        pack = await db.get(SessionPack, result.session_pack_id)
        seat = await db.get(SeatReservation, result.seat_id)

    assert paid.status == "paid"
    assert paid.total_amount_cents == 36000
    assert paid.original_amount_cents == 40000
    assert paid.discount_code == "SPRING10"
    assert payment.provider_payment_id == "pi_123"
    assert payment.status == "completed"
    assert pack.user_id == order.user_id
    assert pack.mentor_id == mentor.id
    assert (pack.total_sessions, pack.remaining_sessions, pack.status) == (4, 4, "active")
    assert pack.expires_at == clock.now + timedelta(days=30)
    assert seat.status == "active"
    assert seat.seat_expires_at == pack.expires_at

    [onboarding] = facts.named(ONBOARDING_ELIGIBLE)
    assert onboarding.payload == {
        "order_id": order.id,
        "user_id": order.user_id,
        "pack_id": pack.id,
        "product_id": product.id,
        "provider": "stripe",
    }
    assert onboarding.dedupe_key == f"onboarding_eligible:{order.id}"


@pytest.mark.asyncio
async def test_provisioning_twice_is_idempotent(session_factory, seed, gateway, facts, clock, checkout) -> None:
    mentor = await seed.mentor()
    product = await seed.product(mentor)
    order = await seed.order(product)
    fact = PaymentCompleted(provider="stripe", checkout_id="cs_123", order_id=order.id, product_id=product.id)
    workflow = _workflow(session_factory, gateway, facts, clock)

    first = await workflow.run(fact)
    second = await workflow.run(fact)

    assert second.already_processed is True
    assert second.order_id == first.order_id
    assert await _count(session_factory, Payment) == 1
    assert await _count(session_factory, SessionPack) == 1
    assert await _count(session_factory, SeatReservation) == 1
    assert len(gateway.checkout_calls) == 1


@pytest.mark.asyncio
async def test_paid_order_with_partial_entitlement_is_resumed(
    session_factory, seed, gateway, facts, clock, checkout
) -> None:
    mentor = await seed.mentor()
    product = await seed.product(mentor)
    order = await seed.order(product)
    # a previous run marked the order paid and stopped before the payment row
    async with session_factory() as db:
        row = await db.get(Order, order.id)
        row.status = "paid"
        await db.commit()

    fact = PaymentCompleted(provider="stripe", checkout_id="cs_123", order_id=order.id, product_id=product.id)
    result = await _workflow(session_factory, gateway, facts, clock).run(fact)

    assert result.already_processed is False
    assert await _count(session_factory, Payment) == 1
    assert await _count(session_factory, SessionPack) == 1
    assert await _count(session_factory, SeatReservation) == 1


@pytest.mark.asyncio
async def test_missing_order_fails_after_bounded_retries(session_factory, gateway, facts, clock) -> None:
    fact = PaymentCompleted(provider="stripe", checkout_id="cs_123", order_id="nope", product_id="p")
    with pytest.raises(OrderNotFoundError):
        await _workflow(session_factory, gateway, facts, clock, order_fetch_attempts=3).run(fact)
    assert gateway.checkout_calls == []
    assert facts.emitted == []


@pytest.mark.asyncio
async def test_unknown_product_stops_before_pack(session_factory, seed, gateway, facts, clock, checkout) -> None:
    order = await seed.order()
    fact = PaymentCompleted(provider="stripe", checkout_id="cs_123", order_id=order.id, product_id="gone")

    with pytest.raises(ProductNotFoundError):
        await _workflow(session_factory, gateway, facts, clock).run(fact)

    assert await _count(session_factory, Payment) == 1
    assert await _count(session_factory, SessionPack) == 0
    assert facts.emitted == []


def test_payment_completed_from_payload() -> None:
    fact = PaymentCompleted.from_payload(
        {"provider": "paypal", "checkout_id": "O-1", "order_id": "o1", "product_id": "p1", "user_id": None}
    )
    assert fact == PaymentCompleted(provider="paypal", checkout_id="O-1", order_id="o1", product_id="p1")

    with pytest.raises(ValidationError):
        PaymentCompleted.from_payload({"provider": "stripe", "order_id": "o1"})


@pytest.mark.asyncio
async def test_payment_redelivered_after_refund_is_refused(
    session_factory, seed, gateway, facts, clock, checkout
) -> None:
    mentor = await seed.mentor()
    product = await seed.product(mentor)
    order = await seed.order(product)
    fact = PaymentCompleted(provider="stripe", checkout_id="cs_123", order_id=order.id, product_id=product.id)
    workflow = _workflow(session_factory, gateway, facts, clock)

    provisioned = await workflow.run(fact)
    await RefundWorkflow(session_factory, gateway).run(
        PaymentRefunded(provider="stripe", provider_payment_id=checkout.provider_payment_id)
    )
    with pytest.raises(ConflictError) as exc:
        await workflow.run(fact)

    assert exc.value.code == ORDER_REFUNDED
    async with session_factory() as db:
        assert (await db.get(Order, order.id)).status == "refunded"
        assert (await db.get(SessionPack, provisioned.session_pack_id)).status == "refunded"
        assert (await db.get(SeatReservation, provisioned.seat_id)).status == "released"
    assert len(facts.named(ONBOARDING_ELIGIBLE)) == 1
    assert len(gateway.checkout_calls) == 1
