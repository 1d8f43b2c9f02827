from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import PackNotFoundError, PaymentNotFoundError, ValidationError
from app.repositories.orders import get_order, update_order_status
from app.repositories.packs import get_pack_by_payment, set_pack_status
from app.repositories.payments import get_payment_by_provider_id, mark_payment_refunded
from app.repositories.seats import release_seat_by_pack
from app.services.payments import PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PaymentRefunded:
    provider: str
    provider_payment_id: str
    refund_id: str | None = None
    charge_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PaymentRefunded:
        if not payload.get("provider") or not payload.get("provider_payment_id"):
            raise ValidationError("payment refunded fact missing provider or provider_payment_id", code="INVALID_FACT")
        return cls(
            provider=str(payload["provider"]),
            provider_payment_id=str(payload["provider_payment_id"]),
            refund_id=str(payload["refund_id"]) if payload.get("refund_id") else None,
            charge_id=str(payload["charge_id"]) if payload.get("charge_id") else None,
        )


@dataclass(frozen=True, slots=True)
class RefundResult:
    payment_id: str
    session_pack_id: str | None
    refunded_amount_cents: int | None
    already_processed: bool = False


class RefundWorkflow:
    """Reverse the entitlement bought by a payment.

    Order of writes: seat, pack, payment, order. The order row is the
    short-circuit marker, so it is written last and a retry after a partial
    run redoes the idempotent steps before it.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], gateway: PaymentGateway) -> None:
        self._session_factory = session_factory
        self._gateway = gateway

    async def run(self, fact: PaymentRefunded) -> RefundResult:
        async with self._session_factory() as db:
            payment = await get_payment_by_provider_id(db, fact.provider, fact.provider_payment_id)
            if payment is None:
                # refund with no matching capture; needs manual attention
                raise PaymentNotFoundError(
                    f"No {fact.provider} payment {fact.provider_payment_id} for refund",
                    details={"refund_id": fact.refund_id, "charge_id": fact.charge_id},
                )

            order = await get_order(db, payment.order_id)
            if payment.status == "refunded" and (order is None or order.status == "refunded"):
                logger.info("Payment %s already refunded", payment.id)
                pack = await get_pack_by_payment(db, payment.id)
                return RefundResult(
                    payment_id=payment.id,
                    session_pack_id=pack.id if pack is not None else None,
                    refunded_amount_cents=payment.refunded_amount_cents,
                    already_processed=True,
                )

            pack = await get_pack_by_payment(db, payment.id)
            if pack is None:
                raise PackNotFoundError(f"No session pack for payment {payment.id}")

            if not await release_seat_by_pack(db, pack.id):
                logger.warning("Refunded pack %s has no seat reservation", pack.id)
            await set_pack_status(db, pack.id, "refunded", remaining_sessions=0)

            refunded = await self._gateway.get_refunded_amount(
                fact.provider,
                provider_payment_id=fact.provider_payment_id,
                refund_id=fact.refund_id,
                charge_id=fact.charge_id,
            )
            if refunded is None:
                refunded = payment.amount_cents
            await mark_payment_refunded(db, payment.id, refunded)

            if order is None:
                logger.warning("Payment %s references missing order %s", payment.id, payment.order_id)
            else:
                await update_order_status(db, order.id, "refunded")

            logger.info(
                "Refunded payment %s: pack %s revoked, %s cents returned",
                payment.id,
                pack.id,
                refunded,
            )
            return RefundResult(payment_id=payment.id, session_pack_id=pack.id, refunded_amount_cents=refunded)
