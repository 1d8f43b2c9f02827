"""Payment completed -> order paid, payment, session pack, seat, onboarding fact.

Every step is safe to re-run: the worker delivers the fact at least once and
retries the whole job after a transient failure, so each write either checks
for an existing row first or relies on a unique key.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import (
    ORDER_REFUNDED,
    ConflictError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from app.models.common import utcnow
from app.models.mentorship import Order
from app.repositories.orders import get_order, mark_order_paid
from app.repositories.packs import get_or_create_pack, get_pack_by_payment
from app.repositories.payments import get_or_create_payment, get_payment_for_order
from app.repositories.seats import get_or_create_seat, get_seat_by_pack
from app.services.catalog import ProductCatalog
from app.services.facts import ONBOARDING_ELIGIBLE, FactSink
from app.services.payments import PaymentGateway

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PaymentCompleted:
    provider: str
    checkout_id: str
    order_id: str
    product_id: str
    user_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PaymentCompleted:
        missing = [k for k in ("provider", "checkout_id", "order_id", "product_id") if not payload.get(k)]
        if missing:
            raise ValidationError(f"payment completed fact missing {', '.join(missing)}", code="INVALID_FACT")
        return cls(
            provider=str(payload["provider"]),
            checkout_id=str(payload["checkout_id"]),
            order_id=str(payload["order_id"]),
            product_id=str(payload["product_id"]),
            user_id=str(payload["user_id"]) if payload.get("user_id") else None,
        )


@dataclass(frozen=True, slots=True)
class ProvisioningResult:
    order_id: str
    already_processed: bool = False
    payment_id: str | None = None
    session_pack_id: str | None = None
    seat_id: str | None = None


class ProvisioningWorkflow:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        catalog: ProductCatalog,
        facts: FactSink,
        *,
        order_fetch_attempts: int = 3,
        order_fetch_backoff_seconds: float = 0.2,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway
        self._catalog = catalog
        self._facts = facts
        self._order_fetch_attempts = max(order_fetch_attempts, 1)
        self._order_fetch_backoff_seconds = order_fetch_backoff_seconds
        self._clock = clock

    async def _fetch_order(self, db: AsyncSession, order_id: str) -> Order:
        # The webhook can outrun the checkout transaction that inserts the order.
        for attempt in range(self._order_fetch_attempts):
            order = await get_order(db, order_id)
            if order is not None:
                return order
            if attempt + 1 < self._order_fetch_attempts:
                await asyncio.sleep(self._order_fetch_backoff_seconds * (attempt + 1))
        raise OrderNotFoundError(f"Order {order_id} not found after {self._order_fetch_attempts} attempts")

    async def _is_fully_provisioned(self, db: AsyncSession, order_id: str) -> bool:
        payment = await get_payment_for_order(db, order_id)
        if payment is None:
            return False
        pack = await get_pack_by_payment(db, payment.id)
        if pack is None:
            return False
        return await get_seat_by_pack(db, pack.id) is not None

    async def run(self, fact: PaymentCompleted) -> ProvisioningResult:
        async with self._session_factory() as db:
            order = await self._fetch_order(db, fact.order_id)
            # Later get-or-create steps may roll back, which expires loaded rows.
            order_id, user_id = order.id, order.user_id
            order_total, order_status = order.total_amount_cents, order.status

            # refunded orders stay refunded, whatever the provider redelivers
            existing_payment = await get_payment_for_order(db, order_id)
            if order_status == "refunded" or (existing_payment is not None and existing_payment.status == "refunded"):
                raise ConflictError(
                    f"Order {order_id} was refunded",
                    code=ORDER_REFUNDED,
                    details={"order_id": order_id},
                )

            if order_status == "paid":
                if await self._is_fully_provisioned(db, order_id):
                    logger.info("Order %s already provisioned", order_id)
                    return ProvisioningResult(order_id=order_id, already_processed=True)
                logger.warning("Order %s is paid but entitlement is incomplete, resuming", order_id)

            if fact.user_id and fact.user_id != user_id:
                logger.warning(
                    "Payment fact for order %s names user %s, order belongs to %s",
                    order_id,
                    fact.user_id,
                    user_id,
                )

            details = await self._gateway.get_checkout_details(fact.provider, fact.checkout_id)

            await mark_order_paid(
                db,
                order_id,
                total_amount_cents=details.amount_total_cents,
                original_amount_cents=(
                    details.amount_subtotal_cents if details.amount_subtotal_cents is not None else order_total
                ),
                discount_amount_cents=details.discount_amount_cents,
                discount_code=details.discount_code,
            )

            payment, payment_created = await get_or_create_payment(
                db,
                order_id=order_id,
                provider=fact.provider,
                provider_payment_id=details.provider_payment_id,
                amount_cents=details.amount_total_cents,
                currency=details.currency,
            )
            payment_id = payment.id

            product = await self._catalog.get_product(db, fact.product_id)
            if product is None:
                raise ProductNotFoundError(f"Product not found: {fact.product_id}")

            pack, pack_created = await get_or_create_pack(
                db,
                payment_id=payment_id,
                user_id=user_id,
                mentor_id=product.mentor_id,
                total_sessions=product.sessions_per_pack,
                expires_at=self._clock() + timedelta(days=product.validity_days),
            )
            pack_id, pack_expires_at, mentor_id = pack.id, pack.expires_at, pack.mentor_id

            seat, seat_created = await get_or_create_seat(
                db,
                pack_id=pack_id,
                mentor_id=mentor_id,
                user_id=user_id,
                seat_expires_at=pack_expires_at,
            )
            seat_id = seat.id

            logger.info(
                "Provisioned order %s: payment %s%s, pack %s%s, seat %s%s",
                order_id,
                payment_id,
                "" if payment_created else " (existing)",
                pack_id,
                "" if pack_created else " (existing)",
                seat_id,
                "" if seat_created else " (existing)",
            )

        await self._facts.emit(
            ONBOARDING_ELIGIBLE,
            {
                "order_id": order_id,
                "user_id": user_id,
                "pack_id": pack_id,
                "product_id": product.product_id,
                "provider": fact.provider,
            },
            dedupe_key=f"{ONBOARDING_ELIGIBLE}:{order_id}",
        )

        return ProvisioningResult(
            order_id=order_id,
            payment_id=payment_id,
            session_pack_id=pack_id,
            seat_id=seat_id,
        )
