from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Protocol

import httpx
import stripe

from app.core.errors import TransientError


class PaymentProviderError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class CheckoutDetails:
    """Authoritative amounts for a completed checkout, as the gateway reports them."""

    provider_payment_id: str
    amount_total_cents: int
    currency: str
    amount_subtotal_cents: int | None = None
    discount_amount_cents: int | None = None
    discount_code: str | None = None


class PaymentGateway(Protocol):
    async def get_checkout_details(self, provider: str, checkout_id: str) -> CheckoutDetails: ...

    async def get_refunded_amount(
        self,
        provider: str,
        *,
        provider_payment_id: str,
        refund_id: str | None = None,
        charge_id: str | None = None,
    ) -> int | None: ...


def _cents_from_value(value: Any) -> int | None:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _paypal_base_url(env: str) -> str:
    return "https://api-m.paypal.com" if env == "live" else "https://api-m.sandbox.paypal.com"


def _paypal_basic_auth(client_id: str, client_secret: str) -> str:
    raw = f"{client_id}:{client_secret}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def _stripe_discount_code(payload: dict[str, Any]) -> str | None:
    breakdown = (payload.get("total_details") or {}).get("breakdown") or {}
    discounts = breakdown.get("discounts") or []
    if not isinstance(discounts, list) or not discounts:
        return None
    discount = (discounts[0] or {}).get("discount") or {}
    promotion = discount.get("promotion_code")
    if isinstance(promotion, dict):
        return str(promotion.get("code") or promotion.get("id") or "") or None
    if isinstance(promotion, str) and promotion:
        return promotion
    coupon = discount.get("coupon")
    if isinstance(coupon, dict):
        return str(coupon.get("id") or coupon.get("name") or "") or None
    return None


def _paypal_completed_capture(payload: dict[str, Any]) -> dict[str, Any] | None:
    purchase_units = payload.get("purchase_units") or []
    for unit in purchase_units if isinstance(purchase_units, list) else []:
        if not isinstance(unit, dict):
            continue
        payments = unit.get("payments") or {}
        captures = payments.get("captures") if isinstance(payments, dict) else None
        if not isinstance(captures, list):
            continue
        for capture in captures:
            if isinstance(capture, dict) and str(capture.get("status") or "") == "COMPLETED":
                return capture
    return None


class HttpPaymentGateway:
    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        stripe_secret_key: str,
        paypal_client_id: str,
        paypal_client_secret: str,
        paypal_env: str = "sandbox",
    ) -> None:
        self._http = http
        self._stripe_secret_key = stripe_secret_key
        self._paypal_client_id = paypal_client_id
        self._paypal_client_secret = paypal_client_secret
        self._paypal_env = paypal_env

    async def _send(self, method: str, url: str, *, label: str, **kwargs: Any) -> dict[str, Any]:
        try:
            res = await self._http.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise TransientError(f"{label} unreachable: {exc}") from exc
        if res.status_code >= 500 or res.status_code == 429:
            raise TransientError(f"{label} error ({res.status_code})")
        if not res.is_success:
            raise PaymentProviderError(f"{label} error ({res.status_code}): {res.text}")
        return res.json()

    # Stripe

    async def _stripe_call(self, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        if not self._stripe_secret_key:
            raise PaymentProviderError("STRIPE_SECRET_KEY missing")
        try:
            # the SDK is blocking; keep it off the event loop
            return await asyncio.to_thread(fn, *args, api_key=self._stripe_secret_key, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError) as exc:
            raise TransientError(f"{label} unavailable: {exc}") from exc
        except stripe.StripeError as exc:
            status = getattr(exc, "http_status", None)
            if status is not None and status >= 500:
                raise TransientError(f"{label} error ({status})") from exc
            raise PaymentProviderError(f"{label} error ({status}): {exc}") from exc

    async def _stripe_checkout_details(self, session_id: str) -> CheckoutDetails:
        if not session_id:
            raise PaymentProviderError("Stripe session id missing")
        payload = await self._stripe_call(
            "Stripe checkout fetch",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["total_details.breakdown.discounts"],
        )
        payment_intent = payload.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        if not payment_intent:
            raise PaymentProviderError(f"Stripe session {session_id} has no payment_intent")
        discount = (payload.get("total_details") or {}).get("amount_discount")
        subtotal = payload.get("amount_subtotal")
        return CheckoutDetails(
            provider_payment_id=str(payment_intent),
            amount_total_cents=int(payload.get("amount_total") or 0),
            currency=str(payload.get("currency") or "usd"),
            amount_subtotal_cents=int(subtotal) if isinstance(subtotal, int) else None,
            discount_amount_cents=int(discount) if discount else None,
            discount_code=_stripe_discount_code(payload),
        )

    async def _stripe_refunded_amount(self, charge_id: str | None) -> int | None:
        if not charge_id:
            return None
        charge = await self._stripe_call("Stripe charge fetch", stripe.Charge.retrieve, charge_id)
        return int(charge.get("amount_refunded") or 0)

    # PayPal

    async def _paypal_access_token(self) -> str:
        if not self._paypal_client_id or not self._paypal_client_secret:
            raise PaymentProviderError("PayPal credentials are missing")
        payload = await self._send(
            "POST",
            f"{_paypal_base_url(self._paypal_env)}/v1/oauth2/token",
            label="PayPal oauth",
            data={"grant_type": "client_credentials"},
            headers={
                "Authorization": f"Basic {_paypal_basic_auth(self._paypal_client_id, self._paypal_client_secret)}",
                "Content-Type": "application/x-www-form-urlencoded",
            },
        )
        token = str(payload.get("access_token") or "")
        if not token:
            raise PaymentProviderError("PayPal oauth did not return an access_token")
        return token

    async def _paypal_get(self, path: str, *, label: str) -> dict[str, Any]:
        token = await self._paypal_access_token()
        return await self._send(
            "GET",
            f"{_paypal_base_url(self._paypal_env)}{path}",
            label=label,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
        )

    async def _paypal_checkout_details(self, order_id: str) -> CheckoutDetails:
        if not order_id:
            raise PaymentProviderError("PayPal order id missing")
        payload = await self._paypal_get(f"/v2/checkout/orders/{order_id}", label="PayPal order fetch")
        capture = _paypal_completed_capture(payload)
        if capture is None:
            raise PaymentProviderError(f"PayPal order {order_id} has no completed capture")
        amount = capture.get("amount") or {}
        total = _cents_from_value(amount.get("value"))
        if total is None:
            raise PaymentProviderError(f"PayPal capture {capture.get('id')} has no amount")
        return CheckoutDetails(
            provider_payment_id=str(capture.get("id") or ""),
            amount_total_cents=total,
            currency=str(amount.get("currency_code") or "USD").lower(),
        )

    async def _paypal_refunded_amount(self, refund_id: str | None) -> int | None:
        if not refund_id:
            return None
        payload = await self._paypal_get(f"/v2/payments/refunds/{refund_id}", label="PayPal refund fetch")
        return _cents_from_value((payload.get("amount") or {}).get("value"))

    async def verify_paypal_webhook(self, *, webhook_id: str, headers: dict[str, str], event: dict[str, Any]) -> bool:
        if not webhook_id:
            raise PaymentProviderError("PAYPAL_WEBHOOK_ID missing")
        token = await self._paypal_access_token()
        payload = await self._send(
            "POST",
            f"{_paypal_base_url(self._paypal_env)}/v1/notifications/verify-webhook-signature",
            label="PayPal webhook verification",
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            json={
                "auth_algo": headers.get("paypal-auth-algo", ""),
                "cert_url": headers.get("paypal-cert-url", ""),
                "transmission_id": headers.get("paypal-transmission-id", ""),
                "transmission_sig": headers.get("paypal-transmission-sig", ""),
                "transmission_time": headers.get("paypal-transmission-time", ""),
                "webhook_id": webhook_id,
                "webhook_event": event,
            },
        )
        return str(payload.get("verification_status") or "") == "SUCCESS"

    # PaymentGateway

    async def get_checkout_details(self, provider: str, checkout_id: str) -> CheckoutDetails:
        if provider == "stripe":
            return await self._stripe_checkout_details(checkout_id)
        if provider == "paypal":
            return await self._paypal_checkout_details(checkout_id)
        raise PaymentProviderError(f"Unsupported payment provider {provider!r}")

    async def get_refunded_amount(
        self,
        provider: str,
        *,
        provider_payment_id: str,
        refund_id: str | None = None,
        charge_id: str | None = None,
    ) -> int | None:
        if provider == "stripe":
            return await self._stripe_refunded_amount(charge_id)
        if provider == "paypal":
            return await self._paypal_refunded_amount(refund_id)
        raise PaymentProviderError(f"Unsupported payment provider {provider!r}")
