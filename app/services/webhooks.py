"""Map verified provider webhook events onto worker jobs.

Only the fields the workflows need are carried over; amounts are fetched
again from the gateway by the workflow itself.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from app.core.errors import ValidationError

PAYMENT_COMPLETED_JOB = "payment_completed_job"
PAYMENT_REFUNDED_JOB = "payment_refunded_job"

_PAYPAL_ORDER_HREF = re.compile(r"/orders/([^/?]+)")
_PAYPAL_CAPTURE_HREF = re.compile(r"/captures/([^/?]+)")


@dataclass(frozen=True, slots=True)
class WebhookJob:
    function: str
    payload: dict[str, Any]
    job_id: str


def _obj(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _up_link(resource: dict[str, Any], pattern: re.Pattern[str]) -> str | None:
    for link in resource.get("links") or []:
        if not isinstance(link, dict) or link.get("rel") != "up":
            continue
        match = pattern.search(str(link.get("href") or ""))
        if match:
            return match.group(1)
    return None


def stripe_event_to_job(event: dict[str, Any]) -> WebhookJob | None:
    event_type = str(event.get("type") or "")
    event_id = str(event.get("id") or "")
    obj = _obj(_obj(event.get("data")).get("object"))

    if event_type == "checkout.session.completed":
        metadata = _obj(obj.get("metadata"))
        order_id = metadata.get("order_id")
        user_id = metadata.get("user_id")
        product_id = metadata.get("pack_id") or metadata.get("product_id")
        if not order_id or not user_id or not product_id:
            raise ValidationError("Missing required metadata in checkout session", code="INVALID_WEBHOOK")
        return WebhookJob(
            function=PAYMENT_COMPLETED_JOB,
            payload={
                "provider": "stripe",
                "checkout_id": str(obj.get("id") or ""),
                "order_id": str(order_id),
                "user_id": str(user_id),
                "product_id": str(product_id),
            },
            job_id=f"stripe:{event_id}",
        )

    if event_type == "charge.refunded":
        payment_intent = obj.get("payment_intent")
        if isinstance(payment_intent, dict):
            payment_intent = payment_intent.get("id")
        if not payment_intent:
            raise ValidationError("Missing payment_intent in charge refund event", code="INVALID_WEBHOOK")
        return WebhookJob(
            function=PAYMENT_REFUNDED_JOB,
            payload={
                "provider": "stripe",
                "provider_payment_id": str(payment_intent),
                "charge_id": str(obj.get("id") or "") or None,
            },
            job_id=f"stripe:{event_id}",
        )

    return None


def _paypal_custom_id(resource: dict[str, Any]) -> tuple[str | None, str | None]:
    raw = resource.get("custom_id")
    if not isinstance(raw, str) or not raw:
        return None, None
    try:
        decoded = json.loads(raw)
    except ValueError:
        # legacy checkouts stored the bare order id
        return raw, None
    if not isinstance(decoded, dict):
        return raw, None
    order_id = decoded.get("orderId") or decoded.get("order_id")
    product_id = decoded.get("packId") or decoded.get("pack_id") or decoded.get("productId")
    return (str(order_id) if order_id else None, str(product_id) if product_id else None)


def paypal_event_to_job(event: dict[str, Any]) -> WebhookJob | None:
    event_type = str(event.get("event_type") or "")
    event_id = str(event.get("id") or "")
    resource = _obj(event.get("resource"))

    if event_type == "PAYMENT.CAPTURE.COMPLETED":
        related = _obj(_obj(resource.get("supplementary_data")).get("related_ids"))
        paypal_order_id = related.get("order_id") or _up_link(resource, _PAYPAL_ORDER_HREF)
        if not paypal_order_id:
            raise ValidationError("Missing order link in PayPal capture event", code="INVALID_WEBHOOK")
        order_id, product_id = _paypal_custom_id(resource)
        if not order_id:
            raise ValidationError("Missing order_id in PayPal capture event", code="INVALID_WEBHOOK")
        if not product_id:
            raise ValidationError("Missing pack_id in PayPal capture event", code="INVALID_WEBHOOK")
        return WebhookJob(
            function=PAYMENT_COMPLETED_JOB,
            payload={
                "provider": "paypal",
                "checkout_id": str(paypal_order_id),
                "order_id": order_id,
                "product_id": product_id,
            },
            job_id=f"paypal:{event_id}",
        )

    if event_type == "PAYMENT.CAPTURE.REFUNDED":
        # resource is the refund; the capture it reverses is the "up" link
        capture_id = _up_link(resource, _PAYPAL_CAPTURE_HREF)
        if not capture_id:
            raise ValidationError("Missing capture link in PayPal refund event", code="INVALID_WEBHOOK")
        return WebhookJob(
            function=PAYMENT_REFUNDED_JOB,
            payload={
                "provider": "paypal",
                "provider_payment_id": capture_id,
                "refund_id": str(resource.get("id") or "") or None,
            },
            job_id=f"paypal:{event_id}",
        )

    return None
