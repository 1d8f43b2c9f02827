from __future__ import annotations

import json
import logging

import stripe
from arq.connections import ArqRedis
from fastapi import APIRouter, Depends, Header, Request

from app.api.v1.deps import get_job_queue, get_payment_gateway
from app.core.config import settings
from app.core.errors import ValidationError
from app.services.payments import HttpPaymentGateway
from app.services.webhooks import WebhookJob, paypal_event_to_job, stripe_event_to_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _enqueue(queue: ArqRedis, job: WebhookJob) -> bool:
    queued = await queue.enqueue_job(job.function, job.payload, _job_id=job.job_id)
    if queued is None:
        logger.info("Webhook job %s already queued", job.job_id)
        return False
    logger.info("Queued %s for webhook %s", job.function, job.job_id)
    return True


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    queue: ArqRedis = Depends(get_job_queue),
) -> dict:
    if not settings.stripe_webhook_secret:
        raise ValidationError("Stripe webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
    if not stripe_signature:
        raise ValidationError("Missing Stripe-Signature header", code="INVALID_SIGNATURE")

    payload = await request.body()
    try:
        stripe.Webhook.construct_event(payload, stripe_signature, settings.stripe_webhook_secret)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Invalid Stripe webhook signature: %s", exc)
        raise ValidationError("Invalid webhook signature", code="INVALID_SIGNATURE") from exc
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload", code="INVALID_WEBHOOK") from exc

    event = json.loads(payload)
    job = stripe_event_to_job(event)
    if job is None:
        logger.info("Ignoring Stripe event %s (%s)", event.get("id"), event.get("type"))
        return {"received": True}
    await _enqueue(queue, job)
    return {"received": True, "eventId": event.get("id")}


@router.post("/paypal")
async def paypal_webhook(
    request: Request,
    queue: ArqRedis = Depends(get_job_queue),
    gateway: HttpPaymentGateway = Depends(get_payment_gateway),
) -> dict:
    try:
        event = json.loads(await request.body())
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload", code="INVALID_WEBHOOK") from exc
    if not isinstance(event, dict):
        raise ValidationError("Invalid webhook payload", code="INVALID_WEBHOOK")

    headers = {k.lower(): v for k, v in request.headers.items()}
    verified = await gateway.verify_paypal_webhook(
        webhook_id=settings.paypal_webhook_id,
        headers=headers,
        event=event,
    )
    if not verified:
        logger.warning("PayPal webhook %s failed signature verification", event.get("id"))
        raise ValidationError("Invalid webhook signature", code="INVALID_SIGNATURE")

    job = paypal_event_to_job(event)
    if job is None:
        logger.info("Ignoring PayPal event %s (%s)", event.get("id"), event.get("event_type"))
        return {"received": True}
    await _enqueue(queue, job)
    return {"received": True, "eventId": event.get("id")}
