from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import asdict
from datetime import timedelta
from typing import Any, TypeVar

import httpx
from arq import Retry
from arq.connections import RedisSettings
from arq.cron import cron
from sqlalchemy.exc import InterfaceError, OperationalError

from app.core.config import settings
from app.core.errors import TransientError
from app.core.logging import configure_logging
from app.db.session import build_engine, build_session_factory
from app.services.catalog import DatabaseProductCatalog
from app.services.facts import ArqFactSink
from app.services.notifications import RedisNotificationSink
from app.services.payments import HttpPaymentGateway
from app.workflows.completion import SessionCompleted, SessionCompletionWorkflow
from app.workflows.expiration import ExpirationSweeper
from app.workflows.provisioning import PaymentCompleted, ProvisioningWorkflow
from app.workflows.refund import PaymentRefunded, RefundWorkflow
from app.workflows.reminders import ReminderHandlers

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Failures worth another try; anything else fails the job for good.
TRANSIENT_ERRORS = (TransientError, httpx.TransportError, OperationalError, InterfaceError, asyncio.TimeoutError)
RETRY_DELAY_SECONDS = 5


async def _retrying(ctx: dict[str, Any], label: str, work: Awaitable[T]) -> T:
    job_try = int(ctx.get("job_try") or 1)
    try:
        return await work
    except TRANSIENT_ERRORS as exc:
        logger.warning("%s failed on try %s, retrying: %s", label, job_try, exc)
        raise Retry(defer=timedelta(seconds=job_try * RETRY_DELAY_SECONDS)) from exc
    except Exception:
        logger.exception("%s failed permanently on try %s", label, job_try)
        raise


async def startup(ctx: dict[str, Any]) -> None:
    configure_logging(settings.log_level)
    engine = build_engine(settings.database_url)
    session_factory = build_session_factory(engine)
    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    gateway = HttpPaymentGateway(
        http,
        stripe_secret_key=settings.stripe_secret_key,
        paypal_client_id=settings.paypal_client_id,
        paypal_client_secret=settings.paypal_client_secret,
        paypal_env=settings.paypal_env,
    )
    facts = ArqFactSink(ctx["redis"])

    ctx["engine"] = engine
    ctx["http"] = http
    ctx["provisioning"] = ProvisioningWorkflow(
        session_factory,
        gateway,
        DatabaseProductCatalog(),
        facts,
        order_fetch_attempts=settings.order_fetch_attempts,
        order_fetch_backoff_seconds=settings.order_fetch_backoff_seconds,
    )
    ctx["refund"] = RefundWorkflow(session_factory, gateway)
    ctx["completion"] = SessionCompletionWorkflow(
        session_factory,
        facts,
        grace_period=timedelta(hours=settings.grace_period_hours),
    )
    ctx["sweeper"] = ExpirationSweeper(
        session_factory,
        facts,
        final_warning_window=timedelta(hours=settings.final_warning_hours),
    )
    ctx["reminders"] = ReminderHandlers(session_factory, RedisNotificationSink(ctx["redis"]))
    logger.info("Worker started")


async def shutdown(ctx: dict[str, Any]) -> None:
    http: httpx.AsyncClient | None = ctx.get("http")
    if http is not None:
        await http.aclose()
    engine = ctx.get("engine")
    if engine is not None:
        await engine.dispose()


async def payment_completed_job(ctx, payload: dict) -> dict:
    fact = PaymentCompleted.from_payload(payload)
    result = await _retrying(ctx, f"Provisioning order {fact.order_id}", ctx["provisioning"].run(fact))
    return asdict(result)


async def payment_refunded_job(ctx, payload: dict) -> dict:
    fact = PaymentRefunded.from_payload(payload)
    result = await _retrying(ctx, f"Refund of {fact.provider_payment_id}", ctx["refund"].run(fact))
    return asdict(result)


async def session_completed_job(ctx, payload: dict) -> dict:
    fact = SessionCompleted.from_payload(payload)
    result = await _retrying(ctx, f"Completion of session {fact.session_id}", ctx["completion"].run(fact))
    data = asdict(result)
    if result.grace_period_ends_at is not None:
        data["grace_period_ends_at"] = result.grace_period_ends_at.isoformat()
    return data


async def onboarding_eligible_job(ctx, payload: dict) -> dict:
    sent = await _retrying(ctx, "Onboarding notification", ctx["reminders"].onboarding_eligible(payload))
    return {"sent": sent}


async def renewal_reminder_job(ctx, payload: dict) -> dict:
    sent = await _retrying(ctx, "Renewal reminder", ctx["reminders"].renewal_reminder(payload))
    return {"sent": sent}


async def final_grace_warning_job(ctx, payload: dict) -> dict:
    sent = await _retrying(ctx, "Final grace warning", ctx["reminders"].final_grace_warning(payload))
    return {"sent": sent}


async def release_expired_seats_job(ctx) -> dict:
    report = await _retrying(ctx, "Expiration sweep", ctx["sweeper"].sweep())
    return {**asdict(report), "released": report.released}


async def grace_final_warning_job(ctx) -> dict:
    report = await _retrying(ctx, "Final grace warning scan", ctx["sweeper"].send_final_warnings())
    return {"warned": report.warned}


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    on_startup = startup
    on_shutdown = shutdown
    max_tries = settings.worker_max_tries
    functions = [
        payment_completed_job,
        payment_refunded_job,
        session_completed_job,
        onboarding_eligible_job,
        renewal_reminder_job,
        final_grace_warning_job,
        release_expired_seats_job,
        grace_final_warning_job,
    ]
    cron_jobs = [
        cron(release_expired_seats_job, minute={0}),
        cron(grace_final_warning_job, minute={0}),
    ]
