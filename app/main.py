from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.errors import DomainError
from app.core.logging import configure_logging
from app.db.session import build_engine, build_session_factory
from app.services.booking import BookingService
from app.services.calendar import CalendarError, GoogleCalendarProvider
from app.services.payments import HttpPaymentGateway, PaymentProviderError

logger = logging.getLogger(__name__)

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    engine = build_engine(settings.database_url)
    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    arq = await create_pool(RedisSettings.from_dsn(settings.redis_url))

    calendars = GoogleCalendarProvider(
        http,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
    )
    app.state.session_factory = build_session_factory(engine)
    app.state.calendars = calendars
    app.state.booking = BookingService(calendars, session_minutes=settings.session_duration_minutes)
    app.state.gateway = HttpPaymentGateway(
        http,
        stripe_secret_key=settings.stripe_secret_key,
        paypal_client_id=settings.paypal_client_id,
        paypal_client_secret=settings.paypal_client_secret,
        paypal_env=settings.paypal_env,
    )
    app.state.arq = arq
    try:
        yield
    finally:
        await arq.aclose()
        await http.aclose()
        await engine.dispose()


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> ORJSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return ORJSONResponse(status_code=exc.status_code, content={"detail": exc.to_payload()})

    @app.exception_handler(CalendarError)
    @app.exception_handler(PaymentProviderError)
    async def upstream_error_handler(request: Request, exc: Exception) -> ORJSONResponse:
        logger.error("%s %s upstream failure: %s", request.method, request.url.path, exc)
        return ORJSONResponse(
            status_code=502,
            content={"detail": {"message": "Upstream service error", "code": "UPSTREAM_ERROR", "details": {}}},
        )


app = FastAPI(title=settings.app_name, default_response_class=ORJSONResponse, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)

app.include_router(api_router, prefix=settings.api_prefix)

Instrumentator().instrument(app).expose(app)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
