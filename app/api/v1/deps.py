from __future__ import annotations

from arq.connections import ArqRedis
from fastapi import Request

from app.services.booking import BookingService
from app.services.calendar import CalendarProvider
from app.services.payments import HttpPaymentGateway


def get_calendars(request: Request) -> CalendarProvider:
    return request.app.state.calendars


def get_booking_service(request: Request) -> BookingService:
    return request.app.state.booking


def get_job_queue(request: Request) -> ArqRedis:
    return request.app.state.arq


def get_payment_gateway(request: Request) -> HttpPaymentGateway:
    return request.app.state.gateway
