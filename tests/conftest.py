from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.db.base import Base
from app.db.session import build_session_factory
from app.models.common import utcnow
from app.models.mentorship import (
    Mentor,
    MentorSession,
    MentorshipProduct,
    Order,
    Payment,
    SeatReservation,
    SessionPack,
)
from app.services.calendar import CalendarError
from app.services.payments import CheckoutDetails


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeCalendar:
    def __init__(self, busy: list[dict[str, Any]] | None = None) -> None:
        self.busy = list(busy or [])
        self.events: dict[str, dict[str, Any]] = {}
        self.deleted: list[str] = []
        self.fail_delete = False
        self._seq = 0

    async def query_busy(self, calendar_id: str, start: datetime, end: datetime) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        return list(self.busy)

    async def create_event(
        self,
        calendar_id: str,
        *,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        metadata: dict[str, str],
    ) -> str:
        self._seq += 1
        event_id = f"evt_{self._seq}"
        self.events[event_id] = {"calendar_id": calendar_id, "start": start, "end": end, "metadata": metadata}
        # let a concurrent booking interleave here, as a network call would
        await asyncio.sleep(0)
        return event_id

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        if self.fail_delete:
            raise CalendarError("Google Calendar error (500)", status_code=500)
        self.deleted.append(event_id)
        self.events.pop(event_id, None)


class FakeCalendarProvider:
    def __init__(self, calendar: FakeCalendar) -> None:
        self.calendar = calendar

    def for_mentor(self, mentor: Mentor) -> FakeCalendar | None:
        if not mentor.google_refresh_token:
            return None
        return self.calendar


class FakeGateway:
    def __init__(self) -> None:
        self.checkouts: dict[str, CheckoutDetails] = {}
        self.refunds: dict[str, int] = {}
        self.checkout_calls: list[tuple[str, str]] = []

    async def get_checkout_details(self, provider: str, checkout_id: str) -> CheckoutDetails:
        self.checkout_calls.append((provider, checkout_id))
        return self.checkouts[checkout_id]

    async def get_refunded_amount(
        self,
        provider: str,
        *,
        provider_payment_id: str,
        refund_id: str | None = None,
        charge_id: str | None = None,
    ) -> int | None:
        return self.refunds.get(provider_payment_id)


@dataclass
class EmittedFact:
    name: str
    payload: dict[str, Any]
    dedupe_key: str | None


class FakeFactSink:
    def __init__(self) -> None:
        self.emitted: list[EmittedFact] = []

    async def emit(self, name: str, payload: dict[str, Any], *, dedupe_key: str | None = None) -> None:
        self.emitted.append(EmittedFact(name, dict(payload), dedupe_key))

    def named(self, name: str) -> list[EmittedFact]:
        return [f for f in self.emitted if f.name == name]


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(self, message: dict[str, Any]) -> None:
        self.sent.append(dict(message))


@dataclass
class ProvisionedPack:
    mentor: Mentor
    order: Order
    payment: Payment
    pack: SessionPack
    seat: SeatReservation
    sessions: list[MentorSession] = field(default_factory=list)


class Seeder:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._counter = 0

    def _next(self) -> int:
        self._counter += 1
        return self._counter

    async def _add(self, *rows: Any) -> None:
        async with self._session_factory() as db:
            db.add_all(rows)
            await db.commit()

    async def mentor(self, **overrides: Any) -> Mentor:
        values: dict[str, Any] = {
            "user_id": f"mentor_user_{self._next()}",
            "max_active_students": 10,
            "google_refresh_token": "refresh-token",
            "google_calendar_id": None,
            "time_zone": None,
            "working_hours": None,
        }
        values.update(overrides)
        row = Mentor(**values)
        await self._add(row)
        return row

    async def product(self, mentor: Mentor, **overrides: Any) -> MentorshipProduct:
        values: dict[str, Any] = {
            "mentor_id": mentor.id,
            "title": "Four session pack",
            "price_cents": 40000,
            "sessions_per_pack": 4,
            "validity_days": 30,
        }
        values.update(overrides)
        row = MentorshipProduct(**values)
        await self._add(row)
        return row

    async def order(self, product: MentorshipProduct | None = None, **overrides: Any) -> Order:
        values: dict[str, Any] = {
            "user_id": f"student_{self._next()}",
            "product_id": product.id if product is not None else None,
            "provider": "stripe",
            "status": "pending",
            "total_amount_cents": 40000,
        }
        values.update(overrides)
        row = Order(**values)
        await self._add(row)
        return row

    async def provisioned_pack(
        self,
        mentor: Mentor | None = None,
        *,
        user_id: str | None = None,
        total_sessions: int = 4,
        remaining_sessions: int | None = None,
        expires_at: datetime | None = None,
        pack_status: str = "active",
        seat_status: str = "active",
        grace_period_ends_at: datetime | None = None,
    ) -> ProvisionedPack:
        mentor = mentor or await self.mentor()
        n = self._next()
        user_id = user_id or f"student_{n}"
        expires_at = expires_at or utcnow() + timedelta(days=30)
        order = Order(user_id=user_id, provider="stripe", status="paid", total_amount_cents=40000)
        await self._add(order)
        payment = Payment(
            order_id=order.id,
            provider="stripe",
            provider_payment_id=f"pi_{n}",
            amount_cents=40000,
            currency="usd",
            status="completed",
        )
        await self._add(payment)
        pack = SessionPack(
            user_id=user_id,
            mentor_id=mentor.id,
            payment_id=payment.id,
            total_sessions=total_sessions,
            remaining_sessions=total_sessions if remaining_sessions is None else remaining_sessions,
            purchased_at=utcnow(),
            expires_at=expires_at,
            status=pack_status,
        )
        await self._add(pack)
        seat = SeatReservation(
            mentor_id=mentor.id,
            user_id=user_id,
            session_pack_id=pack.id,
            seat_expires_at=expires_at,
            grace_period_ends_at=grace_period_ends_at,
            status=seat_status,
        )
        await self._add(seat)
        return ProvisionedPack(mentor=mentor, order=order, payment=payment, pack=pack, seat=seat)

    async def session(
        self,
        provisioned: ProvisionedPack,
        *,
        scheduled_at: datetime | None = None,
        status: str = "scheduled",
    ) -> MentorSession:
        n = self._next()
        row = MentorSession(
            mentor_id=provisioned.mentor.id,
            student_id=provisioned.pack.user_id,
            session_pack_id=provisioned.pack.id,
            scheduled_at=scheduled_at or utcnow().replace(minute=0, second=0, microsecond=0) + timedelta(hours=n),
            status=status,
            completed_at=utcnow() if status == "completed" else None,
            google_calendar_event_id=f"seed_evt_{n}",
        )
        await self._add(row)
        provisioned.sessions.append(row)
        return row


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mentorship.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory) -> Seeder:
    return Seeder(session_factory)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def calendars(calendar) -> FakeCalendarProvider:
    return FakeCalendarProvider(calendar)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def facts() -> FakeFactSink:
    return FakeFactSink()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
