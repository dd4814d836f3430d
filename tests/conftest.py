"""Pytest bootstrap configuration.

Ensure mandatory environment variables are set before test collection
and module imports that depend on application settings.
"""
import os

# Mandatory secret key for settings validation
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

import functools
import json
import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest
from sqlalchemy import select

from application.dtos.payments import GatewayIntent, GatewayRefund, WebhookEvent
from core.logging_config import configure_logging
from infrastructure.database import build_engine, build_session_factory, create_tables
from infrastructure.external.payments.exceptions import GatewaySignatureError, IntentStateError
from infrastructure.models import ActivityModel, BookingModel, PaymentModel, VenueModel
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


configure_logging()

USER_ID = "user-parent-1"
OTHER_USER_ID = "user-parent-2"
T0 = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class FrozenClock:
    """可控时钟：测试中手动推进时间"""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGateway:
    """In-memory PaymentGateway; create is idempotent per idempotency key."""

    provider = "fake"
    VALID_SIGNATURE = "t=1,v1=valid"

    def __init__(self) -> None:
        self.intents: dict[str, GatewayIntent] = {}
        self.created: list[dict[str, Any]] = []
        self.refunds: list[dict[str, Any]] = []
        self.confirm_calls = 0
        self.errors: dict[str, Exception] = {}
        self._by_key: dict[str, str] = {}

    def fail(self, op: str, exc: Exception) -> None:
        self.errors[op] = exc

    def _maybe_raise(self, op: str) -> None:
        if op in self.errors:
            raise self.errors[op]

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id] = self.intents[intent_id].model_copy(update={"status": status})

    async def create_intent(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        currency: str,
        venue_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> GatewayIntent:
        self._maybe_raise("create_intent")
        self.created.append({
            "booking_id": booking_id,
            "amount": amount,
            "currency": currency,
            "venue_id": venue_id,
            "idempotency_key": idempotency_key,
            "metadata": metadata,
        })
        if idempotency_key and idempotency_key in self._by_key:
            return self.intents[self._by_key[idempotency_key]]
        intent_id = f"pi_{uuid.uuid4().hex[:16]}"
        intent = GatewayIntent(
            intent_id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret_x",
            amount=int(Decimal(amount) * 100),
            currency=currency,
            metadata={"bookingId": booking_id, **(metadata or {})},
        )
        self.intents[intent_id] = intent
        if idempotency_key:
            self._by_key[idempotency_key] = intent_id
        return intent

    async def get_intent(self, intent_id: str) -> GatewayIntent:
        self._maybe_raise("get_intent")
        return self.intents[intent_id]

    async def confirm_intent(self, intent_id: str) -> GatewayIntent:
        self.confirm_calls += 1
        self._maybe_raise("confirm_intent")
        intent = self.intents[intent_id]
        if intent.status == "succeeded":
            return intent
        if intent.status != "requires_confirmation":
            raise IntentStateError(intent_id, intent.status, provider=self.provider)
        self.set_status(intent_id, "succeeded")
        return self.intents[intent_id]

    async def create_refund(
        self,
        intent_id: str,
        *,
        amount: Optional[Decimal] = None,
        currency: str = "gbp",
        reason: Optional[str] = None,
        connect_account_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        self._maybe_raise("create_refund")
        refund_id = f"re_{len(self.refunds) + 1}"
        self.refunds.append({
            "refund_id": refund_id,
            "intent_id": intent_id,
            "amount": amount,
            "currency": currency,
            "reason": reason,
            "idempotency_key": idempotency_key,
            "connect_account_id": connect_account_id,
        })
        return GatewayRefund(refund_id=refund_id, status="succeeded", intent_id=intent_id)

    async def list_refunds(self, intent_id: str, *, limit: int = 10) -> list[GatewayRefund]:
        self._maybe_raise("list_refunds")
        return [
            GatewayRefund(
                refund_id=r["refund_id"],
                status="succeeded",
                intent_id=intent_id,
                amount=int(Decimal(r["amount"]) * 100) if r["amount"] is not None else None,
                currency=r["currency"],
                reason="requested_by_customer" if r["reason"] else None,
                created_at=T0,
            )
            for r in self.refunds
            if r["intent_id"] == intent_id
        ][:limit]

    def verify_webhook(self, payload, signature: str, secret: str) -> WebhookEvent:
        if signature != self.VALID_SIGNATURE:
            raise GatewaySignatureError("No signatures found matching the expected signature for payload")
        event = json.loads(payload)
        return WebhookEvent(id=event["id"], type=event["type"], data=event.get("data") or {})


def stripe_event(event_type: str, obj: dict, event_id: Optional[str] = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:12]}",
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }


class Seed:
    """Seed helpers: venue -> activity -> booking, plus raw row lookups."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def booking(
        self,
        *,
        user_id: str = USER_ID,
        status: str = "pending",
        stripe_account_id: Optional[str] = None,
    ) -> str:
        async with self._session_factory() as session:
            venue = VenueModel(name="Riverside Sports Hall", stripe_account_id=stripe_account_id)
            session.add(venue)
            await session.flush()
            activity = ActivityModel(
                venue_id=venue.id,
                title="Junior Football",
                start_date=date(2026, 4, 11),
                start_time=time(10, 0),
            )
            session.add(activity)
            await session.flush()
            booking = BookingModel(user_id=user_id, activity_id=activity.id, status=status)
            session.add(booking)
            await session.commit()
            return booking.id

    async def booking_status(self, booking_id: str) -> str:
        async with self._session_factory() as session:
            return (await session.get(BookingModel, booking_id)).status

    async def payment(self, payment_id: str) -> PaymentModel:
        async with self._session_factory() as session:
            return await session.get(PaymentModel, payment_id)

    async def payment_by_intent(self, intent_id: str) -> PaymentModel:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel).where(PaymentModel.stripe_payment_intent_id == intent_id)
            )
            return result.scalar_one()


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'bookon.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def uow_factory(session_factory):
    return functools.partial(SQLAlchemyUnitOfWork, session_factory)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def seed(session_factory):
    return Seed(session_factory)
