import hashlib
import hmac
import json
import time
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from infrastructure.external.payments.exceptions import (
    GatewayError,
    GatewaySignatureError,
    GatewayUnavailableError,
    IntentStateError,
)
from infrastructure.external.payments.stripe_client import StripeClient


WEBHOOK_SECRET = "whsec_test_secret"


class _StaticResolver:
    def __init__(self, accounts):
        self.accounts = accounts
        self.calls = []

    async def resolve(self, venue_id):
        self.calls.append(venue_id)
        return self.accounts.get(venue_id)


class _FakePaymentIntent:
    """Captures outbound calls made through stripe.PaymentIntent."""

    def __init__(self):
        self.calls = []
        self.statuses = {}
        self.errors = {}

    def _record(self, op, *args, **kwargs):
        self.calls.append((op, args, kwargs))
        queue = self.errors.get(op)
        if queue:
            raise queue.pop(0)

    def create(self, **kwargs):
        self._record("create", **kwargs)
        return SimpleNamespace(
            id="pi_123",
            status="requires_payment_method",
            client_secret="pi_123_secret_abc",
            amount=kwargs["amount"],
            currency=kwargs["currency"],
        )

    def retrieve(self, intent_id, **kwargs):
        self._record("retrieve", intent_id, **kwargs)
        return SimpleNamespace(id=intent_id, status=self.statuses.get(intent_id, "succeeded"))

    def confirm(self, intent_id, **kwargs):
        self._record("confirm", intent_id, **kwargs)
        return SimpleNamespace(id=intent_id, status="succeeded")


class _FakeRefund:
    def __init__(self):
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(id="re_123", status="succeeded", amount=10000, currency="gbp")

    def list(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(data=[
            SimpleNamespace(id="re_2", status="pending", amount=500, currency="gbp", reason=None, created=1772443800),
            SimpleNamespace(id="re_1", status="succeeded", amount=1000, currency="gbp", reason="requested_by_customer", created=1772440200),
        ])


@pytest.fixture
def fake_pi(monkeypatch):
    fake = _FakePaymentIntent()
    monkeypatch.setattr(stripe, "PaymentIntent", fake)
    return fake


@pytest.fixture
def fake_refund(monkeypatch):
    fake = _FakeRefund()
    monkeypatch.setattr(stripe, "Refund", fake)
    return fake


def _client(**kwargs):
    kwargs.setdefault("retry", {"max": 2, "base": 0.01})
    return StripeClient("sk_test_123", **kwargs)


def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp if timestamp is not None else time.time())
    signature = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signature}"


def test_requires_secret_key():
    with pytest.raises(RuntimeError):
        StripeClient("")


def test_fee_config_exposed():
    client = _client(fee_percentage=Decimal("1.5"), fee_fixed=Decimal("0.20"))
    assert client.fee_config == {"percentage": Decimal("1.5"), "fixed": Decimal("0.20")}


async def test_create_intent_with_connected_venue(fake_pi):
    resolver = _StaticResolver({"venue-1": "acct_venue_1"})
    client = _client(venue_accounts=resolver, api_version="2024-06-20")

    intent = await client.create_intent(
        booking_id="b-1",
        amount=Decimal("100.00"),
        currency="GBP",
        venue_id="venue-1",
        idempotency_key="idem-1",
        metadata={"userId": "u-1"},
    )

    op, _, kwargs = fake_pi.calls[0]
    assert op == "create"
    assert kwargs["amount"] == 10000
    assert kwargs["currency"] == "gbp"
    assert kwargs["automatic_payment_methods"] == {"enabled": True}
    assert kwargs["application_fee_amount"] == 320
    assert kwargs["transfer_data"] == {"destination": "acct_venue_1"}
    assert kwargs["metadata"] == {
        "userId": "u-1",
        "bookingId": "b-1",
        "platformFee": "320",
        "destinationAccount": "acct_venue_1",
    }
    assert kwargs["api_key"] == "sk_test_123"
    assert kwargs["stripe_version"] == "2024-06-20"
    assert kwargs["idempotency_key"] == "idem-1"
    assert intent.intent_id == "pi_123"
    assert intent.client_secret == "pi_123_secret_abc"
    assert resolver.calls == ["venue-1"]


async def test_create_intent_without_connected_account_is_platform_charge(fake_pi):
    client = _client(venue_accounts=_StaticResolver({}))

    await client.create_intent(booking_id="b-1", amount=Decimal("10.00"), currency="gbp", venue_id="venue-x")

    _, _, kwargs = fake_pi.calls[0]
    assert "application_fee_amount" not in kwargs
    assert "transfer_data" not in kwargs
    assert "stripe_version" not in kwargs
    assert "idempotency_key" not in kwargs
    assert kwargs["metadata"]["platformFee"] == "59"
    assert "destinationAccount" not in kwargs["metadata"]


async def test_create_intent_retries_transport_errors(fake_pi):
    fake_pi.errors["create"] = [stripe.APIConnectionError("connection reset")]
    client = _client()

    intent = await client.create_intent(
        booking_id="b-1", amount=Decimal("5.00"), currency="gbp", idempotency_key="idem-2"
    )

    assert intent.intent_id == "pi_123"
    creates = [c for c in fake_pi.calls if c[0] == "create"]
    assert len(creates) == 2
    assert all(c[2]["idempotency_key"] == "idem-2" for c in creates)


async def test_create_intent_gives_up_after_retry_budget(fake_pi):
    fake_pi.errors["create"] = [stripe.APIConnectionError("down") for _ in range(3)]
    client = _client()

    with pytest.raises(GatewayUnavailableError):
        await client.create_intent(booking_id="b-1", amount=Decimal("5.00"), currency="gbp")
    assert len(fake_pi.calls) == 3


async def test_card_error_is_not_retried(fake_pi):
    fake_pi.errors["create"] = [stripe.CardError("Your card was declined.", None, "card_declined")]
    client = _client()

    with pytest.raises(GatewayError) as ei:
        await client.create_intent(booking_id="b-1", amount=Decimal("5.00"), currency="gbp")
    assert not isinstance(ei.value, GatewayUnavailableError)
    assert ei.value.provider_code == "card_declined"
    assert len(fake_pi.calls) == 1


async def test_confirm_returns_succeeded_intent_without_confirming(fake_pi):
    fake_pi.statuses["pi_1"] = "succeeded"
    intent = await _client().confirm_intent("pi_1")
    assert intent.status == "succeeded"
    assert [c[0] for c in fake_pi.calls] == ["retrieve"]


async def test_confirm_requires_confirmation(fake_pi):
    fake_pi.statuses["pi_1"] = "requires_confirmation"
    intent = await _client().confirm_intent("pi_1")
    assert intent.status == "succeeded"
    assert [c[0] for c in fake_pi.calls] == ["retrieve", "confirm"]


@pytest.mark.parametrize("status", ["requires_payment_method", "processing", "canceled"])
async def test_confirm_rejects_other_states(fake_pi, status):
    fake_pi.statuses["pi_1"] = status
    with pytest.raises(IntentStateError) as ei:
        await _client().confirm_intent("pi_1")
    assert ei.value.status == status


async def test_confirm_is_never_retried(fake_pi):
    fake_pi.statuses["pi_1"] = "requires_confirmation"
    fake_pi.errors["confirm"] = [stripe.APIConnectionError("timeout")]

    with pytest.raises(GatewayUnavailableError):
        await _client().confirm_intent("pi_1")
    assert [c[0] for c in fake_pi.calls] == ["retrieve", "confirm"]


async def test_refund_with_reason_and_connect_account(fake_refund):
    refund = await _client().create_refund(
        "pi_1",
        reason="Child is ill",
        connect_account_id="acct_venue_1",
        idempotency_key="idem-r",
    )

    kwargs = fake_refund.calls[0]
    assert kwargs["payment_intent"] == "pi_1"
    assert kwargs["reason"] == "requested_by_customer"
    assert kwargs["metadata"] == {"reason": "Child is ill"}
    assert kwargs["stripe_account"] == "acct_venue_1"
    assert kwargs["idempotency_key"] == "idem-r"
    assert "amount" not in kwargs
    assert refund.refund_id == "re_123"


async def test_refund_without_reason_uses_default_metadata(fake_refund):
    await _client().create_refund("pi_1", amount=Decimal("12.50"), currency="gbp")

    kwargs = fake_refund.calls[0]
    assert "reason" not in kwargs
    assert "stripe_account" not in kwargs
    assert kwargs["metadata"] == {"reason": "Customer requested refund"}
    assert kwargs["amount"] == 1250


async def test_list_refunds_for_intent(fake_refund):
    refunds = await _client().list_refunds("pi_1")

    kwargs = fake_refund.calls[0]
    assert kwargs["payment_intent"] == "pi_1"
    assert kwargs["limit"] == 10
    assert kwargs["api_key"] == "sk_test_123"
    assert [r.refund_id for r in refunds] == ["re_2", "re_1"]
    assert refunds[1].amount == 1000
    assert refunds[1].reason == "requested_by_customer"
    assert refunds[1].created_at == datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc)


def test_verify_webhook_accepts_valid_signature():
    payload = json.dumps({
        "id": "evt_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_1", "status": "succeeded"}},
    })

    event = _client().verify_webhook(payload.encode(), _sign(payload), WEBHOOK_SECRET)

    assert event.id == "evt_1"
    assert event.type == "payment_intent.succeeded"
    assert event.data_object["id"] == "pi_1"


def test_verify_webhook_rejects_tampered_payload():
    payload = json.dumps({"id": "evt_1", "type": "refund.created", "data": {"object": {}}})
    header = _sign(payload)
    tampered = payload.replace("evt_1", "evt_2")

    with pytest.raises(GatewaySignatureError):
        _client().verify_webhook(tampered, header, WEBHOOK_SECRET)


def test_verify_webhook_rejects_wrong_secret():
    payload = json.dumps({"id": "evt_1", "type": "refund.created", "data": {"object": {}}})
    with pytest.raises(GatewaySignatureError):
        _client().verify_webhook(payload, _sign(payload, secret="whsec_other"), WEBHOOK_SECRET)


def test_verify_webhook_rejects_stale_timestamp():
    payload = json.dumps({"id": "evt_1", "type": "refund.created", "data": {"object": {}}})
    header = _sign(payload, timestamp=time.time() - 3600)
    with pytest.raises(GatewaySignatureError):
        _client(webhook_tolerance=300).verify_webhook(payload, header, WEBHOOK_SECRET)


def test_verify_webhook_rejects_signed_non_json():
    payload = "not json"
    with pytest.raises(GatewaySignatureError):
        _client().verify_webhook(payload, _sign(payload), WEBHOOK_SECRET)


def test_verify_webhook_rejects_non_utf8_body():
    with pytest.raises(GatewaySignatureError) as ei:
        _client().verify_webhook(b"\xff\xfe{not-utf8", "t=1,v1=abc", WEBHOOK_SECRET)
    assert "Invalid payload" in ei.value.message
