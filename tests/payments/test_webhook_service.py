import json

import pytest

from application.dtos.payments import ConfirmPaymentRequest, CreateIntentRequest, RefundPaymentRequest, WebhookEvent
from application.services.payment_service import PaymentApplicationService
from application.services.webhook_service import StripeWebhookService, WebhookOutcome
from domain.common.exceptions import BusinessException
from shared.codes import BusinessCode

from conftest import USER_ID, FakeGateway, stripe_event


SECRET = "whsec_test"


@pytest.fixture
def payments(uow_factory, gateway, clock):
    return PaymentApplicationService(uow_factory=uow_factory, gateway=gateway, clock=clock)


@pytest.fixture
def webhooks(uow_factory, gateway, clock):
    return StripeWebhookService(uow_factory=uow_factory, gateway=gateway, clock=clock)


def _event(event_type, obj, event_id=None) -> WebhookEvent:
    raw = stripe_event(event_type, obj, event_id)
    return WebhookEvent(id=raw["id"], type=raw["type"], data=raw["data"])


def _succeeded(intent_id, event_id=None):
    return _event("payment_intent.succeeded", {"id": intent_id, "object": "payment_intent", "status": "succeeded"}, event_id)


async def _pending(payments, seed):
    booking_id = await seed.booking()
    created = await payments.create_intent(USER_ID, CreateIntentRequest(booking_id=booking_id, amount="40.00"))
    return booking_id, created.payment_intent_id


async def test_intent_succeeded_completes_payment(webhooks, payments, seed, clock):
    booking_id, intent_id = await _pending(payments, seed)

    outcome = await webhooks.process(_succeeded(intent_id))

    assert outcome == WebhookOutcome.HANDLED
    row = await seed.payment_by_intent(intent_id)
    assert row.status == "completed"
    assert row.completed_at is not None
    assert await seed.booking_status(booking_id) == "confirmed"


async def test_redelivered_event_is_a_no_op(webhooks, payments, seed, clock):
    booking_id, intent_id = await _pending(payments, seed)
    event = _succeeded(intent_id, event_id="evt_same")
    await webhooks.process(event)
    completed_at = (await seed.payment_by_intent(intent_id)).completed_at
    clock.advance(minutes=10)

    outcome = await webhooks.process(event)

    assert outcome == WebhookOutcome.DUPLICATE
    assert (await seed.payment_by_intent(intent_id)).completed_at == completed_at


async def test_payment_failed_records_reason_and_keeps_booking_pending(webhooks, payments, seed):
    booking_id, intent_id = await _pending(payments, seed)

    outcome = await webhooks.process(_event(
        "payment_intent.payment_failed",
        {"id": intent_id, "last_payment_error": {"code": "card_declined", "message": "Your card was declined."}},
    ))

    assert outcome == WebhookOutcome.HANDLED
    row = await seed.payment_by_intent(intent_id)
    assert row.status == "failed"
    assert row.failure_reason == "Your card was declined."
    assert await seed.booking_status(booking_id) == "pending"


async def test_late_failure_does_not_override_completion(webhooks, payments, seed):
    booking_id, intent_id = await _pending(payments, seed)
    await webhooks.process(_succeeded(intent_id))

    outcome = await webhooks.process(_event("payment_intent.payment_failed", {"id": intent_id}))

    assert outcome == WebhookOutcome.DUPLICATE
    assert (await seed.payment_by_intent(intent_id)).status == "completed"
    assert await seed.booking_status(booking_id) == "confirmed"


async def test_refund_created_refunds_and_cancels(webhooks, payments, seed):
    booking_id, intent_id = await _pending(payments, seed)
    await webhooks.process(_succeeded(intent_id))

    outcome = await webhooks.process(_event(
        "refund.created", {"id": "re_dashboard_1", "object": "refund", "payment_intent": intent_id}
    ))

    assert outcome == WebhookOutcome.HANDLED
    row = await seed.payment_by_intent(intent_id)
    assert row.status == "refunded"
    assert row.stripe_refund_id == "re_dashboard_1"
    assert row.refunded_at is not None
    assert await seed.booking_status(booking_id) == "cancelled"


async def test_partial_refund_event_keeps_booking_confirmed(webhooks, payments, seed):
    booking_id, intent_id = await _pending(payments, seed)
    await webhooks.process(_succeeded(intent_id))

    outcome = await webhooks.process(_event(
        "refund.created",
        {"id": "re_part_1", "object": "refund", "payment_intent": intent_id, "amount": 1500, "currency": "gbp"},
    ))

    assert outcome == WebhookOutcome.HANDLED
    assert (await seed.payment_by_intent(intent_id)).status == "refunded"
    assert await seed.booking_status(booking_id) == "confirmed"


async def test_confirm_and_webhook_converge(webhooks, payments, gateway, seed, clock):
    booking_id, intent_id = await _pending(payments, seed)
    gateway.set_status(intent_id, "requires_confirmation")
    await payments.confirm(USER_ID, ConfirmPaymentRequest(payment_intent_id=intent_id))
    completed_at = (await seed.payment_by_intent(intent_id)).completed_at

    clock.advance(seconds=3)
    assert await webhooks.process(_succeeded(intent_id)) == WebhookOutcome.DUPLICATE

    payment_id = (await seed.payment_by_intent(intent_id)).id
    await payments.refund(USER_ID, payment_id, RefundPaymentRequest())
    outcome = await webhooks.process(_event("refund.created", {"id": "re_1", "payment_intent": intent_id}))

    assert outcome == WebhookOutcome.DUPLICATE
    row = await seed.payment_by_intent(intent_id)
    assert row.status == "refunded"
    assert row.completed_at == completed_at
    assert row.stripe_refund_id == "re_1"
    assert await seed.booking_status(booking_id) == "cancelled"


async def test_unknown_intent_is_unmatched(webhooks, payments, seed):
    booking_id, intent_id = await _pending(payments, seed)

    outcome = await webhooks.process(_succeeded("pi_unknown"))

    assert outcome == WebhookOutcome.UNMATCHED
    assert (await seed.payment_by_intent(intent_id)).status == "pending"
    assert await seed.booking_status(booking_id) == "pending"


async def test_unhandled_event_type_is_ignored(webhooks):
    outcome = await webhooks.process(_event("customer.created", {"id": "cus_1"}))
    assert outcome == WebhookOutcome.IGNORED


class _BrokenUnitOfWork:
    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        raise RuntimeError("database unavailable")

    async def __aexit__(self, *exc):
        return None


@pytest.mark.parametrize("mode, retry", [("ack", False), ("retry", True)])
async def test_handler_failure_modes(gateway, mode, retry):
    service = StripeWebhookService(uow_factory=_BrokenUnitOfWork, gateway=gateway, on_handler_error=mode)

    outcome = await service.process(_succeeded("pi_1"))

    assert outcome == WebhookOutcome.FAILED
    assert service.should_retry(outcome) is retry


def test_should_retry_only_on_failure(webhooks):
    webhooks.on_handler_error = "retry"
    assert not webhooks.should_retry(WebhookOutcome.UNMATCHED)
    assert not webhooks.should_retry(WebhookOutcome.HANDLED)


def test_verify_requires_signature_header(webhooks):
    with pytest.raises(BusinessException) as ei:
        webhooks.verify(b"{}", None, SECRET)
    assert ei.value.code == BusinessCode.WEBHOOK_SIGNATURE_MISSING


def test_verify_requires_configured_secret(webhooks):
    with pytest.raises(BusinessException) as ei:
        webhooks.verify(b"{}", FakeGateway.VALID_SIGNATURE, None)
    assert ei.value.code == BusinessCode.WEBHOOK_SIGNATURE_MISSING


async def test_invalid_signature_mutates_nothing(webhooks, payments, seed):
    booking_id, intent_id = await _pending(payments, seed)
    payload = json.dumps(stripe_event("payment_intent.succeeded", {"id": intent_id})).encode()

    with pytest.raises(BusinessException) as ei:
        webhooks.verify(payload, "t=1,v1=forged", SECRET)

    assert ei.value.code == BusinessCode.WEBHOOK_SIGNATURE_INVALID
    assert (await seed.payment_by_intent(intent_id)).status == "pending"
    assert await seed.booking_status(booking_id) == "pending"


def test_verify_returns_parsed_event(webhooks):
    payload = json.dumps(stripe_event("refund.created", {"id": "re_1"}, event_id="evt_9")).encode()
    event = webhooks.verify(payload, FakeGateway.VALID_SIGNATURE, SECRET)
    assert event.id == "evt_9"
    assert event.data_object == {"id": "re_1"}
