from __future__ import annotations

import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest
import stripe

from storyprint.api.errors import InvalidSignature, NotFound, PaymentGatewayError, ValidationFailed
from storyprint.integrations.stripe_gateway import StripeGateway, from_cents, to_cents, user_safe_message

SECRET = "whsec_test"


@pytest.fixture
def gateway() -> StripeGateway:
    return StripeGateway(api_key="sk_test_123", webhook_secret=SECRET)


def _sign(payload: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
    t = timestamp or int(time.time())
    signed = f"{t}.{payload.decode('utf-8')}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={t},v1={sig}"


def test_amount_conversion():
    assert to_cents(Decimal("19.99")) == 1999
    assert to_cents("0.505") == 51
    assert to_cents(26) == 2600
    assert from_cents(1999) == Decimal("19.99")
    assert from_cents(None) is None


def test_validate_payment_amount():
    assert StripeGateway.validate_payment_amount(Decimal("19.99"), Decimal("19.990"))
    assert not StripeGateway.validate_payment_amount(Decimal("19.98"), Decimal("19.99"))
    assert not StripeGateway.validate_payment_amount(None, Decimal("19.99"))


def test_create_checkout_session_builds_params(gateway, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    session = gateway.create_checkout_session(
        amount=Decimal("26.50"),
        metadata={"print_order_id": 7, "service": "print_order"},
        customer={"email": "parent@example.com"},
        success_url="https://api.test/success?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://api.test/cancel",
        product_name="Printed copy",
    )
    assert session.id == "cs_test_1"
    assert captured["api_key"] == "sk_test_123"
    line = captured["line_items"][0]["price_data"]
    assert line["unit_amount"] == 2650
    assert line["currency"] == "usd"
    assert captured["metadata"] == {"service": "print_order", "print_order_id": "7"}
    assert captured["payment_intent_data"]["metadata"] == captured["metadata"]
    assert captured["customer_email"] == "parent@example.com"


def test_checkout_below_minimum_is_rejected(gateway, monkeypatch):
    def boom(**kwargs):
        raise AssertionError("Stripe must not be called")

    monkeypatch.setattr(stripe.checkout.Session, "create", boom)
    with pytest.raises(ValidationFailed):
        gateway.create_checkout_session(
            amount=Decimal("0.49"), metadata={}, customer=None, success_url="s", cancel_url="c"
        )


def test_get_checkout_session_expands_payment_intent(gateway, monkeypatch):
    def fake_retrieve(session_id, **kwargs):
        assert kwargs["expand"] == ["payment_intent", "payment_intent.latest_charge"]
        return {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "amount_total": 2650,
            "currency": "usd",
            "customer_details": {"email": "parent@example.com"},
            "metadata": {"print_order_id": "7"},
            "created": 1767614400,
            "payment_intent": {
                "id": "pi_1",
                "status": "succeeded",
                "amount": 2650,
                "customer": {"id": "cus_1"},
                "payment_method": "pm_1",
                "latest_charge": {"id": "ch_1", "receipt_url": "https://pay.stripe.test/r/ch_1"},
                "metadata": {},
            },
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    state = gateway.get_checkout_session("cs_test_1")
    assert state.is_paid
    assert state.amount_total == Decimal("26.50")
    assert state.customer_email == "parent@example.com"
    assert state.metadata == {"print_order_id": "7"}
    assert state.payment_intent.id == "pi_1"
    assert state.payment_intent.customer == "cus_1"
    assert state.payment_intent.latest_charge == "ch_1"
    assert state.payment_intent.receipt_url == "https://pay.stripe.test/r/ch_1"
    assert state.created is not None


def test_missing_checkout_session_maps_to_not_found(gateway, monkeypatch):
    def fake_retrieve(session_id, **kwargs):
        raise stripe.InvalidRequestError("No such checkout.session", "id", http_status=404)

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    with pytest.raises(NotFound):
        gateway.get_checkout_session("cs_missing")


def test_stripe_errors_become_user_safe(gateway, monkeypatch):
    def fake_retrieve(session_id, **kwargs):
        raise stripe.APIConnectionError("connection reset by peer")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    with pytest.raises(PaymentGatewayError) as exc_info:
        gateway.get_checkout_session("cs_test_1")
    assert exc_info.value.status_code == 503
    assert "connection reset" not in exc_info.value.message


def test_user_safe_messages():
    card = stripe.CardError("Your card has insufficient funds.", "card", "card_declined")
    assert user_safe_message(card)
    assert user_safe_message(stripe.RateLimitError("slow down")).startswith("Too many requests")
    assert user_safe_message(stripe.AuthenticationError("bad key")) == "Payment service is temporarily unavailable."


def test_get_receipt_reads_latest_charge(gateway, monkeypatch):
    def fake_retrieve(intent_id, **kwargs):
        return {
            "id": intent_id,
            "customer": "cus_1",
            "latest_charge": {
                "id": "ch_1",
                "receipt_url": "https://pay.stripe.test/r/ch_1",
                "receipt_number": "1001-2002",
                "payment_method_details": {"type": "card"},
                "created": 1767614400,
            },
        }

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)
    receipt = gateway.get_receipt("pi_1")
    assert receipt.charge_id == "ch_1"
    assert receipt.receipt_number == "1001-2002"
    assert receipt.payment_method_type == "card"
    assert receipt.customer_id == "cus_1"
    assert receipt.paid_at.year == 2026


def test_create_refund(gateway, monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "re_1", "amount": 500, "currency": "usd", "status": "succeeded", "reason": "duplicate"}

    monkeypatch.setattr(stripe.Refund, "create", fake_create)
    refund = gateway.create_refund("pi_1", amount=Decimal("5.00"), reason="duplicate")
    assert captured["payment_intent"] == "pi_1"
    assert captured["amount"] == 500
    assert refund.amount == Decimal("5.00")
    assert refund.status == "succeeded"


def test_verify_webhook_accepts_valid_signature(gateway):
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}}).encode()
    event = gateway.verify_webhook(payload, _sign(payload))
    assert event["id"] == "evt_1"
    assert isinstance(event, dict)


def test_verify_webhook_rejects_bad_input(gateway):
    payload = json.dumps({"id": "evt_1"}).encode()
    with pytest.raises(InvalidSignature):
        gateway.verify_webhook(payload, None)
    with pytest.raises(InvalidSignature):
        gateway.verify_webhook(payload, _sign(payload, secret="whsec_other"))
    with pytest.raises(InvalidSignature):
        gateway.verify_webhook(payload, _sign(payload, timestamp=int(time.time()) - 3600))
    not_json = b"not json"
    with pytest.raises(InvalidSignature):
        gateway.verify_webhook(not_json, _sign(not_json))


def test_api_version_is_sent_per_request(monkeypatch):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "re_1", "amount": 1999, "currency": "usd", "status": "succeeded"}

    monkeypatch.setattr(stripe.Refund, "create", fake_create)
    pinned = StripeGateway(api_key="sk_test_123", api_version="2024-06-20")
    pinned.create_refund("pi_1")
    assert captured["stripe_version"] == "2024-06-20"
    assert captured["api_key"] == "sk_test_123"
    assert "amount" not in captured


def test_get_payment_intent(gateway, monkeypatch):
    def fake_retrieve(intent_id, **kwargs):
        assert kwargs["expand"] == ["latest_charge"]
        return {
            "id": intent_id,
            "status": "succeeded",
            "amount": 1999,
            "currency": "usd",
            "customer": "cus_1",
            "payment_method": {"id": "pm_1"},
            "latest_charge": {"id": "ch_1", "receipt_url": "https://pay.stripe.test/r/ch_1"},
            "metadata": {"personalized_book_id": "42"},
        }

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fake_retrieve)
    intent = gateway.get_payment_intent("pi_1")
    assert intent.amount == Decimal("19.99")
    assert intent.payment_method == "pm_1"
    assert intent.latest_charge == "ch_1"
    assert intent.receipt_url == "https://pay.stripe.test/r/ch_1"
    assert intent.metadata == {"personalized_book_id": "42"}
