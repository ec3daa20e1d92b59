from __future__ import annotations

from decimal import Decimal

import pytest

from storyprint import crud
from storyprint.api.errors import AccessDenied, NotFound, PreconditionFailed, ValidationFailed
from storyprint.core.snowflake import verify_reference_code
from storyprint.enums import OrderPaymentStatus, PaymentStatus, PrintOrderStatus, ReceiptStatus


def _book_checkout(book_service, gateway, user, book, amount=None):
    session_id = book_service.initiate_payment(book.id, user)["checkout_session_id"]
    intent_id = gateway.pay(session_id, amount=amount)
    return session_id, intent_id


def _completed_event(event_id, book, user, intent_id, *, amount_cents=1999, session_id="cs_evt"):
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_status": "paid",
                "payment_intent": intent_id,
                "amount_total": amount_cents,
                "currency": "usd",
                "customer": "cus_test",
                "metadata": {
                    "service": "personalized_book",
                    "personalized_book_id": str(book.id),
                    "user_id": str(user.id),
                },
            }
        },
    }


# ============================================================
# checkout and synchronous confirmation
# ============================================================


def test_initiate_payment(book_service, gateway, user, other_user, make_book):
    book = make_book(user, paid=False)
    result = book_service.initiate_payment(book.id, user)
    assert result["amount"] == Decimal("19.99")
    assert result["currency"] == "usd"
    created = gateway.created[-1]
    assert created["metadata"]["personalized_book_id"] == str(book.id)
    assert created["metadata"]["service"] == "personalized_book"
    assert created["customer"]["email"] == "parent@example.com"

    with pytest.raises(NotFound):
        book_service.initiate_payment(book.id, other_user)
    with pytest.raises(PreconditionFailed):
        book_service.initiate_payment(make_book(user).id, user)


def test_confirm_payment_marks_book_paid_and_writes_receipt(db, book_service, gateway, user, make_book):
    book = make_book(user, paid=False)
    session_id, intent_id = _book_checkout(book_service, gateway, user, book)

    result = book_service.confirm_payment_with_session(session_id, user)
    assert not result["already_processed"]
    assert result["book"].is_paid
    assert result["book"].payment_id == intent_id

    receipt = result["receipt"]
    assert verify_reference_code(receipt.reference_code)
    assert receipt.amount == Decimal("19.99")
    assert receipt.currency == "USD"
    assert receipt.status == ReceiptStatus.succeeded
    assert receipt.receipt_number == "1001-2002"
    assert receipt.payment_method == "card"
    assert receipt.book_details["book_title"] == "Mia and the Dragon"
    assert receipt.user_details["email"] == "parent@example.com"

    again = book_service.confirm_payment_with_session(session_id, user)
    assert again["already_processed"]
    assert again["receipt"].reference_code == receipt.reference_code
    assert crud.receipts.list_for_user(session=db, user_id=user.id)[1] == 1


def test_confirm_payment_rejections(db, book_service, print_service, gateway, user, other_user, make_book, order_data):
    book = make_book(user, paid=False)
    session_id = book_service.initiate_payment(book.id, user)["checkout_session_id"]

    with pytest.raises(PreconditionFailed):
        book_service.confirm_payment_with_session(session_id, user)

    gateway.pay(session_id, amount=Decimal("1.00"))
    with pytest.raises(AccessDenied):
        book_service.confirm_payment_with_session(session_id, other_user)
    with pytest.raises(ValidationFailed):
        book_service.confirm_payment_with_session(session_id, user)
    assert not crud.books.get(session=db, book_id=book.id).is_paid

    paid_book = make_book(user)
    order = print_service.create_print_order_with_cost(user.id, order_data(paid_book))["print_order"]
    print_session = print_service.create_print_order_checkout(order.id, user.id)["checkout_session_id"]
    with pytest.raises(ValidationFailed):
        book_service.confirm_payment_with_session(print_session, user)


# ============================================================
# webhook dispatch
# ============================================================


def test_webhook_book_purchase_is_idempotent(db, book_service, gateway, user, make_book):
    book = make_book(user, paid=False)
    session_id, intent_id = _book_checkout(book_service, gateway, user, book)
    event = _completed_event("evt_1", book, user, intent_id, session_id=session_id)

    result = book_service.handle_webhook_event(event)
    assert result == {
        "event_id": "evt_1",
        "event_type": "checkout.session.completed",
        "duplicate": False,
        "handled": True,
    }
    db.refresh(book)
    assert book.is_paid
    receipt = crud.receipts.get_by_payment_intent(session=db, payment_intent_id=intent_id)
    assert receipt.amount == Decimal("19.99")

    assert book_service.handle_webhook_event(event)["duplicate"]

    # the redirect confirmation arriving after the webhook merges into the same receipt
    confirmed = book_service.confirm_payment_with_session(session_id, user)
    assert confirmed["already_processed"]
    assert confirmed["receipt"].reference_code == receipt.reference_code


def test_webhook_payment_intent_succeeded(db, book_service, user, make_book):
    book = make_book(user, paid=False)
    event = {
        "id": "evt_pi",
        "type": "payment_intent.succeeded",
        "data": {
            "object": {
                "id": "pi_direct",
                "amount_received": 1999,
                "currency": "usd",
                "customer": "cus_test",
                "metadata": {"service": "personalized_book", "personalized_book_id": str(book.id)},
            }
        },
    }
    assert book_service.handle_webhook_event(event)["handled"]
    db.refresh(book)
    assert book.is_paid

    print_event = {
        "id": "evt_pi_print",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_print", "metadata": {"service": "print_order", "print_order_id": "1"}}},
    }
    assert not book_service.handle_webhook_event(print_event)["handled"]


def test_webhook_book_errors_are_not_recorded(db, book_service, user, make_book):
    book = make_book(user, paid=False)
    event = _completed_event("evt_missing", book, user, "pi_1")
    event["data"]["object"]["metadata"]["personalized_book_id"] = "123456"

    with pytest.raises(NotFound):
        book_service.handle_webhook_event(event)
    assert not crud.stripe_events.exists(session=db, event_id="evt_missing")

    mismatch = _completed_event("evt_mismatch", book, user, "pi_2")
    mismatch["data"]["object"]["metadata"]["user_id"] = str(user.id + 1)
    with pytest.raises(ValidationFailed):
        book_service.handle_webhook_event(mismatch)


def test_webhook_print_order_checkout(db, book_service, print_service, gateway, lulu, user, make_book, order_data):
    book = make_book(user)
    order = print_service.create_print_order_with_cost(user.id, order_data(book))["print_order"]
    session_id = print_service.create_print_order_checkout(order.id, user.id)["checkout_session_id"]
    gateway.pay(session_id)
    event = {
        "id": "evt_print",
        "type": "checkout.session.completed",
        "data": {"object": {"id": session_id, "payment_status": "paid", "metadata": {"print_order_id": str(order.id)}}},
    }

    lulu.fail_create = RuntimeError("boom")
    result = book_service.handle_webhook_event(event)
    assert not result["handled"]
    assert crud.stripe_events.exists(session=db, event_id="evt_print")
    assert crud.print_orders.get(session=db, order_id=order.id).status == PrintOrderStatus.error

    lulu.fail_create = None
    retry = dict(event, id="evt_print_2")
    with_resubmit = print_service.resubmit_print_order(order.id)
    assert with_resubmit["print_order"].status == PrintOrderStatus.in_production
    assert book_service.handle_webhook_event(retry)["handled"]
    assert len(lulu.jobs) == 1


def test_webhook_checkout_expired_marks_print_payment_failed(db, book_service, print_service, user, make_book, order_data):
    book = make_book(user)
    order = print_service.create_print_order_with_cost(user.id, order_data(book))["print_order"]
    session_id = print_service.create_print_order_checkout(order.id, user.id)["checkout_session_id"]

    event = {"id": "evt_exp", "type": "checkout.session.expired", "data": {"object": {"id": session_id}}}
    assert book_service.handle_webhook_event(event)["handled"]
    payment = crud.payments.get_by_session(session=db, checkout_session_id=session_id)
    db.refresh(payment)
    assert payment.status == PaymentStatus.failed


def test_webhook_payment_failed_and_unknown_events(db, book_service, gateway, user, make_book):
    book = make_book(user, paid=False)
    session_id, intent_id = _book_checkout(book_service, gateway, user, book)
    book_service.confirm_payment_with_session(session_id, user)

    failed = {"id": "evt_fail", "type": "payment_intent.payment_failed", "data": {"object": {"id": intent_id}}}
    assert book_service.handle_webhook_event(failed)["handled"]
    receipt = crud.receipts.get_by_payment_intent(session=db, payment_intent_id=intent_id)
    assert receipt.status == ReceiptStatus.failed

    unknown = {"id": "evt_unknown", "type": "customer.created", "data": {"object": {}}}
    result = book_service.handle_webhook_event(unknown)
    assert not result["handled"]
    assert not result["duplicate"]
    assert crud.stripe_events.exists(session=db, event_id="evt_unknown")

    with pytest.raises(ValidationFailed):
        book_service.handle_webhook_event({"type": "customer.created"})


def test_webhook_charge_refunded(db, book_service, print_service, gateway, user, make_book, order_data):
    book = make_book(user, paid=False)
    session_id, intent_id = _book_checkout(book_service, gateway, user, book)
    book_service.confirm_payment_with_session(session_id, user)

    event = {
        "id": "evt_refund",
        "type": "charge.refunded",
        "data": {
            "object": {
                "id": "ch_1",
                "payment_intent": intent_id,
                "amount_refunded": 500,
                "refunds": {"data": [{"reason": "duplicate"}]},
            }
        },
    }
    assert book_service.handle_webhook_event(event)["handled"]
    receipt = crud.receipts.get_by_payment_intent(session=db, payment_intent_id=intent_id)
    assert receipt.refunded
    assert receipt.refund_amount == Decimal("5.00")
    assert receipt.refund_reason == "duplicate"

    order = print_service.create_print_order_with_cost(user.id, order_data(book))["print_order"]
    print_session = print_service.create_print_order_checkout(order.id, user.id)["checkout_session_id"]
    print_intent = gateway.pay(print_session)
    print_service.handle_payment_success_callback(print_session)

    print_refund = {
        "id": "evt_refund_print",
        "type": "charge.refunded",
        "data": {"object": {"id": "ch_2", "payment_intent": print_intent, "amount_refunded": 2650}},
    }
    assert book_service.handle_webhook_event(print_refund)["handled"]
    payment = crud.payments.get_by_session(session=db, checkout_session_id=print_session)
    assert payment.status == PaymentStatus.refunded
    order = crud.print_orders.get(session=db, order_id=order.id)
    assert order.payment_status == OrderPaymentStatus.refunded


# ============================================================
# admin refunds
# ============================================================


def test_refund_receipt_accumulates(db, book_service, gateway, user, make_book):
    book = make_book(user, paid=False)
    session_id, intent_id = _book_checkout(book_service, gateway, user, book)
    reference = book_service.confirm_payment_with_session(session_id, user)["receipt"].reference_code

    first = book_service.refund_receipt(reference, amount=Decimal("5.00"), reason="damaged in transit")
    assert first["refund"].amount == Decimal("5.00")
    assert first["receipt"].refund_amount == Decimal("5.00")
    assert first["receipt"].refund_reason == "damaged in transit"
    assert gateway.refunds[-1]["reason"] == "requested_by_customer"

    with pytest.raises(ValidationFailed):
        book_service.refund_receipt(reference, amount=Decimal("20.00"))

    rest = book_service.refund_receipt(reference, reason="duplicate")
    assert rest["refund"].amount == Decimal("14.99")
    assert rest["receipt"].refund_amount == Decimal("19.99")
    assert gateway.refunds[-1] == {"payment_intent_id": intent_id, "amount": Decimal("14.99"), "reason": "duplicate"}

    with pytest.raises(PreconditionFailed):
        book_service.refund_receipt(reference)
    with pytest.raises(NotFound):
        book_service.refund_receipt("SPH-NOPE")
