from __future__ import annotations

import dataclasses
import itertools
import json
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, delete

from storyprint import crud
from storyprint.api.deps import (
    get_db,
    get_fulfillment_client,
    get_payment_gateway,
    get_pdf_renderer,
    get_storage,
)
from storyprint.api.errors import InvalidSignature, NotFound
from storyprint.core import security
from storyprint.integrations.stripe_gateway import (
    ChargeReceipt,
    CheckoutSession,
    CheckoutSessionState,
    PaymentIntentInfo,
    RefundResult,
    StripeGateway,
)
from storyprint.main import app
from storyprint.models import (
    PersonalizedBook,
    PrintOrder,
    PrintOrderPayment,
    PrintServiceOption,
    Receipt,
    StripeEvent,
    User,
)
from storyprint.services.book_layout import calculate_book_page_count
from storyprint.services.book_payments import BookPaymentService
from storyprint.services.book_pdf import RenderedPdf
from storyprint.services.print_orders import PrintOrderService

VALID_SIGNATURE = "t=1,v1=valid"

SHIPPING_ADDRESS = {
    "name": "Ada Parent",
    "street1": "1 Main St",
    "city": "Raleigh",
    "state_code": "NC",
    "country_code": "US",
    "postcode": "27601",
    "phone_number": "919-555-0100",
}


# ============================================================
# Fakes for external collaborators
# ============================================================


class FakeGateway:
    """In-memory Stripe: sessions are opened unpaid and paid/expired by the test."""

    currency = "usd"
    validate_payment_amount = staticmethod(StripeGateway.validate_payment_amount)

    def __init__(self) -> None:
        self.sessions: dict[str, CheckoutSessionState] = {}
        self.created: list[dict[str, Any]] = []
        self.refunds: list[dict[str, Any]] = []
        self.intent_amounts: dict[str, Decimal] = {}
        self._seq = itertools.count(1)

    def create_checkout_session(
        self,
        *,
        amount: Decimal,
        metadata: dict[str, Any],
        customer: dict[str, Any] | None,
        success_url: str,
        cancel_url: str,
        product_name: str = "Personalized book",
        description: str | None = None,
        currency: str | None = None,
    ) -> CheckoutSession:
        session_id = f"cs_test_{next(self._seq)}"
        meta = {"service": "personalized_book", **{k: str(v) for k, v in metadata.items()}}
        self.created.append(
            {
                "id": session_id,
                "amount": amount,
                "metadata": meta,
                "customer": customer,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "product_name": product_name,
            }
        )
        url = f"https://checkout.stripe.test/{session_id}"
        self.sessions[session_id] = CheckoutSessionState(
            id=session_id,
            status="open",
            payment_status="unpaid",
            amount_total=Decimal(amount).quantize(Decimal("0.01")),
            currency=currency or self.currency,
            customer_email=(customer or {}).get("email"),
            metadata=meta,
            url=url,
        )
        return CheckoutSession(id=session_id, url=url)

    def pay(self, session_id: str, *, amount: Decimal | None = None) -> str:
        state = self.sessions[session_id]
        intent_id = f"pi_{session_id}"
        paid = amount if amount is not None else state.amount_total
        self.intent_amounts[intent_id] = paid
        self.sessions[session_id] = dataclasses.replace(
            state,
            status="complete",
            payment_status="paid",
            amount_total=paid,
            payment_intent=PaymentIntentInfo(
                id=intent_id,
                status="succeeded",
                amount=paid,
                customer="cus_test",
                payment_method="pm_card_visa",
                receipt_url=f"https://pay.stripe.test/receipts/{intent_id}",
            ),
        )
        return intent_id

    def expire(self, session_id: str) -> None:
        self.sessions[session_id] = dataclasses.replace(self.sessions[session_id], status="expired")

    def get_checkout_session(self, session_id: str) -> CheckoutSessionState:
        if session_id not in self.sessions:
            raise NotFound(message="Checkout session not found")
        return self.sessions[session_id]

    def get_receipt(self, payment_intent_id: str) -> ChargeReceipt:
        return ChargeReceipt(
            charge_id=f"ch_{payment_intent_id}",
            receipt_url=f"https://pay.stripe.test/receipts/{payment_intent_id}",
            receipt_number="1001-2002",
            payment_method_type="card",
            customer_id="cus_test",
            paid_at=datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc),
        )

    def verify_webhook(
        self, payload: bytes, signature: str | None, secret: str | None = None
    ) -> dict[str, Any]:
        if signature != VALID_SIGNATURE:
            raise InvalidSignature(message="Invalid webhook signature")
        return json.loads(payload)

    def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal | None = None,
        reason: str = "requested_by_customer",
    ) -> RefundResult:
        refunded = sum(
            (r["amount"] for r in self.refunds if r["payment_intent_id"] == payment_intent_id),
            Decimal("0.00"),
        )
        value = amount if amount is not None else self.intent_amounts.get(payment_intent_id, Decimal("0")) - refunded
        self.refunds.append({"payment_intent_id": payment_intent_id, "amount": value, "reason": reason})
        return RefundResult(
            id=f"re_{len(self.refunds)}",
            amount=value,
            currency=self.currency,
            status="succeeded",
            reason=reason,
            created=None,
        )


class FakeLulu:
    """Lulu stand-in: validations pass immediately, jobs get sequential ids."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.jobs: dict[str, dict[str, Any]] = {}
        self.statuses: dict[str, dict[str, Any]] = {}
        self.canceled: list[str] = []
        self.fail_create: Exception | None = None
        self.fail_cost: list[Exception] = []
        self.fail_status: Exception | None = None

    def calculate_print_job_cost(
        self, line_items: list[dict[str, Any]], shipping_address: dict[str, Any], shipping_option: str
    ) -> dict[str, Any]:
        self.calls.append(("cost", {"line_items": line_items, "shipping_option": shipping_option}))
        if self.fail_cost:
            raise self.fail_cost.pop(0)
        return {
            "total_cost_excl_tax": "20.00",
            "total_tax": "1.50",
            "total_cost_incl_tax": "21.50",
            "total_discount_amount": "0.00",
            "currency": "USD",
            "shipping_cost": {"total_cost_incl_tax": "5.00"},
        }

    def calculate_cover_dimensions(
        self, pod_package_id: str, interior_page_count: int, unit: str = "pt"
    ) -> dict[str, Any]:
        self.calls.append(("cover_dimensions", interior_page_count))
        return {"width": "1260.00", "height": "630.00", "unit": "pt"}

    def validate_interior_file(self, source_url: str, pod_package_id: str) -> str:
        self.calls.append(("validate_interior", source_url))
        return "101"

    def validate_cover_file(self, source_url: str, pod_package_id: str, interior_page_count: int) -> str:
        self.calls.append(("validate_cover", (source_url, interior_page_count)))
        return "202"

    def wait_for_validation(self, validation_id: str, kind: str, max_attempts: int | None = None) -> dict[str, Any]:
        self.calls.append(("wait", kind))
        return {"id": validation_id, "status": "VALIDATED"}

    def create_print_job(self, payload: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(("create_job", payload))
        if self.fail_create is not None:
            raise self.fail_create
        job_id = str(9000 + len(self.jobs) + 1)
        self.jobs[job_id] = payload
        return {
            "id": int(job_id),
            "status": {"name": "CREATED", "message": "Print job created"},
            "date_created": "2026-01-05T12:00:00Z",
            "shipping_level": payload["shipping_level"],
            "line_items": [
                {"id": 1, "title": li["title"], "quantity": li["quantity"], "status": {"name": "CREATED"}}
                for li in payload["line_items"]
            ],
            "costs": {"total_cost_incl_tax": "21.50"},
        }

    def get_print_job_status(self, job_id: str) -> dict[str, Any]:
        if self.fail_status is not None:
            raise self.fail_status
        return self.statuses.get(job_id, {"name": "IN_PRODUCTION"})

    def cancel_print_job(self, job_id: str) -> dict[str, Any]:
        self.canceled.append(job_id)
        return {"name": "CANCELED"}

    def get_shipping_options(
        self, line_items: list[dict[str, Any]], shipping_address: dict[str, Any], currency: str = "USD"
    ) -> list[dict[str, Any]]:
        return [
            {"level": "MAIL", "cost_excl_tax": "3.99", "currency": currency},
            {"level": "GROUND", "cost_excl_tax": "5.00", "currency": currency},
        ]

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeStorage:
    def __init__(self) -> None:
        self.uploads: dict[str, bytes] = {}

    def upload_bytes(self, *, name: str, data: bytes, content_type: str = "application/pdf") -> str:
        self.uploads[name] = data
        return f"https://files.storyprint.test/books/pdfs/{name}"


class FakeRenderer:
    """Emits exactly the page count the layout rules predict."""

    def render_interior(self, book: Any, *, trim_size: str | None = None) -> RenderedPdf:
        return RenderedPdf(data=b"%PDF-1.4 interior", page_count=calculate_book_page_count(book))

    def render_cover(
        self, book: Any, *, trim_size: str | None = None, cover_size: tuple[float, float] | None = None
    ) -> RenderedPdf:
        return RenderedPdf(data=b"%PDF-1.4 cover", page_count=1)


# ============================================================
# Database / app fixtures
# ============================================================


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        session.rollback()
        # Clean tables after each test (children first).
        session.exec(delete(StripeEvent))
        session.exec(delete(Receipt))
        session.exec(delete(PrintOrderPayment))
        session.exec(delete(PrintOrder))
        session.exec(delete(PrintServiceOption))
        session.exec(delete(PersonalizedBook))
        session.exec(delete(User))
        session.commit()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def lulu() -> FakeLulu:
    return FakeLulu()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def print_service(db, gateway, lulu, storage, renderer) -> PrintOrderService:
    return PrintOrderService(
        session=db, gateway=gateway, fulfillment=lulu, storage=storage, renderer=renderer
    )


@pytest.fixture
def book_service(db, gateway, print_service) -> BookPaymentService:
    return BookPaymentService(session=db, gateway=gateway, print_orders=print_service)


@pytest.fixture(scope="function")
def client(engine, db, gateway, lulu, storage, renderer) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_fulfillment_client] = lambda: lulu
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_pdf_renderer] = lambda: renderer
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ============================================================
# Domain fixtures
# ============================================================


def chapters(count: int, *, full_scene: int = 0) -> list[dict[str, Any]]:
    return [
        {
            "chapter_title": f"Chapter {i + 1}",
            "chapter_content": f"Once upon a time, part {i + 1}.",
            "image_url": f"https://images.storyprint.test/{i + 1}.png",
            "image_position": "full scene" if i < full_scene else "top third",
        }
        for i in range(count)
    ]


@pytest.fixture
def user(db) -> User:
    return crud.users.create(session=db, email="parent@example.com", name="Ada Parent", username="ada")


@pytest.fixture
def other_user(db) -> User:
    return crud.users.create(session=db, email="stranger@example.com", name="Other")


@pytest.fixture
def admin(db) -> User:
    return crud.users.create(session=db, email="admin@example.com", name="Admin", is_admin=True)


@pytest.fixture
def make_book(db) -> Callable[..., PersonalizedBook]:
    def _make(
        owner: User,
        *,
        paid: bool = True,
        chapter_count: int = 12,
        full_scene: int = 0,
        dedication: str | None = "For Mia, with love",
        price: Decimal = Decimal("19.99"),
    ) -> PersonalizedBook:
        book = crud.books.create(
            session=db,
            user_id=owner.id,
            original_template_id="tpl_dragon",
            child_name="Mia",
            child_age=5,
            dedication_message=dedication,
            price=price,
            personalized_content={
                "book_title": "Mia and the Dragon",
                "genre": "adventure",
                "author": "StoryPrint",
                "chapters": chapters(chapter_count, full_scene=full_scene),
            },
        )
        if paid:
            crud.books.mark_paid(session=db, book_id=book.id, payment_id=f"pi_book_{book.id}")
            db.refresh(book)
        return book

    return _make


@pytest.fixture
def option(db) -> PrintServiceOption:
    return crud.print_orders.create_service_option(
        session=db,
        data={
            "name": "Standard Paperback",
            "pod_package_id": "0850X0850FCSTDPB080CW444GXX",
            "category": "paperback",
            "trim_size": "8.5x8.5",
            "color": "fc",
            "print_quality": "standard",
            "binding": "Perfect",
            "paper_type": "80# Coated White",
            "paper_ppi": 444,
            "cover_finish": "gloss",
            "base_price": Decimal("5.00"),
            "min_pages": 2,
            "max_pages": 800,
        },
    )


@pytest.fixture
def order_data(option) -> Callable[[PersonalizedBook], dict[str, Any]]:
    def _data(book: PersonalizedBook, **overrides: Any) -> dict[str, Any]:
        data = {
            "personalized_book_id": book.id,
            "service_option_id": option.id,
            "quantity": 1,
            "shipping_address": dict(SHIPPING_ADDRESS),
            "shipping_level": "GROUND",
            "contact_email": "parent@example.com",
            "production_delay": 60,
        }
        data.update(overrides)
        return data

    return _data


def auth_headers(user: User) -> dict[str, str]:
    token = security.create_access_token(user.id, expires_delta=timedelta(minutes=30))
    return {"Authorization": f"Bearer {token}"}
