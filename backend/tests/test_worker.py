from __future__ import annotations

import pytest
import redis

from storyprint import crud
from storyprint.api.errors import VendorError
from storyprint.core.redis import acquire_lock, release_lock
from storyprint.enums import PrintOrderStatus
from storyprint.services.print_orders import PrintOrderService
from storyprint.worker import tasks


class FakeRedis:
    """Just enough of SET NX EX and the compare-and-delete script."""

    def __init__(self, *, broken: bool = False) -> None:
        self.store: dict[str, str] = {}
        self.expiry: dict[str, int] = {}
        self.broken = broken

    def set(self, key, value, ex=None, nx=False):
        if self.broken:
            raise redis.ConnectionError("redis is down")
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expiry[key] = ex
        return True

    def eval(self, script, numkeys, key, value):
        if self.broken:
            raise redis.ConnectionError("redis is down")
        if self.store.get(key) == value:
            del self.store[key]
            return 1
        return 0


def test_lock_helpers():
    client = FakeRedis()
    assert acquire_lock(client, "lock", "a", expire_seconds=30)
    assert client.expiry["lock"] == 30
    assert not acquire_lock(client, "lock", "b")
    assert not release_lock(client, "lock", "b")
    assert release_lock(client, "lock", "a")
    assert acquire_lock(client, "lock", "b")


def test_lock_helpers_swallow_redis_errors():
    client = FakeRedis(broken=True)
    assert not acquire_lock(client, "lock", "a")
    assert not release_lock(client, "lock", "a")


@pytest.fixture
def fake_redis(monkeypatch) -> FakeRedis:
    client = FakeRedis()
    monkeypatch.setattr(tasks, "get_redis", lambda: client)
    return client


def test_sweep_skips_when_lock_is_held(monkeypatch, fake_redis):
    fake_redis.store[tasks.SWEEP_LOCK_KEY] = "someone-else"

    def fail(session):
        raise AssertionError("sweep must not run without the lock")

    monkeypatch.setattr(tasks, "build_print_order_service", fail)
    assert tasks.sweep_pending_payments() is None
    assert fake_redis.store[tasks.SWEEP_LOCK_KEY] == "someone-else"


def test_sweep_releases_lock_on_failure(monkeypatch, engine, fake_redis):
    class Exploding:
        def process_pending_payments(self, *, retry_errored):
            raise RuntimeError("database went away")

    monkeypatch.setattr(tasks, "engine", engine)
    monkeypatch.setattr(tasks, "build_print_order_service", lambda session: Exploding())
    with pytest.raises(RuntimeError):
        tasks.sweep_pending_payments()
    assert tasks.SWEEP_LOCK_KEY not in fake_redis.store


def test_sweep_reconciles_paid_checkouts(
    monkeypatch, engine, db, fake_redis, gateway, lulu, storage, renderer, print_service, user, make_book, order_data
):
    paid_book = make_book(user)
    paid = print_service.create_print_order_with_cost(user.id, order_data(paid_book))["print_order"]
    gateway.pay(print_service.create_print_order_checkout(paid.id, user.id)["checkout_session_id"])
    open_order = print_service.create_print_order_with_cost(user.id, order_data(paid_book))["print_order"]
    print_service.create_print_order_checkout(open_order.id, user.id)

    calls = []

    def build(session):
        calls.append(session)
        return PrintOrderService(
            session=session, gateway=gateway, fulfillment=lulu, storage=storage, renderer=renderer
        )

    monkeypatch.setattr(tasks, "engine", engine)
    monkeypatch.setattr(tasks, "build_print_order_service", build)

    result = tasks.sweep_pending_payments()
    assert result == {"processed": 1, "failed": 0, "skipped": 1, "errors": []}
    assert len(calls) == 1
    assert tasks.SWEEP_LOCK_KEY not in fake_redis.store

    db.expire_all()
    assert crud.print_orders.get(session=db, order_id=paid.id).status == PrintOrderStatus.in_production
    assert crud.print_orders.get(session=db, order_id=open_order.id).status == PrintOrderStatus.draft


def test_sweep_leaves_errored_orders_for_admin(
    monkeypatch, engine, db, fake_redis, gateway, lulu, storage, renderer, print_service, user, make_book, order_data
):
    book = make_book(user)
    order = print_service.create_print_order_with_cost(user.id, order_data(book))["print_order"]
    session_id = print_service.create_print_order_checkout(order.id, user.id)["checkout_session_id"]
    gateway.pay(session_id)
    lulu.fail_create = RuntimeError("boom")
    with pytest.raises(VendorError):
        print_service.handle_payment_success_callback(session_id)
    lulu.fail_create = None

    monkeypatch.setattr(tasks, "engine", engine)
    monkeypatch.setattr(
        tasks,
        "build_print_order_service",
        lambda session: PrintOrderService(
            session=session, gateway=gateway, fulfillment=lulu, storage=storage, renderer=renderer
        ),
    )
    result = tasks.sweep_pending_payments()
    assert result["processed"] == 0
    assert result["skipped"] == 1
    assert lulu.jobs == {}
