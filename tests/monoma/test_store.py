"""In-memory user and payment request store."""

import re
from decimal import Decimal

import pytest

from monoma.errors import RecordNotFound
from monoma.store import InMemoryRequestStore, generate_payid


@pytest.fixture()
def store() -> InMemoryRequestStore:
    return InMemoryRequestStore()


def test_generate_payid():
    assert re.fullmatch(r"REQ\d+-\d+", generate_payid())


def test_upsert_user_creates_then_updates(store: InMemoryRequestStore):
    user, created = store.upsert_user("alice@example.com")
    assert created
    assert user.account is False
    assert user.smartwallets is None

    wallets = {"avalanche": "0x" + "a1" * 20}
    user, created = store.upsert_user("alice@example.com", smartwallets=wallets, account=True, chains="avalanche")
    assert not created
    assert user.smartwallets == wallets
    assert user.account is True
    assert user.updated_at >= user.created_at

    # Only the given fields change
    user, _ = store.upsert_user("alice@example.com", destined_address="0x" + "de" * 20)
    assert user.chains == "avalanche"
    assert store.get_user("alice@example.com").destined_address == "0x" + "de" * 20


def test_upsert_existing_user_needs_fields(store: InMemoryRequestStore):
    store.upsert_user("bob@example.com")
    with pytest.raises(ValueError):
        store.upsert_user("bob@example.com")
    with pytest.raises(ValueError):
        store.upsert_user("")


def test_update_user(store: InMemoryRequestStore):
    with pytest.raises(RecordNotFound):
        store.update_user("nobody@example.com", account=True)

    store.upsert_user("carol@example.com")
    user = store.update_user("carol@example.com", account=True, chains="base,arbitrum")
    assert user.account is True
    assert user.chains == "base,arbitrum"

    with pytest.raises(ValueError):
        store.update_user("carol@example.com")


def test_create_payment_request(store: InMemoryRequestStore):
    request = store.create_payment_request("alice@example.com", "12.50", description="Invoice 42")
    assert re.fullmatch(r"REQ\d+-\d+", request.payid)
    assert request.amount == Decimal("12.50")

    data = request.as_dict()
    assert data["amount"] == "12.50"
    assert data["descriptions"] == "Invoice 42"
    assert data["status"] is None

    assert store.get_payment_request(request.payid) == request


def test_create_payment_request_validation(store: InMemoryRequestStore):
    with pytest.raises(ValueError):
        store.create_payment_request("", "1")
    with pytest.raises(ValueError):
        store.create_payment_request("alice@example.com", None)
    with pytest.raises(ValueError):
        store.create_payment_request("alice@example.com", "0")
    with pytest.raises(ValueError):
        store.create_payment_request("alice@example.com", "abc")

    store.create_payment_request("alice@example.com", 5, payid="REQ1-1")
    with pytest.raises(ValueError):
        store.create_payment_request("alice@example.com", 5, payid="REQ1-1")


def test_list_payment_requests_newest_first(store: InMemoryRequestStore):
    first = store.create_payment_request("alice@example.com", "1", payid="REQ1-1")
    store.create_payment_request("bob@example.com", "2", payid="REQ1-2")
    third = store.create_payment_request("alice@example.com", "3", payid="REQ1-3")

    listed = store.list_payment_requests("alice@example.com")
    assert [r.payid for r in listed] == [third.payid, first.payid]
    assert store.list_payment_requests("nobody@example.com") == []


def test_update_payment_request_records_history(store: InMemoryRequestStore):
    request = store.create_payment_request("alice@example.com", "1", payid="REQ1-1", status="pending")

    store.update_payment_request(request.payid, status="settling")
    updated = store.update_payment_request(request.payid, status="paid", hash="0x" + "02" * 32)

    assert updated.status == "paid"
    assert updated.hash == "0x" + "02" * 32
    assert updated.amount == request.amount

    history = store.get_request_history(request.payid)
    assert [h.changes for h in history] == [
        {"created": True, "status": "pending", "hash": None},
        {"status": "settling"},
        {"status": "paid", "hash": "0x" + "02" * 32},
    ]


def test_update_payment_request_errors(store: InMemoryRequestStore):
    with pytest.raises(RecordNotFound):
        store.update_payment_request("REQ0-0", status="paid")
    with pytest.raises(RecordNotFound):
        store.get_payment_request("REQ0-0")
    with pytest.raises(RecordNotFound):
        store.get_request_history("REQ0-0")

    store.create_payment_request("alice@example.com", "1", payid="REQ1-1")
    with pytest.raises(ValueError):
        store.update_payment_request("REQ1-1")
