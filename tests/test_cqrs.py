import json

import pytest
from werkzeug.test import Client

from finpay.cqrs import Payment, PaymentStore, create_app


def test_store_credit_and_debit():
    store = PaymentStore()
    store.record(Payment(user_id="U1", amount=100.0, type="credit", tx_id="T1"))
    store.record(Payment(user_id="U1", amount=30.0, type="debit", tx_id="T2"))
    assert store.balance("U1") == 70.0
    assert [p.tx_id for p in store.ledger()] == ["T1", "T2"]


def test_unknown_type_is_ledgered_but_not_counted():
    store = PaymentStore()
    store.record(Payment(user_id="U1", amount=50.0, type="refund", tx_id="T9"))
    assert store.balance("U1") == 0.0
    assert len(store.ledger()) == 1


def test_unknown_user_has_zero_balance():
    assert PaymentStore().balance("nobody") == 0.0


def test_ledger_is_a_copy():
    store = PaymentStore()
    store.record(Payment(user_id="U1", amount=5.0, type="credit", tx_id="T1"))
    snapshot = store.ledger()
    snapshot.clear()
    assert len(store.ledger()) == 1


def test_command_then_query_round_trip():
    store = PaymentStore()
    client = Client(create_app(store))
    response = client.post(
        "/command/pay", json={"user_id": "U1", "amount": 100, "type": "credit", "tx_id": "T1"}
    )
    assert response.status_code == 200
    assert json.loads(response.get_data(as_text=True)) == {"status": "ok", "tx_id": "T1"}
    assert response.headers["Content-Type"] == "application/json"

    query = client.get("/query/balance?user=U1")
    assert query.get_data(as_text=True) == '{"user":"U1","balance":100.00}'
    assert store.ledger() == [Payment(user_id="U1", amount=100.0, type="credit", tx_id="T1")]


def test_query_unknown_user():
    text = Client(create_app()).get("/query/balance?user=U9").get_data(as_text=True)
    assert json.loads(text) == {"user": "U9", "balance": 0.0}


@pytest.mark.parametrize("payload", [b"{oops", b"", b'{"amount": "ten"}', b'{"user_id": 5}', b"[]"])
def test_bad_json_is_rejected(payload):
    store = PaymentStore()
    response = Client(create_app(store)).post("/command/pay", data=payload)
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "bad json\n"
    assert store.ledger() == []


def test_missing_fields_take_defaults():
    store = PaymentStore()
    Client(create_app(store)).post("/command/pay", json={"user_id": "U2"})
    assert store.ledger() == [Payment(user_id="U2")]


def test_unknown_route():
    assert Client(create_app()).get("/command").status_code == 404