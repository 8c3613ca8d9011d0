import json
from datetime import datetime, timezone

import httpx
import pytest
from werkzeug.test import Client

from finpay.events import (
    LedgerEntry,
    PaymentAuthorized,
    create_ledger_app,
    create_payments_app,
    is_approved,
    publish_event,
    to_ledger_entry,
)
from finpay.sidecar import enrich, new_tx_id, AuditEvent

MOMENT = datetime(2024, 5, 1, 12, 30, 45, 250000, tzinfo=timezone.utc)


class FixedRandom:
    def __init__(self, value):
        self.value = value

    def randrange(self, stop):
        return self.value


class NoRandom:
    def randrange(self, stop):
        raise AssertionError("random source must not be used")


def sample_event(**changes):
    base = dict(
        event="payment_authorized",
        tx_id="T7",
        user_id="U1",
        amount=250.0,
        currency="USD",
        merchant_id="M1",
        when="2024-05-01T12:30:45Z",
    )
    base.update(changes)
    return PaymentAuthorized(**base)


def utc_stamp(moment):
    return enrich(AuditEvent(), moment).timestamp


def test_to_ledger_entry_accounts():
    event = sample_event()
    entry = to_ledger_entry(event, MOMENT)
    assert entry == LedgerEntry(
        tx_id="T7",
        debit="customer_clearing",
        credit="merchant_receivable",
        amount=250.0,
        currency="USD",
        posted_at=utc_stamp(MOMENT),
        reference="payment_authorized",
    )


def test_ledger_entry_dict_order():
    keys = list(to_ledger_entry(sample_event(), MOMENT).to_dict())
    assert keys == ["tx_id", "debit", "credit", "amount", "currency", "posted_at", "reference"]


def test_payment_authorized_round_trip():
    event = sample_event(amount=99.5)
    assert PaymentAuthorized.from_json(json.dumps(event.to_dict())) == event


def test_payment_authorized_rejects_wrong_types():
    with pytest.raises(ValueError):
        PaymentAuthorized.from_json('{"amount": true}')
    with pytest.raises(ValueError):
        PaymentAuthorized.from_json('{"tx_id": 5}')


def test_is_approved_small_amount_skips_random():
    assert is_approved(1000, NoRandom()) is True


@pytest.mark.parametrize("roll, expected", [(0, True), (69, True), (70, False), (99, False)])
def test_is_approved_large_amount(roll, expected):
    assert is_approved(5000, FixedRandom(roll)) is expected


def test_ledger_rejects_non_post():
    response = Client(create_ledger_app(sink=lambda e: None)).get("/events")
    assert response.status_code == 405
    assert response.get_data(as_text=True) == "use POST\n"


def test_ledger_rejects_bad_json():
    response = Client(create_ledger_app(sink=lambda e: None)).post("/events", data="{")
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "invalid JSON\n"


def test_ledger_rejects_other_events():
    stored = []
    app = create_ledger_app(sink=stored.append)
    response = Client(app).post("/events", json=sample_event(event="payment_refunded").to_dict())
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "unsupported event\n"
    assert stored == []


def test_ledger_posts_entry():
    stored = []
    app = create_ledger_app(sink=stored.append, clock=lambda: MOMENT)
    event = sample_event()
    response = Client(app).post("/events", json=event.to_dict())
    assert response.status_code == 202
    assert stored == [to_ledger_entry(event, MOMENT)]


def test_payments_app_emits_when_approved():
    emitted = []
    app = create_payments_app(rng=NoRandom(), clock=lambda: MOMENT, publisher=emitted.append)
    response = Client(app).post(
        "/authorize",
        json={"user_id": "U1", "amount": 250, "currency": "USD", "merchant_id": "M1"},
    )
    body = json.loads(response.get_data())
    assert list(body) == ["approved", "status", "tx_id"]
    assert body == {"approved": True, "status": "authorized", "tx_id": new_tx_id(MOMENT)}
    assert emitted == [
        PaymentAuthorized(
            event="payment_authorized",
            tx_id=new_tx_id(MOMENT),
            user_id="U1",
            amount=250.0,
            currency="USD",
            merchant_id="M1",
            when=utc_stamp(MOMENT),
        )
    ]


def test_payments_app_declined_emits_nothing():
    emitted = []
    app = create_payments_app(rng=FixedRandom(90), clock=lambda: MOMENT, publisher=emitted.append)
    response = Client(app).post("/authorize", json={"user_id": "U1", "amount": 5000})
    body = json.loads(response.get_data())
    assert body["approved"] is False
    assert body["status"] == "declined"
    assert emitted == []


def test_payments_app_bad_json():
    emitted = []
    app = create_payments_app(rng=NoRandom(), clock=lambda: MOMENT, publisher=emitted.append)
    response = Client(app).post("/authorize", data="[")
    assert response.status_code == 400
    assert emitted == []


def test_publish_event_posts_json():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(202)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        assert publish_event(sample_event(), "http://ledger.test/events", client) is True
    assert str(seen[0].url) == "http://ledger.test/events"
    assert seen[0].method == "POST"
    assert PaymentAuthorized.from_json(seen[0].content) == sample_event()


def test_publish_event_reports_failure():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        assert publish_event(sample_event(), "http://ledger.test/events", client) is False