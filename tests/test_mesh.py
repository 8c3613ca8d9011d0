import json
from datetime import datetime

import httpx
import pytest
from werkzeug.test import Client

from finpay.mesh import (
    SLOW_DELAY,
    LedgerResult,
    MeshProxy,
    PayRequest,
    create_ledger_app,
    create_payments_app,
    random_id,
)
from finpay.sidecar import new_tx_id

MESH_HEADERS = {"X-Mesh-mTLS": "true", "X-Service-Identity": "payments"}
MOMENT = datetime(2024, 5, 6, 7, 8, 9, 123000)
PAYMENT = {"user_id": "U1", "amount": 250, "currency": "USD", "merchant_id": "M9"}


class FixedRandom:
    def __init__(self, *values):
        self._values = list(values)
        self.calls = 0

    def randrange(self, stop):
        self.calls += 1
        return self._values.pop(0)


def ledger(*rolls, sleeps=None):
    recorded = sleeps if sleeps is not None else []
    return create_ledger_app(rng=FixedRandom(*rolls), clock=lambda: MOMENT, sleep=recorded.append)


def post(app, path, payload, headers=None):
    body = payload if isinstance(payload, str) else json.dumps(payload)
    return Client(app).post(path, data=body, headers=headers or {}, content_type="application/json")


def failing_client():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    return httpx.Client(transport=httpx.MockTransport(handler))


def test_random_id_is_hex_and_unique():
    first, second = random_id(), random_id()
    assert len(first) == 16
    int(first, 16)
    assert first != second


def test_pay_request_round_trip():
    req = PayRequest.from_json(json.dumps(PAYMENT))
    assert req.to_dict() == PAYMENT


def test_ledger_result_to_dict():
    result = LedgerResult(status="posted", tx_id="T1", amount=5.0, currency="USD")
    assert result.to_dict() == {"status": "posted", "tx_id": "T1", "amount": 5, "currency": "USD"}


def test_ledger_rejects_without_mesh_identity():
    rng = FixedRandom(50)
    app = create_ledger_app(rng=rng, clock=lambda: MOMENT, sleep=lambda s: None)
    resp = post(app, "/ledger/debit", PAYMENT, {"X-Mesh-mTLS": "true"})
    assert resp.status_code == 401
    assert "unauthenticated_mesh" in resp.get_data(as_text=True)
    assert rng.calls == 0


def test_ledger_posts_debit():
    resp = post(ledger(50), "/ledger/debit", PAYMENT, MESH_HEADERS)
    assert resp.status_code == 200
    assert json.loads(resp.get_data()) == {
        "status": "posted",
        "tx_id": new_tx_id(MOMENT),
        "amount": 250,
        "currency": "USD",
    }


def test_ledger_slow_path_sleeps_then_posts():
    sleeps = []
    resp = post(ledger(5, sleeps=sleeps), "/ledger/debit", PAYMENT, MESH_HEADERS)
    assert sleeps == [SLOW_DELAY]
    assert json.loads(resp.get_data())["status"] == "posted"


def test_ledger_temporary_failure():
    resp = post(ledger(25), "/ledger/debit", PAYMENT, MESH_HEADERS)
    assert resp.status_code == 500
    assert "temporary_storage_error" in resp.get_data(as_text=True)


def test_ledger_invalid_json():
    resp = post(ledger(50), "/ledger/debit", "{oops", MESH_HEADERS)
    assert resp.status_code == 400


def proxy_over(app, **kwargs):
    client = httpx.Client(transport=httpx.WSGITransport(app=app))
    return MeshProxy(upstream_url="http://ledger", client=client, **kwargs)


def test_proxy_adds_identity_and_keeps_trace_id():
    proxy = proxy_over(ledger(50))
    resp = post(proxy, "/ledger/debit", PAYMENT, {"X-Request-ID": "trace-1"})
    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "trace-1"
    assert json.loads(resp.get_data())["amount"] == 250
    assert proxy.total_requests == 1
    assert proxy.total_retries == 0


def test_proxy_generates_trace_id_when_missing():
    proxy = proxy_over(ledger(50), id_factory=lambda: "generated")
    resp = post(proxy, "/ledger/debit", PAYMENT)
    assert resp.headers["X-Request-ID"] == "generated"


def test_proxy_retries_on_server_errors():
    proxy = proxy_over(ledger(25, 25, 50))
    resp = post(proxy, "/ledger/debit", PAYMENT)
    assert resp.status_code == 200
    assert proxy.total_retries == 2


def test_proxy_passes_back_last_server_error():
    proxy = proxy_over(ledger(25, 25, 25))
    resp = post(proxy, "/ledger/debit", PAYMENT)
    assert resp.status_code == 500
    assert "temporary_storage_error" in resp.get_data(as_text=True)


def test_proxy_unreachable_upstream():
    proxy = MeshProxy(upstream_url="http://ledger", client=failing_client())
    resp = post(proxy, "/ledger/debit", PAYMENT)
    assert resp.status_code == 502
    assert "upstream_timeout_or_unreachable" in resp.get_data(as_text=True)
    assert proxy.total_retries == 2


def test_proxy_recovers_after_transport_error():
    replies = iter([None, httpx.Response(200, json={"ok": True})])
    seen = []

    def handler(request):
        seen.append(request)
        reply = next(replies)
        if reply is None:
            raise httpx.ReadTimeout("slow", request=request)
        return reply

    proxy = MeshProxy(upstream_url="http://ledger", client=httpx.Client(transport=httpx.MockTransport(handler)))
    resp = post(proxy, "/ledger/debit", PAYMENT, {"X-Service-Identity": "spoofed"})
    assert resp.status_code == 200
    assert json.loads(resp.get_data()) == {"ok": True}
    assert len(seen) == 2
    assert seen[0].headers["X-Service-Identity"] == "payments"
    assert seen[0].headers["X-Mesh-mTLS"] == "true"
    assert str(seen[0].url) == "http://ledger/ledger/debit"
    assert json.loads(seen[1].content) == PAYMENT


def test_payments_through_mesh_to_ledger():
    proxy = proxy_over(ledger(50))
    mesh_client = httpx.Client(transport=httpx.WSGITransport(app=proxy))
    app = create_payments_app(mesh_url="http://mesh/ledger/debit", client=mesh_client)
    resp = post(app, "/pay", PAYMENT)
    assert resp.status_code == 200
    assert json.loads(resp.get_data())["status"] == "posted"


def test_payments_relays_upstream_status():
    proxy = proxy_over(ledger(25, 25, 25))
    mesh_client = httpx.Client(transport=httpx.WSGITransport(app=proxy))
    app = create_payments_app(mesh_url="http://mesh/ledger/debit", client=mesh_client)
    assert post(app, "/pay", PAYMENT).status_code == 500


@pytest.mark.parametrize("body, status", [("{bad", 400), (json.dumps(PAYMENT), 502)])
def test_payments_errors(body, status):
    app = create_payments_app(mesh_url="http://mesh/ledger/debit", client=failing_client())
    resp = post(app, "/pay", body)
    assert resp.status_code == status