import json

import httpx
import pytest
from werkzeug.test import Client

from finpay.services import make_legacy_service, make_users_service
from finpay.strangler import (
    LEGACY_URL,
    USERS_URL,
    choose_upstream,
    create_proxy_app,
    new_request_id,
)


def routed_client():
    return httpx.Client(
        mounts={
            "http://users": httpx.WSGITransport(app=make_users_service()),
            "http://legacy": httpx.WSGITransport(app=make_legacy_service()),
        }
    )


def proxy():
    return create_proxy_app("http://users", "http://legacy", client=routed_client())


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/api/users/42", USERS_URL),
        ("/api/users/", USERS_URL),
        ("/api/users", LEGACY_URL),
        ("/api/orders/1", LEGACY_URL),
        ("/", LEGACY_URL),
    ],
)
def test_choose_upstream(path, expected):
    assert choose_upstream(path) == expected


def test_new_request_id_is_hex_and_unique():
    first = new_request_id()
    int(first, 16)
    assert first != new_request_id()


def test_users_path_reaches_new_service():
    resp = Client(proxy()).get("/api/users/u7")
    body = json.loads(resp.get_data())
    assert resp.status_code == 200
    assert body["service"] == "usersvc"
    assert body["user_id"] == "u7"
    assert body["request_id"] == resp.headers["X-Request-ID"]


def test_other_paths_reach_legacy():
    resp = Client(proxy()).get("/api/orders/9", headers={"X-Request-ID": "client-supplied"})
    body = json.loads(resp.get_data())
    assert body["service"] == "legacy"
    assert body["path"] == "/api/orders/9"
    assert body["request_id"] == resp.headers["X-Request-ID"]
    assert body["request_id"] != "client-supplied"


def test_each_request_gets_its_own_id():
    client = Client(proxy())
    first = client.get("/a").headers["X-Request-ID"]
    second = client.get("/a").headers["X-Request-ID"]
    assert first != second


def test_forwards_method_query_and_body():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(201, text="made", headers={"Content-Type": "text/plain"})

    app = create_proxy_app("http://users", "http://legacy", client=httpx.Client(transport=httpx.MockTransport(handler)))
    resp = Client(app).post("/api/users/5?full=1", data=b"payload")
    assert resp.status_code == 201
    assert resp.get_data() == b"made"
    assert seen[0].method == "POST"
    assert str(seen[0].url) == "http://users/api/users/5?full=1"
    assert seen[0].content == b"payload"
    assert seen[0].headers["X-Request-ID"] == resp.headers["X-Request-ID"]


def test_unreachable_upstream_is_bad_gateway():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    app = create_proxy_app(client=httpx.Client(transport=httpx.MockTransport(handler)))
    resp = Client(app).get("/anything")
    assert resp.status_code == 502
    assert resp.get_data() == b""
    int(resp.headers["X-Request-ID"], 16)