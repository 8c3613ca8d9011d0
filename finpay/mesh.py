"""A service mesh in miniature: a ledger, a proxy that retries for it, and payments."""

from __future__ import annotations

import argparse
import json
import logging
import random
import secrets
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Optional

import httpx
from werkzeug.wrappers import Request, Response

from finpay.sidecar import WSGIApp, _app, _decode_into, _go_number, _RandomSource, new_tx_id
from finpay.web import json_response, serve, text_response

log = logging.getLogger(__name__)

UPSTREAM_URL = "http://localhost:7002"
MESH_URL = "http://localhost:15001/ledger/debit"
PER_TRY_TIMEOUT = 0.3
MAX_RETRIES = 2
CLIENT_TIMEOUT = 2.0
SLOW_DELAY = 0.5
SLOW_PERCENT = 20
FAILING_PERCENT = 30
LEDGER_PORT = 7002
PROXY_PORT = 15001
PAYMENTS_PORT = 9000

_MESH_HEADERS = {"X-Mesh-mTLS": "true", "X-Service-Identity": "payments"}
# Headers the HTTP client computes for itself on each hop.
_TRANSPORT_HEADERS = frozenset({"host", "content-length", "transfer-encoding", "connection"})


@dataclass(frozen=True)
class PayRequest:
    """A payment as the client sends it."""

    user_id: str = ""
    amount: float = 0.0
    currency: str = ""
    merchant_id: str = ""

    @classmethod
    def from_json(cls, raw: bytes | str) -> "PayRequest":
        return _decode_into(cls, raw if isinstance(raw, bytes) else raw.encode())

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["amount"] = _go_number(self.amount)
        return out


@dataclass(frozen=True)
class LedgerResult:
    """What the ledger answers once a debit is posted."""

    status: str
    tx_id: str
    amount: float
    currency: str

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["amount"] = _go_number(self.amount)
        return out


def random_id() -> str:
    """Return 8 random bytes as 16 hex characters."""
    return secrets.token_hex(8)


_default_rng = random.Random()


def create_ledger_app(
    rng: Optional[_RandomSource] = None,
    clock: Optional[Callable[[], datetime]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> WSGIApp:
    """The ledger: POST /ledger/debit, only for callers the mesh vouches for.

    Part of the calls are slow and part fail, so the mesh has something to retry.
    """
    source = rng if rng is not None else _default_rng
    now = clock if clock is not None else (lambda: datetime.now().astimezone())

    def debit(request: Request) -> Response:
        if any(request.headers.get(name) != value for name, value in _MESH_HEADERS.items()):
            return text_response('{"error":"unauthenticated_mesh"}\n', 401)

        roll = source.randrange(100)
        if roll < SLOW_PERCENT:
            sleep(SLOW_DELAY)
        elif roll < FAILING_PERCENT:
            return text_response('{"error":"temporary_storage_error"}\n', 500)

        try:
            req = _decode_into(PayRequest, request.get_data())
        except ValueError:
            return text_response("invalid JSON\n", 400)

        result = LedgerResult(
            status="posted", tx_id=new_tx_id(now()), amount=req.amount, currency=req.currency
        )
        return json_response(result.to_dict())

    return _app({"/ledger/debit": debit})


def _forwarded_headers(
    incoming: Iterable[tuple[str, str]], trace_id: str
) -> list[tuple[str, str]]:
    overridden = {"x-request-id"} | {name.lower() for name in _MESH_HEADERS}
    headers = [
        (name, value)
        for name, value in incoming
        if name.lower() not in _TRANSPORT_HEADERS and name.lower() not in overridden
    ]
    headers.append(("X-Request-ID", trace_id))
    headers.extend(_MESH_HEADERS.items())
    return headers


class MeshProxy:
    """A WSGI proxy in front of the ledger.

    It adds a trace id and identity headers, gives each try a short timeout and
    retries on transport failures and 5xx answers.
    """

    def __init__(
        self,
        upstream_url: str = UPSTREAM_URL,
        client: Optional[httpx.Client] = None,
        per_try_timeout: float = PER_TRY_TIMEOUT,
        max_retries: int = MAX_RETRIES,
        id_factory: Callable[[], str] = random_id,
    ) -> None:
        self.upstream_url = upstream_url.rstrip("/")
        self.per_try_timeout = per_try_timeout
        self.max_retries = max_retries
        self.total_requests = 0
        self.total_retries = 0
        self._client = client if client is not None else httpx.Client()
        self._new_id = id_factory
        self._lock = threading.Lock()

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        return self._handle(Request(environ))(environ, start_response)

    def _handle(self, request: Request) -> Response:
        with self._lock:
            self.total_requests += 1

        trace_id = request.headers.get("X-Request-ID") or self._new_id()
        body = request.get_data()
        target = self.upstream_url + request.path
        headers = _forwarded_headers(request.headers.items(), trace_id)

        failure: Optional[Exception] = None
        last_status = 0
        last_body = b""
        for attempt in range(self.max_retries + 1):
            if attempt:
                with self._lock:
                    self.total_retries += 1
                log.info("[meshproxy] retry %d for %s (trace=%s)", attempt, target, trace_id)
            try:
                reply = self._client.request(
                    request.method,
                    target,
                    content=body,
                    headers=headers,
                    timeout=self.per_try_timeout,
                )
            except httpx.HTTPError as err:
                failure = err
                continue
            last_status = reply.status_code
            last_body = reply.content
            if last_status >= 500:
                continue
            failure = None
            break

        if failure is not None:
            return text_response('{"error":"upstream_timeout_or_unreachable"}\n', 502)

        response = Response(last_body, status=last_status)
        response.headers["X-Request-ID"] = trace_id
        response.headers["Content-Type"] = "application/json"
        log.info(
            "[meshproxy] req=%d retries=%d status=%d trace=%s",
            self.total_requests,
            self.total_retries,
            last_status,
            trace_id,
        )
        return response


def create_payments_app(mesh_url: str = MESH_URL, client: Optional[httpx.Client] = None) -> WSGIApp:
    """Payments: POST /pay goes through the mesh, which handles retries and identity."""
    http = client if client is not None else httpx.Client()

    def pay(request: Request) -> Response:
        try:
            req = _decode_into(PayRequest, request.get_data())
        except ValueError:
            return text_response("invalid JSON\n", 400)
        try:
            reply = http.post(
                mesh_url,
                content=json.dumps(req.to_dict(), separators=(",", ":")),
                headers={"Content-Type": "application/json"},
                timeout=CLIENT_TIMEOUT,
            )
        except httpx.HTTPError:
            return text_response('{"error":"mesh_unreachable"}\n', 502)
        return Response(reply.content, status=reply.status_code, content_type="application/json")

    return _app({"/pay": pay})


def main(argv: list[str] | None = None) -> int:
    """Run the ledger, the mesh proxy or the payments service."""
    parser = argparse.ArgumentParser(prog="finpay-mesh", description=main.__doc__)
    parser.add_argument("role", choices=["ledger", "meshproxy", "payments"])
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--upstream-url", default=UPSTREAM_URL)
    parser.add_argument("--mesh-url", default=MESH_URL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    app: WSGIApp
    if args.role == "ledger":
        port, app = LEDGER_PORT, create_ledger_app()
    elif args.role == "meshproxy":
        port, app = PROXY_PORT, MeshProxy(upstream_url=args.upstream_url)
    else:
        port, app = PAYMENTS_PORT, create_payments_app(mesh_url=args.mesh_url)
    if args.port is not None:
        port = args.port
    log.info("[%s] listening on :%d", args.role, port)
    serve(app, port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())