"""Small HTTP services used to show how a payment system is split into services."""

from __future__ import annotations

import argparse
import json
import random
import socket
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol

import httpx
from werkzeug.utils import redirect
from werkzeug.wrappers import Request, Response

from finpay.web import json_response, serve, text_response

Handler = Callable[[Request], Response]
WSGIApp = Callable[..., Any]

DEFAULT_FRAUD_URL = "http://localhost:9090/check"
FAILURE_PERCENT = 30
SLOW_DELAY = 2.0
FLAKY_DELAY = 3.0
RETRY_DELAY = 0.5


class _RandomSource(Protocol):
    def randrange(self, stop: int) -> int:
        ...


def _not_found() -> Response:
    return text_response("404 page not found\n", 404)


def _error(message: str, status: int) -> Response:
    return text_response(f"{message}\n", status)


def _match(routes: Mapping[str, Handler], path: str) -> Optional[Handler]:
    """Pick a handler: an exact pattern, else the longest subtree pattern ending in '/'."""
    if path in routes:
        return routes[path]
    best = max(
        (pattern for pattern in routes if pattern.endswith("/") and path.startswith(pattern)),
        key=len,
        default=None,
    )
    return routes[best] if best is not None else None


def _router(routes: Mapping[str, Handler]) -> WSGIApp:
    """Build a WSGI application that dispatches on the request path."""

    @Request.application
    def app(request: Request) -> Response:
        handler = _match(routes, request.path)
        if handler is not None:
            return handler(request)
        subtree = request.path + "/"
        if subtree in routes:
            return redirect(subtree, code=301)
        return _not_found()

    return app


def _text(body: str) -> Handler:
    def handler(request: Request) -> Response:
        return text_response(body)

    return handler


def _rfc3339(moment: datetime) -> str:
    stamp = moment.replace(microsecond=0).isoformat()
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


def make_monolith() -> WSGIApp:
    """Users and orders served by one application."""
    return _router(
        {
            "/users": _text("Users endpoint - Monolith"),
            "/orders": _text("Orders endpoint - Monolith"),
        }
    )


def make_order_service() -> WSGIApp:
    """The orders part of the monolith as its own service."""
    return _router({"/orders": _text("Orders endpoint - Microservice")})


def make_user_service() -> WSGIApp:
    """The users part of the monolith as its own service."""
    return _router({"/users": _text("Users endpoint - Microservice")})


def make_json_user_service() -> WSGIApp:
    """Return a fixed user as JSON."""

    def user(request: Request) -> Response:
        return json_response({"id": "U1001", "name": "Ravi"})

    return _router({"/user": user})


def make_json_payment_service() -> WSGIApp:
    """Return a fixed payment result as JSON."""

    def pay(request: Request) -> Response:
        return json_response({"status": "Payment Successful", "amount": 100})

    return _router({"/pay": pay})


def make_slow_payment_service(delay: float = SLOW_DELAY) -> WSGIApp:
    """A payment service slowed down by a call to a slow dependency."""

    def pay(request: Request) -> Response:
        time.sleep(delay)
        return text_response("Payment processed successfully\n")

    return _router({"/pay": pay})


def make_payment_service(message: str = "Payment processed successfully!") -> WSGIApp:
    """A payment service that answers every payment with a fixed line."""
    return _router({"/pay": _text(f"{message}\n")})


def make_fraud_service() -> WSGIApp:
    """A fraud service that calls every transaction safe."""
    return _router({"/check": _text("SAFE\n")})


def make_flaky_fraud_service(
    rng: Optional[_RandomSource] = None, delay: float = FLAKY_DELAY
) -> WSGIApp:
    """A fraud service that hangs and answers with nothing on part of the calls."""
    source = rng if rng is not None else random.Random()

    def check(request: Request) -> Response:
        if source.randrange(100) < FAILURE_PERCENT:
            print("Simulating fraud service failure...")
            time.sleep(delay)
            return Response(b"", status=200)
        return text_response("SAFE\n")

    return _router({"/check": check})


def make_fraud_backed_payment_service(
    fraud_url: str = DEFAULT_FRAUD_URL,
    client: Optional[httpx.Client] = None,
    retry: bool = False,
    retry_delay: float = RETRY_DELAY,
) -> WSGIApp:
    """A payment service that asks the fraud service first, optionally retrying once."""
    http = client if client is not None else httpx.Client(timeout=None)
    unavailable = "Fraud service unavailable after retry" if retry else "Fraud service unavailable"

    def pay(request: Request) -> Response:
        try:
            result = http.get(fraud_url)
        except httpx.HTTPError:
            if not retry:
                return _error(unavailable, 503)
            print("First attempt failed, retrying...")
            time.sleep(retry_delay)
            try:
                result = http.get(fraud_url)
            except httpx.HTTPError:
                return _error(unavailable, 503)
        return text_response(f"Payment processed. Fraud check result: {result.text}\n")

    return _router({"/pay": pay})


def make_load_balanced_service(
    hostname: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None
) -> WSGIApp:
    """Reply with the pod's host name so the load balancer's spread can be seen."""
    now = clock if clock is not None else (lambda: datetime.now(timezone.utc).astimezone())

    def pay(request: Request) -> Response:
        host = hostname if hostname is not None else socket.gethostname()
        return json_response({"pod": host, "ts": _rfc3339(now()), "path": request.path})

    return _router({"/pay": pay})


def make_payment_api() -> WSGIApp:
    """A payment endpoint that keeps to its published request and response shapes."""

    def payments(request: Request) -> Response:
        try:
            json.loads(request.get_data() or b"null")
        except ValueError:
            pass
        return json_response({"status": "SUCCESS", "transactionId": "TXN12345"})

    return _router({"/payments": payments})


def make_echo_service(name: str) -> WSGIApp:
    """A mock service that echoes its name, the path and the request id."""

    def echo(request: Request) -> Response:
        body = json.dumps(
            {
                "service": name,
                "path": request.path,
                "request_id": request.headers.get("X-Request-ID", ""),
            },
            separators=(",", ":"),
        )
        return Response(body, content_type="application/json")

    return _router({"/": echo})


def make_legacy_service() -> WSGIApp:
    """The legacy application that still answers every path."""
    return make_echo_service("legacy")


def make_users_service() -> WSGIApp:
    """The new users service, owning only /api/users/."""

    def users(request: Request) -> Response:
        parts = request.path.strip("/").split("/")
        user_id = parts[2] if len(parts) >= 3 else ""
        body = json.dumps(
            {
                "service": "usersvc",
                "user_id": user_id,
                "profile": {"name": "Asha", "tier": "GOLD"},
                "request_id": request.headers.get("X-Request-ID", ""),
            },
            separators=(",", ":"),
        )
        return Response(body, content_type="application/json")

    return _router({"/api/users/": users})


_SERVICES: dict[str, tuple[Callable[[], WSGIApp], int]] = {
    "monolith": (make_monolith, 8080),
    "orders": (make_order_service, 8082),
    "users": (make_user_service, 8081),
    "json-users": (make_json_user_service, 8081),
    "json-payments": (make_json_payment_service, 8082),
    "slow-payments": (make_slow_payment_service, 8080),
    "payments": (make_payment_service, 8080),
    "fraud": (make_fraud_service, 9090),
    "flaky-fraud": (make_flaky_fraud_service, 9090),
    "fraud-payments": (make_fraud_backed_payment_service, 8080),
    "retry-payments": (lambda: make_fraud_backed_payment_service(retry=True), 8080),
    "load-balanced": (make_load_balanced_service, 8080),
    "payment-api": (make_payment_api, 8080),
    "gateway-users": (lambda: make_echo_service("users"), 7001),
    "gateway-payments": (lambda: make_echo_service("payments"), 7002),
    "legacy": (make_legacy_service, 7000),
    "usersvc": (make_users_service, 7001),
}


def main(argv: list[str] | None = None) -> int:
    """Run one of the example services."""
    parser = argparse.ArgumentParser(prog="finpay-services", description=main.__doc__)
    parser.add_argument("service", choices=sorted(_SERVICES))
    parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args(argv)

    factory, default_port = _SERVICES[args.service]
    port = args.port if args.port is not None else default_port
    print(f"{args.service} listening on port {port}")
    serve(factory(), port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())