"""Command and query separation: a payment ledger with a balance view beside it."""

from __future__ import annotations

import argparse
import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from werkzeug.exceptions import NotFound
from werkzeug.routing import Map, Rule
from werkzeug.wrappers import Request, Response

from finpay.web import serve, text_response

log = logging.getLogger(__name__)

PORT = 9000

_SIGNS = {"credit": 1.0, "debit": -1.0}


@dataclass(frozen=True)
class Payment:
    """One command written to the ledger."""

    user_id: str = ""
    amount: float = 0.0
    type: str = ""
    tx_id: str = ""


def _payment_from_json(raw: bytes) -> Payment:
    """Decode a payment, raising ValueError on malformed input."""
    data = json.loads(raw)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("payment must be a JSON object")
    texts = {}
    for key in ("user_id", "type", "tx_id"):
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{key} must be a string")
        texts[key] = value or ""
    amount = data.get("amount")
    if amount is not None and (isinstance(amount, bool) or not isinstance(amount, (int, float))):
        raise ValueError("amount must be a number")
    return Payment(amount=float(amount or 0), **texts)


@dataclass
class PaymentStore:
    """The ledger of payments (write side) and per-user balances (read side)."""

    _ledger: list[Payment] = field(default_factory=list, init=False, repr=False)
    _balances: dict[str, float] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def record(self, payment: Payment) -> None:
        """Append the payment to the ledger and update the balance view."""
        with self._lock:
            self._ledger.append(payment)
            sign = _SIGNS.get(payment.type)
            if sign is not None:
                current = self._balances.get(payment.user_id, 0.0)
                self._balances[payment.user_id] = current + sign * payment.amount

    def balance(self, user: str) -> float:
        """Return the user's balance, 0 for an unknown user."""
        with self._lock:
            return self._balances.get(user, 0.0)

    def ledger(self) -> list[Payment]:
        """Return a copy of every recorded payment, oldest first."""
        with self._lock:
            return list(self._ledger)


def create_app(store: Optional[PaymentStore] = None) -> Callable[..., Any]:
    """Build the application: POST /command/pay and GET /query/balance?user=."""
    payments = store if store is not None else PaymentStore()

    def pay(request: Request) -> Response:
        try:
            payment = _payment_from_json(request.get_data())
        except ValueError:
            return text_response("bad json\n", 400)
        payments.record(payment)
        body = f'{{"status":"ok","tx_id":{json.dumps(payment.tx_id)}}}'
        return Response(body, content_type="application/json")

    def balance(request: Request) -> Response:
        user = request.args.get("user", "")
        body = f'{{"user":{json.dumps(user)},"balance":{payments.balance(user):.2f}}}'
        return Response(body, content_type="application/json")

    url_map = Map(
        [Rule("/command/pay", endpoint=pay), Rule("/query/balance", endpoint=balance)],
        strict_slashes=False,
    )

    @Request.application
    def app(request: Request) -> Response:
        try:
            endpoint, _ = url_map.bind_to_environ(request.environ).match()
        except NotFound:
            return text_response("404 page not found\n", 404)
        return endpoint(request)

    return app


def main(argv: list[str] | None = None) -> int:
    """Run the ledger and balance service."""
    parser = argparse.ArgumentParser(prog="finpay-cqrs", description=main.__doc__)
    parser.add_argument("--port", type=int, default=PORT)
    port = parser.parse_args(argv).port

    logging.basicConfig(level=logging.INFO)
    log.info("[cqrs] listening on :%d", port)
    serve(create_app(), port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())