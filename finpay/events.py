"""Event-driven payments: the producer emits PaymentAuthorized, the ledger consumes it."""

from __future__ import annotations

import argparse
import json
import logging
import random
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
from werkzeug.wrappers import Request, Response

from finpay.sidecar import (
    AuthorizeRequest,
    WSGIApp,
    _app,
    _decode_into,
    _go_number,
    _post_json,
    _RandomSource,
    _rfc3339_utc,
    new_tx_id,
)
from finpay.web import json_response, serve, text_response

log = logging.getLogger(__name__)

LEDGER_URL = "http://localhost:9001/events"
LEDGER_PORT = 9001
PAYMENTS_PORT = 9000
EVENT_NAME = "payment_authorized"
DEBIT_ACCOUNT = "customer_clearing"
CREDIT_ACCOUNT = "merchant_receivable"
AUTO_APPROVE_LIMIT = 1000
APPROVE_PERCENT = 70


@dataclass(frozen=True)
class PaymentAuthorized:
    """The event emitted when a payment is authorized."""

    event: str = ""
    tx_id: str = ""
    user_id: str = ""
    amount: float = 0.0
    currency: str = ""
    merchant_id: str = ""
    when: str = ""

    @classmethod
    def from_json(cls, raw: bytes | str) -> "PaymentAuthorized":
        return _decode_into(cls, raw if isinstance(raw, bytes) else raw.encode())

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["amount"] = _go_number(self.amount)
        return out


@dataclass(frozen=True)
class LedgerEntry:
    """A double-entry record derived from an event."""

    tx_id: str
    debit: str
    credit: str
    amount: float
    currency: str
    posted_at: str
    reference: str

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["amount"] = _go_number(self.amount)
        return out


def to_ledger_entry(event: PaymentAuthorized, now: Optional[datetime] = None) -> LedgerEntry:
    """Debit the customer's clearing account and credit the merchant's receivable."""
    moment = now if now is not None else datetime.now(timezone.utc)
    return LedgerEntry(
        tx_id=event.tx_id,
        debit=DEBIT_ACCOUNT,
        credit=CREDIT_ACCOUNT,
        amount=event.amount,
        currency=event.currency,
        posted_at=_rfc3339_utc(moment),
        reference=event.event,
    )


_default_rng = random.Random()


def is_approved(amount: float, rng: Optional[_RandomSource] = None) -> bool:
    """Approve small amounts; approve large ones most of the time."""
    if amount <= AUTO_APPROVE_LIMIT:
        return True
    source = rng if rng is not None else _default_rng
    return source.randrange(100) < APPROVE_PERCENT


def publish_event(
    event: PaymentAuthorized, url: str = LEDGER_URL, client: Optional[httpx.Client] = None
) -> bool:
    """Post the event to the ledger; return False when it cannot be delivered."""
    try:
        _post_json(url, event.to_dict(), client)
    except httpx.HTTPError as err:
        log.warning("[payments] failed to emit event: %s", err)
        return False
    return True


def _print_entry(entry: LedgerEntry) -> None:
    print(json.dumps(entry.to_dict(), indent=2))


def create_ledger_app(
    sink: Optional[Callable[[LedgerEntry], None]] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> WSGIApp:
    """The consumer: POST /events turns payment_authorized events into ledger entries."""
    store = sink if sink is not None else _print_entry
    now = clock if clock is not None else (lambda: datetime.now(timezone.utc))

    def events(request: Request) -> Response:
        if request.method != "POST":
            return text_response("use POST\n", 405)
        try:
            event = _decode_into(PaymentAuthorized, request.get_data())
        except ValueError:
            return text_response("invalid JSON\n", 400)
        if event.event != EVENT_NAME:
            return text_response("unsupported event\n", 400)
        store(to_ledger_entry(event, now()))
        return Response(status=202)

    return _app({"/events": events})


def create_payments_app(
    ledger_url: str = LEDGER_URL,
    rng: Optional[_RandomSource] = None,
    clock: Optional[Callable[[], datetime]] = None,
    publisher: Optional[Callable[[PaymentAuthorized], None]] = None,
) -> WSGIApp:
    """The producer: POST /authorize answers at once and emits an event when approved."""
    now = clock if clock is not None else (lambda: datetime.now().astimezone())

    def publish_in_background(event: PaymentAuthorized) -> None:
        threading.Thread(target=publish_event, args=(event, ledger_url), daemon=True).start()

    emit = publisher if publisher is not None else publish_in_background

    def authorize(request: Request) -> Response:
        try:
            req = _decode_into(AuthorizeRequest, request.get_data())
        except ValueError:
            return text_response("invalid JSON\n", 400)
        approved = is_approved(req.amount, rng)
        tx_id = new_tx_id(now())
        if approved:
            emit(
                PaymentAuthorized(
                    event=EVENT_NAME,
                    tx_id=tx_id,
                    user_id=req.user_id,
                    amount=req.amount,
                    currency=req.currency,
                    merchant_id=req.merchant_id,
                    when=_rfc3339_utc(now()),
                )
            )
        status = "authorized" if approved else "declined"
        return json_response({"approved": approved, "status": status, "tx_id": tx_id})

    return _app({"/authorize": authorize})


def main(argv: list[str] | None = None) -> int:
    """Run the ledger consumer or the payments producer."""
    parser = argparse.ArgumentParser(prog="finpay-events", description=main.__doc__)
    parser.add_argument("role", choices=["ledger", "payments"])
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--ledger-url", default=LEDGER_URL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    if args.role == "ledger":
        port = args.port if args.port is not None else LEDGER_PORT
        app = create_ledger_app()
    else:
        port = args.port if args.port is not None else PAYMENTS_PORT
        app = create_payments_app(ledger_url=args.ledger_url)
    log.info("[%s] listening on :%d", args.role, port)
    serve(app, port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())