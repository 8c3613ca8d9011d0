"""A payments service that hands audit events to a logging sidecar, and the sidecar."""

from __future__ import annotations

import argparse
import json
import logging
import random
import threading
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Protocol, TypeVar

import httpx
from werkzeug.wrappers import Request, Response

from finpay.web import json_response, serve, text_response

log = logging.getLogger(__name__)

SIDECAR_URL = "http://localhost:9000/logs"
SIDECAR_PORT = 9000
PAYMENTS_PORT = 8080
SEND_TIMEOUT = 1.0
SOURCE = "payments-service"
RISK_AMOUNT = 1000
DECLINE_PERCENT = 40

WSGIApp = Callable[..., Any]
Handler = Callable[[Request], Response]
T = TypeVar("T")


class _RandomSource(Protocol):
    def randrange(self, stop: int) -> int:
        ...


def _decode_into(cls: type[T], raw: bytes) -> T:
    """Decode a JSON object into a dataclass whose fields all default to "" or 0.0.

    Missing and null members keep their defaults, unknown members are ignored,
    and a member of the wrong type raises ValueError.
    """
    data = json.loads(raw)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("expected a JSON object")
    values: dict[str, Any] = {}
    for spec in fields(cls):  # type: ignore[arg-type]
        value = data.get(spec.name)
        if value is None:
            continue
        if isinstance(spec.default, float):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{spec.name} must be a number")
            value = float(value)
        elif not isinstance(value, str):
            raise ValueError(f"{spec.name} must be a string")
        values[spec.name] = value
    return cls(**values)


def _go_number(value: float) -> int | float:
    """Write whole numbers without a fraction, as JSON encoders commonly do."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _rfc3339_utc(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _app(routes: Mapping[str, Handler]) -> WSGIApp:
    """A WSGI application dispatching on exact paths."""

    @Request.application
    def app(request: Request) -> Response:
        handler = routes.get(request.path)
        if handler is None:
            return text_response("404 page not found\n", 404)
        return handler(request)

    return app


def _post_json(url: str, payload: Mapping[str, Any], client: Optional[httpx.Client]) -> None:
    """POST payload as JSON; raises httpx.HTTPError when the call fails."""
    body = json.dumps(payload, separators=(",", ":"))
    headers = {"Content-Type": "application/json"}
    if client is None:
        with httpx.Client(timeout=SEND_TIMEOUT) as fresh:
            fresh.post(url, content=body, headers=headers)
    else:
        client.post(url, content=body, headers=headers, timeout=SEND_TIMEOUT)


@dataclass(frozen=True)
class AuthorizeRequest:
    """What a client sends to /authorize."""

    user_id: str = ""
    amount: float = 0.0
    currency: str = ""
    merchant_id: str = ""
    ip_address: str = ""
    device_id: str = ""

    @classmethod
    def from_json(cls, raw: bytes | str) -> "AuthorizeRequest":
        return _decode_into(cls, raw if isinstance(raw, bytes) else raw.encode())


@dataclass(frozen=True)
class AuditEvent:
    """The audit record sent to the sidecar."""

    tx_id: str = ""
    user_id: str = ""
    amount: float = 0.0
    currency: str = ""
    merchant_id: str = ""
    status: str = ""
    reason: str = ""
    ip_address: str = ""
    device_id: str = ""

    @classmethod
    def from_json(cls, raw: bytes | str) -> "AuditEvent":
        return _decode_into(cls, raw if isinstance(raw, bytes) else raw.encode())

    def to_dict(self) -> dict[str, Any]:
        """The JSON form; empty reason, IP address and device id are left out."""
        out = asdict(self)
        out["amount"] = _go_number(self.amount)
        for key in ("reason", "ip_address", "device_id"):
            if not out[key]:
                del out[key]
        return out


@dataclass(frozen=True)
class EnrichedEvent:
    """An audit event with what the sidecar adds to it."""

    event: AuditEvent
    timestamp: str
    fraud_score: int
    source: str

    def to_dict(self) -> dict[str, Any]:
        out = self.event.to_dict()
        out.update(timestamp=self.timestamp, fraud_score=self.fraud_score, source=self.source)
        return out


def simple_fraud_score(event: AuditEvent) -> int:
    """Add up points for each risky signal in the event."""
    score = 0
    if event.amount > 1000:
        score += 10
    if event.status == "declined":
        score += 15
    if event.currency != "USD":
        score += 3
    if not event.device_id or not event.ip_address:
        score += 2
    return score


def enrich(event: AuditEvent, now: Optional[datetime] = None) -> EnrichedEvent:
    """Stamp the event with a UTC time, a fraud score and its source."""
    moment = now if now is not None else datetime.now(timezone.utc)
    return EnrichedEvent(
        event=event,
        timestamp=_rfc3339_utc(moment),
        fraud_score=simple_fraud_score(event),
        source=SOURCE,
    )


_default_rng = random.Random()


def decide(amount: float, rng: Optional[_RandomSource] = None) -> tuple[str, str]:
    """Return (status, reason): large amounts are declined part of the time."""
    source = rng if rng is not None else _default_rng
    if amount > RISK_AMOUNT and source.randrange(100) < DECLINE_PERCENT:
        return "declined", "RISK_RULE"
    return "authorized", ""


def new_tx_id(now: Optional[datetime] = None) -> str:
    """A readable transaction id from the clock, to the millisecond."""
    moment = now if now is not None else datetime.now()
    return f"{moment:%Y%m%d%H%M%S}.{moment.microsecond // 1000:03d}"


def send_to_sidecar(
    event: AuditEvent, url: str = SIDECAR_URL, client: Optional[httpx.Client] = None
) -> bool:
    """Post the event to the sidecar; return False when it cannot be reached."""
    try:
        _post_json(url, event.to_dict(), client)
    except httpx.HTTPError as err:
        log.warning("[payments] sidecar not reachable: %s", err)
        return False
    return True


def _print_event(enriched: EnrichedEvent) -> None:
    print(json.dumps(enriched.to_dict(), indent=2))


def create_sidecar_app(
    sink: Optional[Callable[[EnrichedEvent], None]] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> WSGIApp:
    """The sidecar: POST /logs takes one event, enriches it and stores it."""
    store = sink if sink is not None else _print_event
    now = clock if clock is not None else (lambda: datetime.now(timezone.utc))

    def logs(request: Request) -> Response:
        if request.method != "POST":
            return text_response("use POST\n", 405)
        try:
            event = _decode_into(AuditEvent, request.get_data())
        except ValueError:
            return text_response("invalid JSON\n", 400)
        store(enrich(event, now()))
        return Response(status=202)

    return _app({"/logs": logs})


def create_payments_app(
    sidecar_url: str = SIDECAR_URL,
    rng: Optional[_RandomSource] = None,
    clock: Optional[Callable[[], datetime]] = None,
    client: Optional[httpx.Client] = None,
) -> WSGIApp:
    """The payments service: POST /authorize decides and audits in the background."""
    now = clock if clock is not None else (lambda: datetime.now().astimezone())

    def authorize(request: Request) -> Response:
        try:
            req = _decode_into(AuthorizeRequest, request.get_data())
        except ValueError:
            return text_response("invalid JSON\n", 400)
        status, reason = decide(req.amount, rng)
        tx_id = new_tx_id(now())
        event = AuditEvent(
            tx_id=tx_id,
            user_id=req.user_id,
            amount=req.amount,
            currency=req.currency,
            merchant_id=req.merchant_id,
            status=status,
            reason=reason,
            ip_address=req.ip_address,
            device_id=req.device_id,
        )
        threading.Thread(
            target=send_to_sidecar, args=(event, sidecar_url, client), daemon=True
        ).start()
        return json_response({"reason": reason, "status": status, "tx_id": tx_id})

    return _app({"/authorize": authorize})


def main(argv: list[str] | None = None) -> int:
    """Run the logging sidecar or the payments service beside it."""
    parser = argparse.ArgumentParser(prog="finpay-sidecar", description=main.__doc__)
    parser.add_argument("role", choices=["sidecar", "payments"])
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--sidecar-url", default=SIDECAR_URL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    if args.role == "sidecar":
        port = args.port if args.port is not None else SIDECAR_PORT
        app = create_sidecar_app()
    else:
        port = args.port if args.port is not None else PAYMENTS_PORT
        app = create_payments_app(sidecar_url=args.sidecar_url)
    log.info("[%s] listening on :%d", args.role, port)
    serve(app, port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())