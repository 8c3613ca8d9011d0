"""A circuit breaker between payments and a flaky risk service, with a safe fallback."""

from __future__ import annotations

import argparse
import json
import logging
import random
import threading
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional

import httpx
from werkzeug.wrappers import Request, Response

from finpay.sidecar import WSGIApp, _app, _decode_into, _go_number, _RandomSource
from finpay.web import json_response, serve, text_response

log = logging.getLogger(__name__)

RISK_URL = "http://localhost:7002/score"
RISK_TIMEOUT = 0.6
FAILURE_THRESHOLD = 3
OPEN_DURATION = 10.0
SMALL_AMOUNT = 50
SLOW_DELAY = 1.2
SLOW_PERCENT = 20
DOWN_PERCENT = 35
RISK_PORT = 7002
PAYMENTS_PORT = 9000


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half"


class CircuitBreaker:
    """Opens after consecutive failures, fails fast for a while, then allows one probe."""

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        open_duration: float = OPEN_DURATION,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.open_duration = open_duration
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._open_until = 0.0
        self._lock = threading.Lock()

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def allow(self) -> bool:
        """Return whether a call may be tried now."""
        with self._lock:
            if self._state is BreakerState.OPEN:
                if self._clock() > self._open_until:
                    self._state = BreakerState.HALF_OPEN
                    return True
                return False
            return True

    def report(self, error: Optional[BaseException] = None) -> None:
        """Record the outcome of a call: None for success, else the failure."""
        with self._lock:
            if self._state is BreakerState.HALF_OPEN:
                if error is None:
                    self._state, self._failures = BreakerState.CLOSED, 0
                else:
                    self._trip()
                return
            if error is None:
                self._failures = 0
                return
            self._failures += 1
            if self._failures >= self.failure_threshold:
                self._trip()

    def _trip(self) -> None:
        self._state = BreakerState.OPEN
        self._open_until = self._clock() + self.open_duration


@dataclass(frozen=True)
class Decision:
    approved: bool
    reason: str
    mode: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class _ScoreRequest:
    user_id: str = ""
    amount: float = 0.0


def fallback(amount: float) -> Decision:
    """Decide without the risk service: let small amounts through with a challenge."""
    if amount <= SMALL_AMOUNT:
        return Decision(approved=True, reason="challenge_small", mode="fallback")
    return Decision(approved=False, reason="hold_high_amount", mode="fallback")


def risk_score(amount: float) -> int:
    """A base score, raised for large amounts and capped at 100."""
    score = 10
    if amount > 1000:
        score += 40
    return min(score, 100)


_default_rng = random.Random()


def create_risk_app(
    rng: Optional[_RandomSource] = None, sleep: Callable[[float], None] = time.sleep
) -> WSGIApp:
    """The risk service: /score is sometimes slow and sometimes down."""
    source = rng if rng is not None else _default_rng

    def score(request: Request) -> Response:
        try:
            req = _decode_into(_ScoreRequest, request.get_data())
        except ValueError:
            return text_response("bad json\n", 400)
        roll = source.randrange(100)
        if roll < SLOW_PERCENT:
            sleep(SLOW_DELAY)
        elif roll < DOWN_PERCENT:
            return text_response('{"error":"risk_down"}\n', 500)
        return json_response({"score": risk_score(req.amount), "note": "ok"})

    return _app({"/score": score})


def create_payments_app(
    risk_url: str = RISK_URL,
    breaker: Optional[CircuitBreaker] = None,
    client: Optional[httpx.Client] = None,
) -> WSGIApp:
    """Payments: POST /pay asks risk through the breaker, falling back when it cannot."""
    brk = breaker if breaker is not None else CircuitBreaker()
    http = client if client is not None else httpx.Client()

    def pay(request: Request) -> Response:
        try:
            req = _decode_into(_ScoreRequest, request.get_data())
        except ValueError:
            return text_response("bad json\n", 400)

        if not brk.allow():
            return json_response(fallback(req.amount).to_dict())

        body = json.dumps({"user_id": req.user_id, "amount": _go_number(req.amount)}, separators=(",", ":"))
        try:
            reply = http.post(
                risk_url,
                content=body,
                headers={"Content-Type": "application/json"},
                timeout=RISK_TIMEOUT,
            )
        except httpx.HTTPError as err:
            brk.report(err)
            return json_response(fallback(req.amount).to_dict())

        if reply.status_code >= 500:
            brk.report(RuntimeError("5xx"))
            return json_response(fallback(req.amount).to_dict())

        brk.report(None)
        return json_response(Decision(approved=True, reason="risk_ok", mode="normal").to_dict())

    return _app({"/pay": pay})


def main(argv: list[str] | None = None) -> int:
    """Run the risk service or the payments service with its breaker."""
    parser = argparse.ArgumentParser(prog="finpay-breaker", description=main.__doc__)
    parser.add_argument("role", choices=["risk", "payments"])
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--risk-url", default=RISK_URL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    if args.role == "risk":
        port, app = RISK_PORT, create_risk_app()
    else:
        port, app = PAYMENTS_PORT, create_payments_app(risk_url=args.risk_url)
    if args.port is not None:
        port = args.port
    log.info("[%s] listening on :%d", args.role, port)
    serve(app, port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())