"""A payment service whose split-bill feature is switched by an environment flag."""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Callable, Mapping

from werkzeug.wrappers import Request, Response

from finpay.web import serve, text_response

log = logging.getLogger(__name__)

FLAG_NAME = "FEATURE_SPLIT_BILL"
PORT = 8080


def feature_flag_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Return True when the split-bill flag is set to 'true'."""
    env = os.environ if environ is None else environ
    return env.get(FLAG_NAME) == "true"


def _pay(feature_split_bill: bool) -> Callable[[Request], Response]:
    state = "enabled" if feature_split_bill else "disabled"

    def handler(request: Request) -> Response:
        if request.method != "POST":
            return text_response("Method not allowed\n", 405)
        try:
            payload = json.loads(request.get_data())
        except ValueError:
            return text_response("Invalid request\n", 400)
        if not isinstance(payload, dict):
            return text_response("Invalid request\n", 400)

        payload["feature"] = f"split_bill_{state}"
        log.info("Split bill feature is %s", state.upper())

        reply = {"status": "success", "request": payload}
        text = json.dumps(reply, sort_keys=True, separators=(",", ":")) + "\n"
        return Response(text, mimetype="application/json")

    return handler


def _probe(text: str) -> Callable[[Request], Response]:
    return lambda request: Response(text, status=200)


def create_app(feature_split_bill: bool) -> Callable[..., Any]:
    """Build the payment application with its health and readiness probes."""
    routes = {
        "/pay": _pay(feature_split_bill),
        "/healthz": _probe("OK"),
        "/readyz": _probe("READY"),
    }

    @Request.application
    def app(request: Request) -> Response:
        handler = routes.get(request.path)
        if handler is None:
            return text_response("404 page not found\n", 404)
        return handler(request)

    return app


def main(argv: list[str] | None = None) -> int:
    """Run the payment service with the feature flag read from the environment."""
    parser = argparse.ArgumentParser(prog="finpay-delivery", description=main.__doc__)
    parser.add_argument("--port", type=int, default=PORT)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    log.info("Payment service running on :%d", args.port)
    serve(create_app(feature_flag_enabled()), args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())