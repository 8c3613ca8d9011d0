"""A strangler-fig proxy: new paths go to the new service, the rest to the legacy one."""

from __future__ import annotations

import argparse
import logging
from typing import Optional

import httpx
from werkzeug.datastructures import Headers
from werkzeug.wrappers import Request, Response

from finpay.mesh import random_id
from finpay.sidecar import WSGIApp
from finpay.web import serve

log = logging.getLogger(__name__)

USERS_URL = "http://localhost:7001"
LEGACY_URL = "http://localhost:7000"
USERS_PREFIX = "/api/users/"
PORT = 8080

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "proxy-connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
_REQUEST_SKIP = _HOP_BY_HOP | {"host", "content-length", "x-request-id", "x-forwarded-for"}
_RESPONSE_SKIP = _HOP_BY_HOP | {"content-length", "content-encoding"}


def new_request_id() -> str:
    """Return a fresh request id."""
    return random_id()


def choose_upstream(path: str, users_url: str = USERS_URL, legacy_url: str = LEGACY_URL) -> str:
    """Send user paths to the new service and everything else to the legacy one."""
    return users_url if path.startswith(USERS_PREFIX) else legacy_url


def create_proxy_app(
    users_url: str = USERS_URL,
    legacy_url: str = LEGACY_URL,
    client: Optional[httpx.Client] = None,
) -> WSGIApp:
    """A reverse proxy that tags each request with an id and routes it by path."""
    http = client if client is not None else httpx.Client()

    @Request.application
    def app(request: Request) -> Response:
        request_id = new_request_id()
        upstream = choose_upstream(request.path, users_url, legacy_url).rstrip("/")
        target = upstream + request.path
        query = request.query_string.decode("latin-1")
        if query:
            target += "?" + query

        headers = [(k, v) for k, v in request.headers.items() if k.lower() not in _REQUEST_SKIP]
        headers.append(("X-Request-ID", request_id))
        forwarded = request.headers.get("X-Forwarded-For")
        if request.remote_addr:
            chain = f"{forwarded}, {request.remote_addr}" if forwarded else request.remote_addr
            headers.append(("X-Forwarded-For", chain))
        elif forwarded:
            headers.append(("X-Forwarded-For", forwarded))

        try:
            reply = http.request(request.method, target, content=request.get_data(), headers=headers)
        except httpx.HTTPError as err:
            log.warning("[proxy] upstream error for %s: %s", target, err)
            response = Response(b"", status=502)
            response.headers["X-Request-ID"] = request_id
            return response

        out = Headers([("X-Request-ID", request_id)])
        for name, value in reply.headers.multi_items():
            if name.lower() not in _RESPONSE_SKIP:
                out.add(name, value)
        return Response(reply.content, status=reply.status_code, headers=out)

    return app


def main(argv: list[str] | None = None) -> int:
    """Run the strangler proxy in front of the legacy and users services."""
    parser = argparse.ArgumentParser(prog="finpay-strangler", description=main.__doc__)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--users-url", default=USERS_URL)
    parser.add_argument("--legacy-url", default=LEGACY_URL)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    log.info("[proxy] listening on :%d", args.port)
    serve(create_proxy_app(args.users_url, args.legacy_url), args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())