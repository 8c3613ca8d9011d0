"""Small helpers shared by the HTTP services: responses and a development server."""

from __future__ import annotations

import json
from typing import Any, Callable

from werkzeug.serving import run_simple
from werkzeug.wrappers import Response

LISTEN_HOST = "0.0.0.0"


def text_response(text: str, status: int = 200) -> Response:
    """Return a plain-text response."""
    return Response(text, status=status, mimetype="text/plain")


def json_response(data: Any, status: int = 200) -> Response:
    """Return a compact JSON response terminated by a newline."""
    body = json.dumps(data, separators=(",", ":")) + "\n"
    return Response(body, status=status, mimetype="application/json")


def serve(app: Callable[..., Any], port: int) -> None:
    """Serve a WSGI application on every interface at the given port."""
    run_simple(LISTEN_HOST, port, app)