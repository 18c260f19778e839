"""HTTP access log middleware.

One line per request on the ``lexagent.access`` logger:
``GET /api/models 200 3ms [req_id=...]``.  For ``/api/chat`` the duration
covers the whole SSE stream, so it doubles as a per-request latency figure.
"""

from __future__ import annotations

import json
import logging
import time

from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("lexagent.access")

_SKIP_PREFIXES = ("/health", "/favicon.ico")


class AccessLogMiddleware:
    """Pure ASGI middleware; wraps ``send`` to observe the status and error body."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path: str = scope.get("path", "")
        if path.startswith(_SKIP_PREFIXES):
            await self.app(scope, receive, send)
            return

        method: str = scope.get("method", "?")
        request_id: str = scope.get("state", {}).get("request_id", "-")
        t0 = time.perf_counter()
        status_code = 0
        error_detail = ""

        async def send_wrapper(message: dict) -> None:
            nonlocal status_code, error_detail
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
            elif message["type"] == "http.response.body" and status_code >= 400:
                error_detail = _error_from_body(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            if status_code == 0:
                status_code = 500
            raise
        finally:
            wall_ms = (time.perf_counter() - t0) * 1000
            _emit(method, path, status_code, wall_ms, request_id, error_detail)


def _error_from_body(body: bytes) -> str:
    if not body:
        return ""
    try:
        data = json.loads(body)
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    return str(data.get("detail", data.get("error", "")))[:200]


def _emit(
    method: str,
    path: str,
    status_code: int,
    wall_ms: float,
    request_id: str,
    error_detail: str,
) -> None:
    line = f"{method} {path} {status_code} {wall_ms:.0f}ms [req_id={request_id}]"
    if error_detail:
        line = f"{line} error={error_detail}"

    if status_code >= 500:
        logger.error(line)
    elif status_code >= 400:
        logger.warning(line)
    else:
        logger.info(line)
