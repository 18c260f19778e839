"""Exception handlers for the non-streaming part of the API.

Once ``/api/chat`` starts streaming, failures travel as ``error`` events
(see ``services/chat_service.py``).  What reaches these handlers is request
rejection before the stream opens:

- ``HTTPException`` raised by a router (``Missing messages or model``);
- ``ValueError`` from ``Message.from_dict`` on a malformed conversation;
- body validation failures (``num_ctx <= 0``, oversized ``session_id``);
- anything unexpected, logged with its traceback and returned as a bare 500.

Every response uses the ``{"error", "detail", "request_id"}`` body from
:func:`lexagent.errors.format_error_response`.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lexagent.errors import format_error_response

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    # Set by RequestIDMiddleware; bare test apps run without it.
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    detail: object = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error=error, detail=detail, request_id=_request_id(request),
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Keep the router's status; its detail becomes the displayed error."""
    message = str(exc.detail) if exc.detail else "Error"
    logger.warning("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, message)
    return _error_response(request, exc.status_code, message)


async def malformed_message_handler(request: Request, exc: ValueError) -> JSONResponse:
    """A conversation entry the engine cannot represent (bad role, nameless tool message)."""
    logger.warning("%s %s -> 400: %s", request.method, request.url.path, exc)
    return _error_response(request, status.HTTP_400_BAD_REQUEST, "Bad Request", str(exc))


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    logger.warning("%s %s -> 422: %s", request.method, request.url.path, errors)
    return _error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation failed", errors,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback server-side; the client only sees a generic 500."""
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        _request_id(request),
        exc_info=exc,
    )
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal Server Error",
        "Internal server error",
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register the handlers on *app* (before routers are included)."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, malformed_message_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
