"""Error hierarchy and FastAPI exception handlers.

All engine errors extend SmartConnectError. Most of them are recovered
inside the engine (feed, parse and probe failures never reach a caller);
the ones that do escape are rendered by the FastAPI handlers as the usual
JSON envelope: { success, data, error, meta }.
"""

from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class SmartConnectError(Exception):
    """Base error for all engine errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class FeedFetchError(SmartConnectError):
    """The candidate feed could not be fetched or had no usable layout."""

    status_code = 502
    message = "No servers available"


class ParseError(SmartConnectError):
    """A single feed row was rejected."""

    status_code = 422
    message = "Malformed feed row"


class ProbeTimeoutError(SmartConnectError):
    """A latency probe did not complete in time."""

    status_code = 504
    message = "Probe timed out"


class NoConnectivityError(SmartConnectError):
    """No network transport is up."""

    status_code = 503
    message = "No internet connection"


class TunnelError(SmartConnectError):
    """The tunnel subsystem reported an error for the active attempt."""

    status_code = 502
    message = "Tunnel error"


class TunnelTimeoutError(TunnelError):
    """The tunnel did not report a status before the attempt timeout."""

    status_code = 504
    message = "Connection timed out"


class AllCandidatesExhaustedError(SmartConnectError):
    """Failover ran out of budget or candidates."""

    status_code = 503
    message = "Connection failed"


class AuthenticationError(SmartConnectError):
    """Missing or invalid X-Service-Key."""

    status_code = 401
    message = "Authentication required"


class ConnectionInProgressError(SmartConnectError):
    """A connect sequence is already running."""

    status_code = 409
    message = "Connection already in progress"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "data": None,
            "error": error,
            "meta": meta,
        },
    )


async def _engine_error_handler(_request: Request, exc: SmartConnectError) -> JSONResponse:
    meta = exc.details if exc.details else None
    return _envelope(exc.status_code, exc.message, meta=meta)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _envelope(
        status_code=422,
        error="Validation error",
        meta={"fields": field_errors},
    )


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log traceback, return generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(SmartConnectError, _engine_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
