"""X-Service-Key authentication for the control API.

Every path except ``/health`` needs a valid ``X-Service-Key`` header. The
key is compared with ``hmac.compare_digest``.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from smartconnect.errors import AuthenticationError, _envelope

logger = logging.getLogger(__name__)

_PUBLIC_PATHS: set[str] = {"/health"}


class ServiceKeyAuthMiddleware(BaseHTTPMiddleware):
    """Rejects control API requests that lack the configured service key."""

    def __init__(self, app, service_key: str) -> None:  # noqa: ANN001
        super().__init__(app)
        self._service_key = service_key

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in _PUBLIC_PATHS:
            return await call_next(request)

        provided_key = request.headers.get("x-service-key")
        if not provided_key or not hmac.compare_digest(provided_key, self._service_key):
            logger.warning(
                "Rejected control request to %s",
                request.url.path,
                extra={"error_reason": "missing_service_key" if not provided_key else "invalid_service_key"},
            )
            return _envelope(
                status_code=AuthenticationError.status_code,
                error=AuthenticationError.message,
            )

        return await call_next(request)
