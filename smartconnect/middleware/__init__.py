"""Control API middleware."""

from smartconnect.middleware.auth import ServiceKeyAuthMiddleware

__all__ = ["ServiceKeyAuthMiddleware"]
