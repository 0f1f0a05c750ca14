"""Health endpoint (no X-Service-Key required).

- GET /health: service status, connection state and cache stats
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from smartconnect.models.responses import ApiResponse


def create_health_router(
    *,
    orchestrator: Any = None,
    store: Any = None,
    events: Any = None,
) -> APIRouter:
    """Factory that creates the health router with injected dependencies."""

    health_router = APIRouter(tags=["health"])

    @health_router.get("/health")
    async def health() -> dict:
        state = orchestrator.state.value if orchestrator else None
        return ApiResponse(
            success=True,
            data={
                "status": "healthy",
                "connection_state": state,
                "cache": store.get_stats() if store else {},
                "subscribers": events.subscriber_count if events else 0,
            },
        ).model_dump()

    return health_router
