"""Candidate list endpoints.

- GET  /servers: ranked candidates (live probe result, else the cache)
- POST /servers/refresh?manual=: refresh the list, refetching when due.
  Rejected with 409 while a connection is being made or is up.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from smartconnect.errors import ConnectionInProgressError
from smartconnect.models.responses import ApiResponse
from smartconnect.models.session import ConnectionState

REFRESH_BUSY_MESSAGE = "Server list cannot be refreshed while connecting or connected"


def create_servers_router(*, repository: Any = None, orchestrator: Any = None) -> APIRouter:
    """Factory that creates the servers router with injected dependencies."""

    servers_router = APIRouter(prefix="/servers", tags=["servers"])

    def _listing(candidates: list) -> dict:
        return ApiResponse(
            success=True,
            data={
                "servers": [c.model_dump() for c in candidates],
                "count": len(candidates),
            },
            meta=repository.store.get_stats(),
        ).model_dump()

    @servers_router.get("")
    async def list_servers() -> dict:
        candidates = repository.current or repository.cached_ranked()
        return _listing(candidates)

    @servers_router.post("/refresh")
    async def refresh_servers(manual: bool = Query(default=False)) -> dict:
        """Refresh; ``manual=true`` forces a feed fetch regardless of cache age."""
        if orchestrator.is_busy or orchestrator.state != ConnectionState.DISCONNECTED:
            raise ConnectionInProgressError(REFRESH_BUSY_MESSAGE, state=orchestrator.state.value)
        candidates = await repository.refresh(manual=manual)
        return _listing(candidates)

    return servers_router
