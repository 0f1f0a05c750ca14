"""Connection control endpoints.

- GET  /connection: state, active hostname and failover session summary
- POST /connection/connect: automatic connect with failover
- POST /connection/connect/{hostname}: connect to one server, no failover
- POST /connection/disconnect: user disconnect or cancel
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Path

from smartconnect.errors import ConnectionInProgressError
from smartconnect.models.responses import ApiResponse
from smartconnect.models.session import ConnectionState

logger = logging.getLogger(__name__)


def create_connection_router(*, orchestrator: Any = None) -> APIRouter:
    """Factory that creates the connection router with injected dependencies."""

    connection_router = APIRouter(prefix="/connection", tags=["connection"])

    def _ensure_idle() -> None:
        if orchestrator.is_busy or orchestrator.state != ConnectionState.DISCONNECTED:
            raise ConnectionInProgressError(state=orchestrator.state.value)

    def _result() -> dict:
        # A sequence that already ended in failure reports the failure itself.
        failure = orchestrator.last_failure
        if failure is not None and orchestrator.state == ConnectionState.DISCONNECTED:
            raise failure
        return ApiResponse(success=True, data=orchestrator.snapshot()).model_dump()

    @connection_router.get("")
    async def get_connection() -> dict:
        return ApiResponse(success=True, data=orchestrator.snapshot()).model_dump()

    @connection_router.post("/connect", status_code=202)
    async def connect() -> dict:
        """Start a connect sequence; returns once the first attempt is issued."""
        _ensure_idle()
        await orchestrator.connect()
        return _result()

    @connection_router.post("/connect/{hostname}", status_code=202)
    async def connect_to(hostname: str = Path(..., min_length=3, max_length=253)) -> dict:
        _ensure_idle()
        await orchestrator.connect_to(hostname)
        return _result()

    @connection_router.post("/disconnect")
    async def disconnect() -> dict:
        await orchestrator.disconnect()
        return ApiResponse(success=True, data=orchestrator.snapshot()).model_dump()

    return connection_router
