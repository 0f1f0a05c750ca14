"""Engine event stream.

- GET /events?limit=: newline-delimited JSON. The first line is a snapshot
  of the connection; each following line is one engine event.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse


def create_events_router(*, events: Any = None, orchestrator: Any = None) -> APIRouter:
    """Factory that creates the events router with injected dependencies."""

    events_router = APIRouter(tags=["events"])

    async def _stream(limit: int | None) -> AsyncIterator[str]:
        sent = 0
        snapshot = {"kind": "snapshot", **(orchestrator.snapshot() if orchestrator else {})}
        yield json.dumps(snapshot) + "\n"
        sent += 1
        if limit is not None and sent >= limit:
            return

        async with events.subscribe() as subscription:
            async for event in subscription:
                yield json.dumps(event.to_dict()) + "\n"
                sent += 1
                if limit is not None and sent >= limit:
                    return

    @events_router.get("/events")
    async def stream_events(limit: int | None = Query(default=None, ge=1)) -> StreamingResponse:
        return StreamingResponse(_stream(limit), media_type="application/x-ndjson")

    return events_router
