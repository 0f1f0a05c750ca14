"""Network connectivity check.

Answers "is any network transport up" by opening a TCP connection to a few
well-known endpoints; the first success wins. Consulted before every connect
sequence so an offline device fails fast.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

logger = logging.getLogger(__name__)


class ConnectivityCheck(Protocol):
    async def is_online(self) -> bool: ...


def _split_endpoint(endpoint: str) -> tuple[str, int]:
    host, _, port = endpoint.rpartition(":")
    return host, int(port)


class ConnectivityChecker:
    """TCP reachability check against a list of ``host:port`` endpoints."""

    def __init__(
        self,
        endpoints: Sequence[str] = ("1.1.1.1:53", "8.8.8.8:53"),
        timeout_seconds: float = 2.0,
    ) -> None:
        self._endpoints = [_split_endpoint(e) for e in endpoints]
        self._timeout_seconds = timeout_seconds

    async def _try(self, host: str, port: int) -> bool:
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self._timeout_seconds
            )
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return True

    async def is_online(self) -> bool:
        if not self._endpoints:
            return True
        results = await asyncio.gather(*(self._try(h, p) for h, p in self._endpoints))
        online = any(results)
        if not online:
            logger.warning("No network connectivity")
        return online
