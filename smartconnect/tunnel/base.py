"""Tunnel subsystem interface.

The engine never speaks a VPN protocol itself. It issues ``connect`` and
``disconnect`` commands and reacts to the status events the tunnel reports
to its listeners.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol

from smartconnect.models.session import TunnelEvent

TunnelListener = Callable[[TunnelEvent], Awaitable[None]]


@dataclass(frozen=True)
class TunnelCredentials:
    """Credentials handed to the tunnel on connect."""

    username: str = "vpn"
    password: str = "vpn"

    def __repr__(self) -> str:
        return f"TunnelCredentials(username={self.username!r}, password='***')"


class TunnelClient(Protocol):
    """Commands accepted by, and events produced by, the tunnel subsystem."""

    def add_listener(self, listener: TunnelListener) -> None: ...

    async def connect(self, hostname: str, credentials: TunnelCredentials) -> None: ...

    async def disconnect(self) -> None: ...
