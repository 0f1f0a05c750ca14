"""Tunnel adapter driving an external VPN client process.

The client (``sstpc`` by default) is launched from a command template in
which ``{hostname}``, ``{username}`` and ``{password}`` are substituted.
Status is derived from the process:

- spawn: CONNECTING
- a line of output containing the ready marker: CONNECTED
- exit after ``disconnect()`` or with status 0: DISCONNECTED
- any other exit, or a spawn failure: ERROR with the last output line
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from smartconnect.models.session import TunnelEvent, TunnelStatus
from smartconnect.tunnel.base import TunnelCredentials, TunnelListener

logger = logging.getLogger(__name__)


@dataclass
class _Running:
    hostname: str
    process: asyncio.subprocess.Process
    watcher: asyncio.Task[None] | None = None
    stopping: bool = False


class SubprocessTunnel:
    """Runs one VPN client process at a time and reports its status."""

    def __init__(
        self,
        command_template: Sequence[str],
        ready_marker: str,
        terminate_timeout_seconds: float = 5.0,
    ) -> None:
        self._command_template = list(command_template)
        self._ready_marker = ready_marker
        self._terminate_timeout_seconds = terminate_timeout_seconds
        self._listeners: list[TunnelListener] = []
        self._running: _Running | None = None
        self._background: set[asyncio.Task[None]] = set()

    def add_listener(self, listener: TunnelListener) -> None:
        self._listeners.append(listener)

    def build_command(self, hostname: str, credentials: TunnelCredentials) -> list[str]:
        values = {
            "hostname": hostname,
            "username": credentials.username,
            "password": credentials.password,
        }
        return [part.format(**values) for part in self._command_template]

    async def connect(self, hostname: str, credentials: TunnelCredentials) -> None:
        if self._running is not None:
            await self.disconnect()

        command = self.build_command(hostname, credentials)
        logger.info("Starting tunnel client", extra={"hostname": hostname})
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            logger.error(
                "Failed to start tunnel client: %s",
                exc,
                extra={"hostname": hostname, "error_reason": type(exc).__name__},
            )
            self._spawn(self._emit(TunnelEvent(TunnelStatus.ERROR, str(exc), hostname)))
            return

        running = _Running(hostname=hostname, process=process)
        self._running = running
        self._spawn(self._emit(TunnelEvent(TunnelStatus.CONNECTING, hostname=hostname)))
        running.watcher = asyncio.create_task(self._watch(running))

    async def disconnect(self) -> None:
        running = self._running
        if running is None:
            return
        running.stopping = True
        self._running = None
        if running.process.returncode is None:
            running.process.terminate()
            try:
                await asyncio.wait_for(running.process.wait(), timeout=self._terminate_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning("Tunnel client did not exit, killing", extra={"hostname": running.hostname})
                running.process.kill()
                await running.process.wait()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _watch(self, running: _Running) -> None:
        connected = False
        last_line = ""
        assert running.process.stdout is not None
        async for raw_line in running.process.stdout:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            last_line = line
            logger.debug("tunnel: %s", line, extra={"hostname": running.hostname})
            if not connected and self._ready_marker in line:
                connected = True
                await self._emit(TunnelEvent(TunnelStatus.CONNECTED, hostname=running.hostname))

        returncode = await running.process.wait()
        if self._running is running:
            self._running = None

        if running.stopping or returncode == 0:
            await self._emit(TunnelEvent(TunnelStatus.DISCONNECTED, hostname=running.hostname))
        else:
            message = last_line or f"Tunnel client exited with status {returncode}"
            await self._emit(TunnelEvent(TunnelStatus.ERROR, message, running.hostname))

    async def _emit(self, event: TunnelEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:  # noqa: BLE001
                logger.exception("Tunnel listener failed for %s", event.status.value)

    def _spawn(self, coro) -> None:  # noqa: ANN001
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def aclose(self) -> None:
        running = self._running
        await self.disconnect()
        if running is not None and running.watcher is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await running.watcher
