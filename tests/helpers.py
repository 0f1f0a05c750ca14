"""Fakes, helpers and hypothesis strategies shared by the SmartConnect test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable

from hypothesis import strategies as st

from smartconnect.errors import FeedFetchError
from smartconnect.events import EventBus
from smartconnect.models.candidate import Candidate
from smartconnect.models.session import EngineEvent, EventKind, TunnelEvent, TunnelStatus
from smartconnect.tunnel.base import TunnelCredentials, TunnelListener


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_candidate(
    hostname: str,
    speed: int = 1_000_000,
    sessions: int = 0,
    latency: int = -1,
    ip: str | None = None,
    pool: bool = False,
) -> Candidate:
    return Candidate(
        hostname=hostname,
        ip=ip if ip is not None else hostname,
        country="Japan",
        country_code="JP",
        speed_bps=speed,
        session_count=sessions,
        is_pool_tagged=pool,
        measured_latency_ms=latency,
    )


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeStreamWriter:
    def close(self) -> None:
        pass

    async def wait_closed(self) -> None:
        pass


class FakeNetwork:
    """Stand-in for ``asyncio.open_connection`` keyed by probe address.

    Addresses in ``down`` refuse the connection; addresses in ``hang`` never
    answer (the prober's timeout fires). Everything else connects at once,
    or once ``gate`` is set when one is installed.
    """

    def __init__(self, down: Iterable[str] = (), hang: Iterable[str] = ()) -> None:
        self.down = set(down)
        self.hang = set(hang)
        self.gate: asyncio.Event | None = None
        self.calls: list[str] = []

    async def open_connection(self, host: str, port: int):  # noqa: ANN201
        self.calls.append(host)
        if host in self.hang:
            await asyncio.sleep(3600)
        if self.gate is not None:
            await self.gate.wait()
        if host in self.down:
            raise ConnectionRefusedError(host)
        await asyncio.sleep(0)
        return None, FakeStreamWriter()


class FakeFeedClient:
    """Serves a canned feed body, or raises FeedFetchError when ``body`` is None."""

    def __init__(self, body: bytes | None = b"") -> None:
        self.body = body
        self.calls = 0

    async def fetch(self) -> bytes:
        self.calls += 1
        if self.body is None:
            raise FeedFetchError(reason="ConnectError")
        return self.body


class FakeTunnel:
    """Tunnel that answers each ``connect`` according to ``script``.

    ``script`` maps hostname to a (status, message) pair that is reported to
    the listeners from inside ``connect``. Unscripted hostnames stay silent,
    so only the attempt timeout ends them.
    """

    def __init__(self, script: dict[str, tuple[TunnelStatus, str | None]] | None = None) -> None:
        self.script = dict(script or {})
        self.listeners: list[TunnelListener] = []
        self.connect_calls: list[str] = []
        self.disconnect_calls = 0
        self.credentials: TunnelCredentials | None = None

    def add_listener(self, listener: TunnelListener) -> None:
        self.listeners.append(listener)

    async def emit(self, status: TunnelStatus, message: str | None = None, hostname: str | None = None) -> None:
        event = TunnelEvent(status, message, hostname)
        for listener in list(self.listeners):
            await listener(event)

    async def connect(self, hostname: str, credentials: TunnelCredentials) -> None:
        self.connect_calls.append(hostname)
        self.credentials = credentials
        if hostname in self.script:
            status, message = self.script[hostname]
            await self.emit(status, message, hostname)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1


class FakeConnectivity:
    def __init__(self, online: bool = True) -> None:
        self.online = online
        self.calls = 0

    async def is_online(self) -> bool:
        self.calls += 1
        return self.online


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[EngineEvent] = []
        bus.add_listener(self.events.append)

    def of_kind(self, kind: EventKind) -> list[EngineEvent]:
        return [e for e in self.events if e.kind == kind]

    def messages(self, kind: EventKind) -> list[str | None]:
        return [e.message for e in self.of_kind(kind)]


# ---------------------------------------------------------------------------
# Hypothesis strategies
# ---------------------------------------------------------------------------

hostnames = st.from_regex(r"[a-z][a-z0-9-]{2,12}", fullmatch=True)

candidate_strategy = st.builds(
    Candidate,
    hostname=hostnames,
    ip=st.just("10.0.0.1"),
    speed_bps=st.integers(min_value=0, max_value=10**9),
    session_count=st.integers(min_value=0, max_value=10_000),
    is_pool_tagged=st.booleans(),
    measured_latency_ms=st.integers(min_value=-1, max_value=5_000),
)

candidate_lists = st.lists(candidate_strategy, max_size=30, unique_by=lambda c: c.hostname)
