"""Property tests for the failover loop.

# Feature: smart-connect, Property: Failover never retries a hostname in one session
# Feature: smart-connect, Property: Failover respects the attempt budget
"""

from __future__ import annotations

import asyncio

from hypothesis import given, settings, strategies as st

from smartconnect.events import EventBus
from smartconnect.feed.parser import CandidateParser
from smartconnect.models.session import MAX_FAILOVER_ATTEMPTS, ConnectionState, EventKind, TunnelStatus
from smartconnect.orchestrator.orchestrator import ConnectionOrchestrator
from smartconnect.probe.prober import LatencyProber
from smartconnect.scoring.scorer import QualityScorer
from smartconnect.services.candidate_service import CandidateRepository
from smartconnect.store.cache import CandidateStore
from smartconnect.store.kv import InMemoryKeyValueStore
from tests.helpers import (
    EventRecorder,
    FakeConnectivity,
    FakeFeedClient,
    FakeNetwork,
    FakeTunnel,
    make_candidate,
)


# --- Strategies ---

# Per candidate: (speed, reachable on re-probe, tunnel outcome)
scenario = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=10_000_000),
        st.booleans(),
        st.sampled_from(["error", "connected"]),
    ),
    min_size=1,
    max_size=25,
)


def _run_async(coro):
    """Run an async coroutine synchronously."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _run_scenario(entries):
    store = CandidateStore(InMemoryKeyValueStore())
    network = FakeNetwork()
    tunnel = FakeTunnel()
    bus = EventBus()
    recorder = EventRecorder(bus)

    candidates = []
    for index, (speed, reachable, outcome) in enumerate(entries):
        hostname = f"vpn{index:02d}"
        candidates.append(make_candidate(hostname, speed=speed))
        if not reachable:
            network.down.add(hostname)
        if outcome == "connected":
            tunnel.script[hostname] = (TunnelStatus.CONNECTED, None)
        else:
            tunnel.script[hostname] = (TunnelStatus.ERROR, f"{hostname} refused")

    await store.save_raw([c.with_latency(-1) for c in candidates])
    await store.save_scored([c.with_latency(10) for c in candidates])

    repository = CandidateRepository(
        feed_client=FakeFeedClient(),  # type: ignore[arg-type]
        parser=CandidateParser(),
        prober=LatencyProber(rapid_timeout_seconds=0.1, open_connection=network.open_connection),
        store=store,
        scorer=QualityScorer(),
        events=bus,
    )
    orchestrator = ConnectionOrchestrator(
        repository=repository,
        tunnel=tunnel,
        connectivity=FakeConnectivity(),
        events=bus,
        attempt_timeout_seconds=5.0,
    )
    await orchestrator.connect()
    # let cancelled attempt timers unwind before the loop closes
    await asyncio.sleep(0)
    return orchestrator, tunnel, recorder


# --- Failover never retries a hostname in one session ---

@settings(max_examples=60, deadline=None)
@given(entries=scenario)
def test_failover_never_repeats_a_hostname(entries) -> None:
    # Feature: smart-connect, Property: Failover never retries a hostname in one session
    orchestrator, tunnel, recorder = _run_async(_run_scenario(entries))

    assert len(tunnel.connect_calls) == len(set(tunnel.connect_calls))


# --- Failover respects the attempt budget ---

@settings(max_examples=60, deadline=None)
@given(entries=scenario)
def test_failover_terminates_within_budget(entries) -> None:
    """The sequence always ends: connected on a good host, or one terminal failure."""
    # Feature: smart-connect, Property: Failover respects the attempt budget
    orchestrator, tunnel, recorder = _run_async(_run_scenario(entries))

    failed_attempts = [h for h in tunnel.connect_calls if tunnel.script[h][0] == TunnelStatus.ERROR]
    assert len(failed_attempts) <= MAX_FAILOVER_ATTEMPTS
    assert orchestrator.session is None

    if orchestrator.state == ConnectionState.CONNECTED:
        last = tunnel.connect_calls[-1]
        assert tunnel.script[last][0] == TunnelStatus.CONNECTED
        assert orchestrator.connected_hostname == last
        assert recorder.of_kind(EventKind.FAILED) == []
    else:
        assert orchestrator.state == ConnectionState.DISCONNECTED
        assert len(recorder.of_kind(EventKind.FAILED)) == 1
        assert recorder.of_kind(EventKind.ERROR) == []
