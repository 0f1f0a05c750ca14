"""Shared test fixtures for the SmartConnect test suite."""

from __future__ import annotations

import os

import pytest

from smartconnect.config.settings import SmartConnectSettings
from smartconnect.events import EventBus
from smartconnect.feed.parser import CandidateParser
from smartconnect.orchestrator.orchestrator import ConnectionOrchestrator
from smartconnect.probe.prober import LatencyProber
from smartconnect.scoring.scorer import QualityScorer
from smartconnect.services.candidate_service import CandidateRepository
from smartconnect.store.cache import CandidateStore
from smartconnect.store.kv import InMemoryKeyValueStore
from tests.helpers import (
    EventRecorder,
    FakeClock,
    FakeConnectivity,
    FakeFeedClient,
    FakeNetwork,
    FakeTunnel,
)


# ---------------------------------------------------------------------------
# Ensure required env vars are set for SmartConnectSettings in tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set minimal env vars so SmartConnectSettings can be instantiated in tests."""
    if "SMARTCONNECT_SERVICE_KEY" not in os.environ:
        monkeypatch.setenv("SMARTCONNECT_SERVICE_KEY", "test-key")


@pytest.fixture
def settings() -> SmartConnectSettings:
    return SmartConnectSettings(service_key="test-key")


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CandidateStore:
    return CandidateStore(InMemoryKeyValueStore(), ttl_seconds=4 * 60 * 60, clock=clock)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def prober(network: FakeNetwork) -> LatencyProber:
    return LatencyProber(
        full_timeout_seconds=0.2,
        rapid_timeout_seconds=0.1,
        open_connection=network.open_connection,
    )


@pytest.fixture
def feed_client() -> FakeFeedClient:
    return FakeFeedClient()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    return EventRecorder(bus)


@pytest.fixture
def repository(
    feed_client: FakeFeedClient,
    prober: LatencyProber,
    store: CandidateStore,
    bus: EventBus,
) -> CandidateRepository:
    return CandidateRepository(
        feed_client=feed_client,  # type: ignore[arg-type]
        parser=CandidateParser(),
        prober=prober,
        store=store,
        scorer=QualityScorer(),
        events=bus,
    )


@pytest.fixture
def tunnel() -> FakeTunnel:
    return FakeTunnel()


@pytest.fixture
def connectivity() -> FakeConnectivity:
    return FakeConnectivity()


@pytest.fixture
def orchestrator(
    repository: CandidateRepository,
    tunnel: FakeTunnel,
    connectivity: FakeConnectivity,
    bus: EventBus,
) -> ConnectionOrchestrator:
    return ConnectionOrchestrator(
        repository=repository,
        tunnel=tunnel,
        connectivity=connectivity,
        events=bus,
        attempt_timeout_seconds=0.05,
    )
