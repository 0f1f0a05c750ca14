"""FastAPI control service entry point with lifespan management.

Startup: validate settings, configure logging, build the store, feed client,
parser, prober, scorer, repository, tunnel adapter and orchestrator, then
start the background refresher.
Shutdown: cancel the refresher, disconnect the tunnel, stop the client
process.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from smartconnect.config.scoring_policy import load_scoring_policy
from smartconnect.config.settings import SmartConnectSettings
from smartconnect.connectivity import ConnectivityChecker
from smartconnect.errors import register_error_handlers
from smartconnect.events import EventBus
from smartconnect.feed.client import FeedClient
from smartconnect.feed.parser import CandidateParser
from smartconnect.logging_config import configure_logging
from smartconnect.middleware.auth import ServiceKeyAuthMiddleware
from smartconnect.orchestrator.orchestrator import ConnectionOrchestrator
from smartconnect.orchestrator.refresher import BackgroundRefresher
from smartconnect.probe.prober import LatencyProber
from smartconnect.routers.connection import create_connection_router
from smartconnect.routers.events import create_events_router
from smartconnect.routers.health import create_health_router
from smartconnect.routers.servers import create_servers_router
from smartconnect.scoring.scorer import QualityScorer
from smartconnect.services.candidate_service import CandidateRepository
from smartconnect.store.cache import CandidateStore
from smartconnect.store.kv import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore
from smartconnect.tunnel.base import TunnelCredentials
from smartconnect.tunnel.subprocess_tunnel import SubprocessTunnel

logger = logging.getLogger(__name__)

# Shared state for the application, populated during lifespan startup
_state: dict = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings = SmartConnectSettings()  # type: ignore[call-arg]

    configure_logging(settings.log_level)
    logger.info("Starting SmartConnect service on port %d", settings.port)

    kv: KeyValueStore
    if settings.store_path:
        kv = JsonFileKeyValueStore(settings.store_path)
    else:
        kv = InMemoryKeyValueStore()
    store = CandidateStore(kv, ttl_seconds=settings.cache_ttl_seconds)

    events = EventBus()

    repository = CandidateRepository(
        feed_client=FeedClient(settings.feed_url, timeout_seconds=settings.feed_timeout_seconds),
        parser=CandidateParser(
            domain_suffix=settings.domain_suffix,
            pool_pattern=settings.pool_hostname_pattern,
            excluded_country_codes=settings.excluded_country_codes,
        ),
        prober=LatencyProber(
            port=settings.probe_port,
            full_timeout_seconds=settings.probe_full_timeout_seconds,
            rapid_timeout_seconds=settings.probe_rapid_timeout_seconds,
            batch_size=settings.probe_batch_size,
        ),
        store=store,
        scorer=QualityScorer(load_scoring_policy(settings.scoring_policy_path)),
        events=events,
    )

    tunnel = SubprocessTunnel(settings.tunnel_command, settings.tunnel_ready_marker)

    orchestrator = ConnectionOrchestrator(
        repository=repository,
        tunnel=tunnel,
        connectivity=ConnectivityChecker(
            settings.connectivity_endpoints,
            timeout_seconds=settings.connectivity_timeout_seconds,
        ),
        events=events,
        credentials=TunnelCredentials(settings.tunnel_username, settings.tunnel_password),
        attempt_timeout_seconds=settings.attempt_timeout_seconds,
        max_attempts=settings.max_failover_attempts,
        retry_probe_size=settings.retry_probe_size,
    )

    refresher = BackgroundRefresher(
        repository,
        orchestrator,
        cooldown_seconds=settings.refresh_cooldown_seconds,
    )
    refresher_task = asyncio.create_task(refresher.run())

    # Mount routers
    app.include_router(create_health_router(orchestrator=orchestrator, store=store, events=events))
    app.include_router(create_connection_router(orchestrator=orchestrator))
    app.include_router(create_servers_router(repository=repository, orchestrator=orchestrator))
    app.include_router(create_events_router(events=events, orchestrator=orchestrator))

    _state.update({
        "settings": settings,
        "store": store,
        "events": events,
        "repository": repository,
        "orchestrator": orchestrator,
        "refresher": refresher,
    })

    logger.info("SmartConnect service started")

    yield

    # --- Shutdown ---
    logger.info("Shutting down SmartConnect service")

    refresher_task.cancel()
    try:
        await refresher_task
    except asyncio.CancelledError:
        pass

    await orchestrator.disconnect()
    await tunnel.aclose()

    logger.info("SmartConnect service shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Loads ``SmartConnectSettings`` eagerly so that a missing
    ``SMARTCONNECT_SERVICE_KEY`` fails at startup.
    """
    settings = SmartConnectSettings()  # type: ignore[call-arg]

    app = FastAPI(
        title="SmartConnect",
        version="1.0.0",
        lifespan=lifespan,
    )

    register_error_handlers(app)
    app.add_middleware(ServiceKeyAuthMiddleware, service_key=settings.service_key)

    return app


app = create_app()
