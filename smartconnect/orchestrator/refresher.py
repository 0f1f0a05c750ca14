"""Background re-probe of the cached candidate set.

Keeps the scored list warm while the device is idle so the next connect can
select immediately. Runs only while the orchestrator is DISCONNECTED and no
connect sequence is active, at most once per cooldown window.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from smartconnect.models.session import ConnectionState
from smartconnect.orchestrator.orchestrator import ConnectionOrchestrator
from smartconnect.probe.prober import ProbeProfile
from smartconnect.services.candidate_service import CandidateRepository

logger = logging.getLogger(__name__)


class BackgroundRefresher:
    """Periodically re-probes the cached raw list with the FULL profile."""

    def __init__(
        self,
        repository: CandidateRepository,
        orchestrator: ConnectionOrchestrator,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_run: float | None = None

    @property
    def last_run(self) -> float | None:
        return self._last_run

    def _idle(self) -> bool:
        return (
            self._orchestrator.state == ConnectionState.DISCONNECTED
            and not self._orchestrator.is_busy
            and not self._repository.is_refreshing
        )

    async def maybe_refresh(self) -> bool:
        """Re-probe when idle and outside the cooldown. Returns True if it ran."""
        if not self._idle():
            return False

        now = self._clock()
        if self._last_run is not None and now - self._last_run < self._cooldown_seconds:
            return False
        # Taken before probing so a concurrent call sees the window as used.
        self._last_run = now

        cached = self._repository.store.load_raw()
        if not cached:
            logger.debug("Background refresh skipped: no cached candidates")
            return False

        started = time.monotonic()
        ranked = await self._repository.probe_and_save(cached, ProbeProfile.FULL)
        logger.info(
            "Background refresh complete",
            extra={
                "candidate_count": len(ranked),
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )
        return True

    async def run(self) -> None:
        """Loop forever, attempting a refresh every cooldown interval."""
        while True:
            await asyncio.sleep(self._cooldown_seconds)
            try:
                await self.maybe_refresh()
            except Exception:  # noqa: BLE001
                logger.exception("Background refresh failed")
