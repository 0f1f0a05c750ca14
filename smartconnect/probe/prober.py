"""Concurrent TCP latency prober.

Each candidate is probed by its own asyncio task: the probe measures the
wall-clock time to establish a TCP connection to a fixed port. A failed or
timed-out probe yields ``measured_latency_ms = -1`` and is never raised.

Completions are delivered incrementally (``iter_probe`` yields them in
completion order; ``probe`` forwards them to an ``on_result`` callback) and
``probe`` finally returns the aggregate in the original input order. Because
all probes run concurrently, probing N candidates with timeout T takes about
T regardless of N (unless ``batch_size`` bounds concurrency).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from enum import Enum

from smartconnect.errors import ProbeTimeoutError
from smartconnect.models.candidate import NOT_MEASURED, Candidate

logger = logging.getLogger(__name__)

OpenConnection = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]
ResultCallback = Callable[[int, Candidate], None]
ProgressCallback = Callable[[int, int], None]
CompleteCallback = Callable[[list[Candidate]], None]


class ProbeProfile(str, Enum):
    """Timeout profiles sharing the same probe primitive."""

    FULL = "full"  # full list refresh
    RAPID = "rapid"  # cold start and failover re-probe


class LatencyProber:
    """Measures TCP connect latency for many candidates concurrently.

    Parameters
    ----------
    port:
        TCP port to connect to (443 for SSTP endpoints).
    full_timeout_seconds / rapid_timeout_seconds:
        Per-candidate timeout for each profile.
    batch_size:
        Maximum number of probes in flight at once; ``None`` means one task
        per candidate with no further bound.
    open_connection:
        Connection factory, ``asyncio.open_connection`` by default.
    """

    def __init__(
        self,
        port: int = 443,
        full_timeout_seconds: float = 3.0,
        rapid_timeout_seconds: float = 0.8,
        batch_size: int | None = None,
        open_connection: OpenConnection | None = None,
    ) -> None:
        self._port = port
        self._timeouts = {
            ProbeProfile.FULL: full_timeout_seconds,
            ProbeProfile.RAPID: rapid_timeout_seconds,
        }
        self._batch_size = batch_size
        self._open_connection = open_connection or asyncio.open_connection

    def timeout_for(self, profile: ProbeProfile) -> float:
        return self._timeouts[profile]

    # ------------------------------------------------------------------
    # Single measurement
    # ------------------------------------------------------------------

    async def measure(self, candidate: Candidate, timeout: float) -> Candidate:
        """Probe one candidate and return a copy carrying the measured latency."""
        started = time.monotonic()
        try:
            writer = await self._connect(candidate, timeout)
        except (OSError, ValueError, ProbeTimeoutError) as exc:
            reason = exc.message if isinstance(exc, ProbeTimeoutError) else type(exc).__name__
            logger.debug(
                "Probe failed for %s: %s",
                candidate.hostname,
                reason,
                extra={"hostname": candidate.hostname, "error_reason": reason},
            )
            return candidate.with_latency(NOT_MEASURED)

        latency_ms = max(1, round((time.monotonic() - started) * 1000))
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return candidate.with_latency(latency_ms)

    async def _connect(self, candidate: Candidate, timeout: float) -> asyncio.StreamWriter:
        try:
            _, writer = await asyncio.wait_for(
                self._open_connection(candidate.probe_address, self._port),
                timeout=timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ProbeTimeoutError(hostname=candidate.hostname, timeout_seconds=timeout) from exc
        return writer

    # ------------------------------------------------------------------
    # Batch probing
    # ------------------------------------------------------------------

    async def iter_probe(
        self,
        candidates: Sequence[Candidate],
        timeout: float,
    ) -> AsyncIterator[tuple[int, Candidate]]:
        """Yield ``(index, candidate_with_latency)`` pairs as probes complete."""
        semaphore = asyncio.Semaphore(self._batch_size) if self._batch_size else None

        async def _run(index: int, candidate: Candidate) -> tuple[int, Candidate]:
            if semaphore is None:
                return index, await self.measure(candidate, timeout)
            async with semaphore:
                return index, await self.measure(candidate, timeout)

        tasks = [asyncio.create_task(_run(i, c)) for i, c in enumerate(candidates)]
        for next_done in asyncio.as_completed(tasks):
            yield await next_done

    async def probe(
        self,
        candidates: Sequence[Candidate],
        profile: ProbeProfile = ProbeProfile.FULL,
        *,
        timeout: float | None = None,
        on_result: ResultCallback | None = None,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> list[Candidate]:
        """Probe all candidates and return them, with latency, in input order.

        ``on_result`` and ``on_progress`` fire once per completion (in
        completion order); ``on_complete`` fires once with the aggregate.
        """
        effective_timeout = timeout if timeout is not None else self.timeout_for(profile)
        total = len(candidates)
        results: list[Candidate] = list(candidates)
        started = time.monotonic()
        done = 0

        async for index, measured in self.iter_probe(candidates, effective_timeout):
            results[index] = measured
            done += 1
            if on_result is not None:
                on_result(index, measured)
            if on_progress is not None:
                on_progress(done, total)

        reachable = sum(1 for c in results if c.is_reachable)
        logger.info(
            "Probed %d candidates (%s): %d reachable",
            total,
            profile.value,
            reachable,
            extra={
                "candidate_count": total,
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )
        if on_complete is not None:
            on_complete(results)
        return results
