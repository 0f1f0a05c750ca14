"""Candidate repository: feed fetch, parse, probe and persist.

Keeps the latest ranked live probe result in memory (``current``) next to
the persisted cache, and publishes probe progress on the event bus so a UI
can render the list as it fills in.

Feed failures never escape: a fetch error or an unrecognized feed layout is
logged and produces an empty candidate list, which callers surface as "no
servers available".
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from smartconnect.errors import FeedFetchError
from smartconnect.events import EventBus
from smartconnect.feed.client import FeedClient
from smartconnect.feed.parser import CandidateParser
from smartconnect.models.candidate import Candidate
from smartconnect.models.session import EngineEvent, EventKind
from smartconnect.probe.prober import LatencyProber, ProbeProfile
from smartconnect.scoring.scorer import QualityScorer, filter_reachable
from smartconnect.store.cache import CandidateStore

logger = logging.getLogger(__name__)


class CandidateRepository:
    """Source of candidates for the orchestrator and the control API."""

    def __init__(
        self,
        *,
        feed_client: FeedClient,
        parser: CandidateParser,
        prober: LatencyProber,
        store: CandidateStore,
        scorer: QualityScorer,
        events: EventBus | None = None,
    ) -> None:
        self._feed_client = feed_client
        self._parser = parser
        self._prober = prober
        self._store = store
        self._scorer = scorer
        self._events = events or EventBus()
        self._current: list[Candidate] = []
        self._refreshing = False

    @property
    def store(self) -> CandidateStore:
        return self._store

    @property
    def prober(self) -> LatencyProber:
        return self._prober

    @property
    def current(self) -> list[Candidate]:
        """Ranked result of the most recent probe (may be empty)."""
        return self._store.without_purged(self._current)

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    def scorer(self) -> QualityScorer:
        """Scorer bound to the success history as it is right now."""
        history = self._store.success_history()
        return self._scorer.with_history(history.successful_hostnames)

    def forget(self, hostname: str) -> None:
        """Drop a purged candidate from the in-memory result."""
        self._current = [c for c in self._current if c.hostname != hostname]

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    async def fetch_candidates(self) -> list[Candidate]:
        """Fetch and parse the feed, caching the raw list when non-empty."""
        try:
            raw = await self._feed_client.fetch()
        except FeedFetchError as exc:
            logger.warning(
                "Feed fetch failed, no servers available",
                extra={"error_reason": exc.details or exc.message},
            )
            return []

        report = self._parser.parse_with_report(raw)
        if report.unrecognized_layout:
            logger.error(
                "Feed layout unrecognized, no servers available",
                extra={"error_reason": FeedFetchError.message},
            )
            return []

        if report.candidates:
            await self._store.save_raw(report.candidates)
        return self._store.without_purged(report.candidates)

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    async def probe_and_save(
        self,
        candidates: Sequence[Candidate],
        profile: ProbeProfile = ProbeProfile.FULL,
    ) -> list[Candidate]:
        """Probe ``candidates``, persist the reachable ones and return them ranked."""
        total = len(candidates)

        def _on_result(_index: int, candidate: Candidate) -> None:
            self._events.publish(
                EngineEvent(
                    kind=EventKind.PROBE_RESULT,
                    hostname=candidate.hostname,
                    candidates=(candidate,),
                )
            )

        def _on_progress(current: int, _total: int) -> None:
            self._events.publish(
                EngineEvent(kind=EventKind.PROGRESS, message="Testing servers", progress=(current, total))
            )

        probed = await self._prober.probe(
            candidates,
            profile,
            on_result=_on_result,
            on_progress=_on_progress,
        )
        reachable = filter_reachable(probed)
        await self._store.save_scored(reachable)

        # Hosts purged while the probe ran must not come back.
        ranked = self.scorer().rank(self._store.without_purged(reachable))
        self._current = ranked
        self._events.publish(EngineEvent(kind=EventKind.PROBE_COMPLETE, candidates=tuple(ranked)))
        logger.info(
            "Probe complete: %d of %d reachable",
            len(ranked),
            total,
            extra={"candidate_count": len(ranked)},
        )
        return ranked

    async def refresh(self, manual: bool = False) -> list[Candidate]:
        """Refresh the candidate list.

        Fetches and probes when ``should_refetch`` says so; otherwise serves
        the cached scored list (probing the cached raw list only when no
        scored list exists). A refresh requested while one is running is
        skipped and returns the current result.
        """
        if self._refreshing:
            logger.debug("Refresh already running, skipping duplicate request")
            return self.current

        self._refreshing = True
        try:
            if self._store.should_refetch(manual):
                candidates = await self.fetch_candidates()
                if not candidates:
                    self._events.publish(
                        EngineEvent(kind=EventKind.ERROR, message=FeedFetchError.message)
                    )
                    return []
                return await self.probe_and_save(candidates)

            scored = self._store.load_scored()
            if scored:
                self._current = self.scorer().rank(scored)
                return self.current

            return await self.probe_and_save(self._store.load_raw() or [])
        finally:
            self._refreshing = False

    def cached_ranked(self) -> list[Candidate]:
        """Rank the persisted scored list with the current success history."""
        return self.scorer().rank(self._store.load_scored() or [])
