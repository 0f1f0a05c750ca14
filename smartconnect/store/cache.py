"""Candidate cache and success history on top of a key-value store.

Layout (one JSON value per key):

- raw list: the last parsed feed, stamped with a fetch timestamp
- scored list: the last probed list, reachable candidates only
- successful hostnames and the last successful hostname

The raw list governs freshness: it is refetched when a manual refresh is
requested, when it is empty, or once it is older than the TTL (4 hours).

Writes come from the orchestrator (success, purge) and from probe
completions (scored list), so every write runs under one ``asyncio.Lock``.
Reads are single-key and need no lock.

A purged hostname is remembered until ``clear()``. List writes drop it under
the same lock, so a probe that started before the purge cannot write the
host back when it completes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Iterable

from pydantic import TypeAdapter, ValidationError

from smartconnect.models.candidate import Candidate
from smartconnect.models.session import SuccessHistory
from smartconnect.store.kv import KeyValueStore

logger = logging.getLogger(__name__)

RAW_KEY = "cached_servers_json"
SCORED_KEY = "sorted_servers_with_pings"
TIMESTAMP_KEY = "cache_timestamp"
SUCCESSFUL_KEY = "successful_servers"
LAST_SUCCESSFUL_KEY = "last_successful_server"

DEFAULT_TTL_SECONDS = 4 * 60 * 60

_CANDIDATE_LIST = TypeAdapter(list[Candidate])


class CandidateStore:
    """Persistence store for candidates and success history.

    Args:
        kv: Backing key-value store.
        ttl_seconds: Age after which the raw list is stale.
        clock: Wall-clock source in seconds (``time.time`` by default).
    """

    def __init__(
        self,
        kv: KeyValueStore,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._purged: set[str] = set()

    # ------------------------------------------------------------------
    # Candidate lists
    # ------------------------------------------------------------------

    async def save_raw(self, candidates: Iterable[Candidate]) -> None:
        async with self._lock:
            kept = self.without_purged(candidates)
            self._kv.set(RAW_KEY, self._encode(kept))
            self._kv.set(TIMESTAMP_KEY, repr(self._clock()))
        logger.debug("Cached %d raw candidates", len(kept), extra={"candidate_count": len(kept)})

    async def save_scored(self, candidates: Iterable[Candidate]) -> None:
        """Persist the probed list, dropping every unreachable or purged candidate.

        An empty result is written too, so candidates a probe just proved
        unreachable never linger from an earlier save.
        """
        candidates = list(candidates)
        async with self._lock:
            kept = [c for c in self.without_purged(candidates) if c.is_reachable]
            self._kv.set(SCORED_KEY, self._encode(kept))
        logger.debug(
            "Saved %d scored candidates (%d dropped)",
            len(kept),
            len(candidates) - len(kept),
            extra={"candidate_count": len(kept)},
        )

    def is_purged(self, hostname: str) -> bool:
        return hostname in self._purged

    def without_purged(self, candidates: Iterable[Candidate]) -> list[Candidate]:
        return [c for c in candidates if c.hostname not in self._purged]

    def load_raw(self) -> list[Candidate] | None:
        return self._decode(RAW_KEY)

    def load_scored(self) -> list[Candidate] | None:
        return self._decode(SCORED_KEY)

    async def purge(self, hostname: str) -> None:
        """Permanently remove one candidate from both lists."""
        async with self._lock:
            self._purged.add(hostname)
            for key in (RAW_KEY, SCORED_KEY):
                current = self._decode(key)
                if current is None:
                    continue
                kept = [c for c in current if c.hostname != hostname]
                if len(kept) != len(current):
                    self._kv.set(key, self._encode(kept))
        logger.info("Purged candidate from cache", extra={"hostname": hostname})

    # ------------------------------------------------------------------
    # Freshness
    # ------------------------------------------------------------------

    def fetched_at(self) -> float | None:
        raw = self._kv.get(TIMESTAMP_KEY)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            return None

    def is_fresh(self) -> bool:
        fetched_at = self.fetched_at()
        if fetched_at is None:
            return False
        return (self._clock() - fetched_at) < self._ttl_seconds

    def cache_age_minutes(self) -> int:
        fetched_at = self.fetched_at()
        if fetched_at is None:
            return -1
        return int((self._clock() - fetched_at) // 60)

    def should_refetch(self, manual: bool = False) -> bool:
        """Decide whether the raw feed must be fetched again.

        True on a manual request, when no raw list is cached, or once the
        cache is older than the TTL.
        """
        if manual:
            return True
        if not self.load_raw():
            return True
        return not self.is_fresh()

    # ------------------------------------------------------------------
    # Success history
    # ------------------------------------------------------------------

    async def record_success(self, hostname: str) -> None:
        async with self._lock:
            history = self.success_history()
            history.successful_hostnames.add(hostname)
            self._kv.set(SUCCESSFUL_KEY, json.dumps(sorted(history.successful_hostnames)))
            self._kv.set(LAST_SUCCESSFUL_KEY, hostname)
        logger.info("Recorded successful connection", extra={"hostname": hostname})

    def success_history(self) -> SuccessHistory:
        hostnames: set[str] = set()
        raw = self._kv.get(SUCCESSFUL_KEY)
        if raw:
            try:
                hostnames = {str(h) for h in json.loads(raw)}
            except (json.JSONDecodeError, TypeError):
                logger.error("Corrupt success history, ignoring")
        return SuccessHistory(
            successful_hostnames=hostnames,
            last_successful=self._kv.get(LAST_SUCCESSFUL_KEY) or None,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(self) -> None:
        async with self._lock:
            for key in (RAW_KEY, SCORED_KEY, TIMESTAMP_KEY, SUCCESSFUL_KEY, LAST_SUCCESSFUL_KEY):
                self._kv.delete(key)
            self._purged.clear()
        logger.info("Cache cleared")

    def get_stats(self) -> dict:
        raw = self.load_raw() or []
        scored = self.load_scored() or []
        history = self.success_history()
        return {
            "raw_count": len(raw),
            "scored_count": len(scored),
            "cache_age_minutes": self.cache_age_minutes(),
            "fresh": self.is_fresh(),
            "successful_count": len(history.successful_hostnames),
            "last_successful": history.last_successful,
            "purged_count": len(self._purged),
        }

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    @staticmethod
    def _encode(candidates: list[Candidate]) -> str:
        return _CANDIDATE_LIST.dump_json(candidates).decode("utf-8")

    def _decode(self, key: str) -> list[Candidate] | None:
        raw = self._kv.get(key)
        if not raw:
            return None
        try:
            candidates = _CANDIDATE_LIST.validate_json(raw)
        except ValidationError as exc:
            logger.error("Failed to load %s: %s", key, exc.error_count())
            return None
        return candidates or None
