"""Quality scoring and ranking of candidates.

Canonical raw score: ``speed_bps / (session_count + 1)``. The ``+ 1`` avoids
division by zero and approximates the load our own connection will add.

``quality()`` applies the pool-tag penalty and the success bonus on top of the
strategy's raw score. ``score()`` places that quality inside the candidate's
tier band, so one number carries the whole ordering rule:

1. non-pool-tagged before pool-tagged
2. previously successful before the rest
3. higher quality first

A plain candidate (not pool-tagged, no success history) sits in the zero
band, so its score equals its raw score. ``rank()`` drops every candidate
without a positive measured latency and sorts by score, highest first. The
sort is stable, so equal scores keep their feed order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from smartconnect.config.scoring_policy import ScoringPolicy, StrategyName
from smartconnect.models.candidate import Candidate

logger = logging.getLogger(__name__)

# Width of one tier band. Quality is clamped below it so bands never overlap.
TIER_SPAN = 1e15

# Band offsets relative to a plain candidate, keyed by (pool tagged, successful).
_TIER_OFFSETS = {
    (False, True): TIER_SPAN,
    (False, False): 0.0,
    (True, True): -TIER_SPAN,
    (True, False): -2 * TIER_SPAN,
}


class ScoringStrategy(Protocol):
    """Computes the raw (pre penalty/bonus) score of a candidate."""

    def raw_score(self, candidate: Candidate, peers: Sequence[Candidate]) -> float: ...


class ThroughputStrategy:
    """``speed / (sessions + 1)``."""

    def raw_score(self, candidate: Candidate, peers: Sequence[Candidate] = ()) -> float:
        return candidate.speed_bps / (candidate.session_count + 1)


class CompositeStrategy:
    """Weighted blend of normalized throughput and a latency score.

    Throughput is normalized against the best throughput among ``peers``;
    latency scores 1.0 at 0 ms falling linearly to 0.0 at the ceiling. A
    candidate without a measured latency falls back to the feed-reported ping
    and otherwise scores 0 on latency.
    """

    def __init__(
        self,
        throughput_weight: float = 0.6,
        latency_weight: float = 0.4,
        latency_ceiling_ms: int = 1000,
    ) -> None:
        self._throughput_weight = throughput_weight
        self._latency_weight = latency_weight
        self._latency_ceiling_ms = latency_ceiling_ms
        self._throughput = ThroughputStrategy()

    def raw_score(self, candidate: Candidate, peers: Sequence[Candidate] = ()) -> float:
        throughput = self._throughput.raw_score(candidate)
        best = max((self._throughput.raw_score(p) for p in peers), default=throughput)
        normalized = throughput / best if best > 0 else 0.0

        latency = candidate.measured_latency_ms
        if latency <= 0 and candidate.reported_ping_ms:
            latency = candidate.reported_ping_ms
        if latency > 0:
            latency_score = max(0.0, 1.0 - latency / self._latency_ceiling_ms)
        else:
            latency_score = 0.0

        return self._throughput_weight * normalized + self._latency_weight * latency_score


def strategy_for(policy: ScoringPolicy) -> ScoringStrategy:
    if policy.strategy == StrategyName.COMPOSITE:
        return CompositeStrategy(
            throughput_weight=policy.composite.throughput,
            latency_weight=policy.composite.latency,
            latency_ceiling_ms=policy.composite.latency_ceiling_ms,
        )
    return ThroughputStrategy()


class QualityScorer:
    """Scores and ranks candidates.

    Args:
        policy: Tunable penalty/bonus magnitudes and strategy selection.
        successful_hostnames: Hostnames that earned the success bonus.
        strategy: Overrides the strategy named by ``policy``.
    """

    def __init__(
        self,
        policy: ScoringPolicy | None = None,
        successful_hostnames: Iterable[str] = (),
        strategy: ScoringStrategy | None = None,
    ) -> None:
        self._policy = policy or ScoringPolicy()
        self._strategy = strategy or strategy_for(self._policy)
        self._successful: frozenset[str] = frozenset(successful_hostnames)

    def with_history(self, successful_hostnames: Iterable[str]) -> QualityScorer:
        """Return a scorer sharing this policy but using a fresh success history."""
        return QualityScorer(self._policy, successful_hostnames, self._strategy)

    def is_successful(self, candidate: Candidate) -> bool:
        return candidate.hostname in self._successful

    def quality(self, candidate: Candidate, peers: Sequence[Candidate] = ()) -> float:
        """Raw score with the pool penalty and success bonus applied."""
        value = self._strategy.raw_score(candidate, peers)
        if candidate.is_pool_tagged:
            value *= self._policy.pool_penalty
        if self.is_successful(candidate):
            value *= self._policy.success_bonus
        return value

    def score(self, candidate: Candidate, peers: Sequence[Candidate] = ()) -> float:
        """Quality placed in the candidate's tier band; higher is better."""
        offset, quality = self._banded(candidate, peers)
        return offset + quality

    def _banded(self, candidate: Candidate, peers: Sequence[Candidate]) -> tuple[float, float]:
        quality = min(max(self.quality(candidate, peers), 0.0), TIER_SPAN - 1)
        return _TIER_OFFSETS[(candidate.is_pool_tagged, self.is_successful(candidate))], quality

    def rank(self, candidates: Iterable[Candidate]) -> list[Candidate]:
        """Return reachable candidates, best first."""
        candidates = list(candidates)
        reachable = filter_reachable(candidates)

        # Summed scores lose precision far from zero, so compare the pair.
        def _key(candidate: Candidate) -> tuple[float, float]:
            offset, quality = self._banded(candidate, reachable)
            return -offset, -quality

        ranked = sorted(reachable, key=_key)
        logger.debug(
            "Ranked %d candidates (%d discarded as unreachable)",
            len(ranked),
            len(candidates) - len(ranked),
        )
        return ranked

    def best(self, candidates: Iterable[Candidate]) -> Candidate | None:
        ranked = self.rank(candidates)
        return ranked[0] if ranked else None

    def top(self, candidates: Iterable[Candidate], count: int = 3) -> list[Candidate]:
        return self.rank(candidates)[:count]


def filter_reachable(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Keep only candidates with a positive measured latency."""
    return [c for c in candidates if c.is_reachable]
