"""Candidate scoring and ranking."""

from smartconnect.scoring.scorer import (
    CompositeStrategy,
    QualityScorer,
    ScoringStrategy,
    ThroughputStrategy,
    filter_reachable,
    strategy_for,
)

__all__ = [
    "CompositeStrategy",
    "QualityScorer",
    "ScoringStrategy",
    "ThroughputStrategy",
    "filter_reachable",
    "strategy_for",
]
