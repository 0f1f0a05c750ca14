"""Configuration module: settings and scoring policy."""

from smartconnect.config.scoring_policy import (
    CompositeWeights,
    ScoringPolicy,
    StrategyName,
    load_scoring_policy,
)
from smartconnect.config.settings import SmartConnectSettings

__all__ = [
    "CompositeWeights",
    "ScoringPolicy",
    "SmartConnectSettings",
    "StrategyName",
    "load_scoring_policy",
]
