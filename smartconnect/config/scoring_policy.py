"""Scoring policy model and YAML loader.

The bonus and penalty magnitudes used by the quality scorer are tunable;
they live in a YAML file so they can change without a release. The ordering
rule itself (reachable only, non-pool first, previously successful first,
then higher score) is fixed in the scorer and is not configurable here.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class StrategyName(str, Enum):
    """Available raw-score strategies."""

    THROUGHPUT = "throughput"
    COMPOSITE = "composite"


class CompositeWeights(BaseModel):
    """Weights for the composite strategy (throughput vs latency)."""

    throughput: float = Field(default=0.6, ge=0)
    latency: float = Field(default=0.4, ge=0)
    latency_ceiling_ms: int = Field(default=1000, ge=1)


class ScoringPolicy(BaseModel):
    """Tunable scoring constants."""

    strategy: StrategyName = StrategyName.THROUGHPUT
    pool_penalty: float = Field(default=0.5, gt=0, le=1)
    success_bonus: float = Field(default=1.5, ge=1)
    composite: CompositeWeights = CompositeWeights()


_DEFAULT_POLICY = ScoringPolicy()


def load_scoring_policy(yaml_path: str) -> ScoringPolicy:
    """Parse a scoring policy YAML file.

    Args:
        yaml_path: Path to the YAML configuration file.

    Returns:
        The parsed policy, or the built-in default when the file is missing
        or invalid.
    """
    path = Path(yaml_path)

    if not path.exists():
        logger.warning("Scoring policy file not found at %s, using built-in defaults", yaml_path)
        return _DEFAULT_POLICY

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        logger.error("Failed to parse scoring policy YAML at %s: %s", yaml_path, exc)
        return _DEFAULT_POLICY

    if not isinstance(raw, dict) or "scoring" not in raw:
        logger.warning("Scoring policy YAML missing 'scoring' key, using built-in defaults")
        return _DEFAULT_POLICY

    try:
        return ScoringPolicy.model_validate(raw["scoring"] or {})
    except Exception as exc:
        logger.error("Invalid scoring policy at %s: %s, using built-in defaults", yaml_path, exc)
        return _DEFAULT_POLICY
