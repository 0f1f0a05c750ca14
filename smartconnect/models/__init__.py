"""Data models: candidates, session state, events."""

from smartconnect.models.candidate import IN_FLIGHT, NOT_MEASURED, Candidate, CandidateSet
from smartconnect.models.session import (
    MAX_FAILOVER_ATTEMPTS,
    ConnectionState,
    EngineEvent,
    EventKind,
    SessionFailoverState,
    SuccessHistory,
    TunnelEvent,
    TunnelStatus,
)

__all__ = [
    "Candidate",
    "CandidateSet",
    "ConnectionState",
    "EngineEvent",
    "EventKind",
    "IN_FLIGHT",
    "MAX_FAILOVER_ATTEMPTS",
    "NOT_MEASURED",
    "SessionFailoverState",
    "SuccessHistory",
    "TunnelEvent",
    "TunnelStatus",
]
