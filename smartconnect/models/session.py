"""Connection state, session failover state and event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from smartconnect.models.candidate import Candidate

MAX_FAILOVER_ATTEMPTS = 15


class ConnectionState(str, Enum):
    """Orchestrator connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TunnelStatus(str, Enum):
    """Status values reported by the tunnel subsystem."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class TunnelEvent:
    """A status event from the tunnel subsystem.

    ``hostname`` names the attempt the event belongs to when the tunnel knows
    it; events without one are attributed to the active attempt.
    """

    status: TunnelStatus
    message: str | None = None
    hostname: str | None = None


@dataclass
class SuccessHistory:
    """Hostnames that completed a full tunnel establishment."""

    successful_hostnames: set[str] = field(default_factory=set)
    last_successful: str | None = None


@dataclass
class SessionFailoverState:
    """Per connect-sequence failover bookkeeping.

    Created when a connect sequence begins and dropped on success, user
    cancel, or budget exhaustion.
    """

    queue: list[Candidate] = field(default_factory=list)
    attempted_hostnames: set[str] = field(default_factory=set)
    failed_this_session: set[str] = field(default_factory=set)
    unreachable_this_session: set[str] = field(default_factory=set)
    attempt_count: int = 0
    last_error: str | None = None
    queue_reloaded: bool = False

    def is_excluded(self, hostname: str) -> bool:
        return (
            hostname in self.attempted_hostnames
            or hostname in self.failed_this_session
            or hostname in self.unreachable_this_session
        )

    def remaining(self) -> list[Candidate]:
        """Queue entries that may still be attempted this session."""
        return [c for c in self.queue if not self.is_excluded(c.hostname)]

    def summary(self) -> dict[str, Any]:
        return {
            "attempt_count": self.attempt_count,
            "attempted": sorted(self.attempted_hostnames),
            "failed": sorted(self.failed_this_session),
            "remaining": len(self.remaining()),
        }


class EventKind(str, Enum):
    """Kinds of events published by the engine."""

    STATE_CHANGED = "state_changed"
    PROGRESS = "progress"
    ERROR = "error"
    PROBE_RESULT = "probe_result"
    PROBE_COMPLETE = "probe_complete"
    FAILED = "failed"


@dataclass(frozen=True)
class EngineEvent:
    """An event delivered to engine subscribers."""

    kind: EventKind
    state: ConnectionState | None = None
    hostname: str | None = None
    message: str | None = None
    progress: tuple[int, int] | None = None
    candidates: tuple[Candidate, ...] = ()
    error_type: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "state": self.state.value if self.state else None,
            "hostname": self.hostname,
            "message": self.message,
            "progress": list(self.progress) if self.progress else None,
            "candidates": [c.model_dump() for c in self.candidates],
            "error_type": self.error_type,
            "created_at": self.created_at.isoformat(),
        }
