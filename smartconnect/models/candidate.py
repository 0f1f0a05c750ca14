"""Candidate endpoint model.

``measured_latency_ms`` carries three meanings:

- ``-1``: not measured, or the last probe failed
- ``0``: probe in flight
- ``> 0``: real round-trip to establish a TCP connection, in milliseconds
"""

from __future__ import annotations

from pydantic import BaseModel, Field

NOT_MEASURED = -1
IN_FLIGHT = 0


class Candidate(BaseModel):
    """A single VPN endpoint entry from the feed."""

    hostname: str = Field(..., min_length=3)
    ip: str
    country: str = ""
    country_code: str = ""
    speed_bps: int = Field(default=0, ge=0)
    session_count: int = Field(default=0, ge=0)
    is_pool_tagged: bool = False
    measured_latency_ms: int = NOT_MEASURED

    # Legacy feed extras
    reported_ping_ms: int | None = None
    feed_score: int | None = None
    uptime_ms: int | None = None
    total_users: int | None = None
    total_traffic: int | None = None

    @property
    def is_reachable(self) -> bool:
        return self.measured_latency_ms > 0

    @property
    def probe_address(self) -> str:
        """Address used for latency probes: the IP when known, else the hostname."""
        return self.ip or self.hostname

    def with_latency(self, latency_ms: int) -> Candidate:
        return self.model_copy(update={"measured_latency_ms": latency_ms})


CandidateSet = list[Candidate]
