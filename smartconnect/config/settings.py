"""Pydantic Settings for the SmartConnect engine.

All environment variables use the SMARTCONNECT_ prefix.
Example: SMARTCONNECT_PORT=8002, SMARTCONNECT_SERVICE_KEY=my-secret-key
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class SmartConnectSettings(BaseSettings):
    """Engine and control API configuration validated from environment variables."""

    # Service
    port: int = 8002
    service_key: str  # X-Service-Key for the control API
    log_level: str = "INFO"

    # Candidate feed
    feed_url: str = (
        "https://raw.githubusercontent.com/mahdigholamipak/vpn-list-mirror/refs/heads/main/server_list.csv"
    )
    feed_timeout_seconds: float = Field(default=15.0, gt=0)
    domain_suffix: str = ".opengw.net"
    pool_hostname_pattern: str = r"^public-vpn-\d+"
    excluded_country_codes: list[str] = []

    # Latency probing
    probe_port: int = Field(default=443, ge=1, le=65535)
    probe_full_timeout_seconds: float = Field(default=3.0, gt=0)
    probe_rapid_timeout_seconds: float = Field(default=0.8, gt=0)
    probe_batch_size: int | None = Field(default=None, ge=1)  # None = unbounded

    # Persistence
    store_path: str | None = None  # JSON file; in-memory when unset
    cache_ttl_seconds: int = Field(default=4 * 60 * 60, ge=1)

    # Failover
    attempt_timeout_seconds: float = Field(default=15.0, gt=0)
    max_failover_attempts: int = Field(default=15, ge=1)
    retry_probe_size: int = Field(default=10, ge=1)
    refresh_cooldown_seconds: float = Field(default=60.0, ge=1)

    # Tunnel subsystem
    tunnel_command: list[str] = [
        "sstpc",
        "--cert-warn",
        "--user",
        "{username}",
        "--password",
        "{password}",
        "{hostname}",
        "usepeerdns",
        "require-mschap-v2",
        "noauth",
        "noipdefault",
        "defaultroute",
        "nodetach",
    ]
    tunnel_ready_marker: str = "ip-up"
    tunnel_username: str = "vpn"
    tunnel_password: str = "vpn"

    # Connectivity check
    connectivity_endpoints: list[str] = ["1.1.1.1:53", "8.8.8.8:53"]
    connectivity_timeout_seconds: float = Field(default=2.0, gt=0)

    # Scoring
    scoring_policy_path: str = "smartconnect/config/scoring_policy.yaml"

    model_config = {"env_prefix": "SMARTCONNECT_"}
