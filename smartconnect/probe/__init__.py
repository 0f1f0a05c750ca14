"""Latency probing."""

from smartconnect.probe.prober import LatencyProber, ProbeProfile

__all__ = ["LatencyProber", "ProbeProfile"]
