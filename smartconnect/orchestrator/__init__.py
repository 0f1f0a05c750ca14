"""Connection orchestration and background refresh."""

from smartconnect.orchestrator.orchestrator import ConnectionOrchestrator
from smartconnect.orchestrator.refresher import BackgroundRefresher

__all__ = ["BackgroundRefresher", "ConnectionOrchestrator"]
