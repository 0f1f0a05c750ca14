"""Control API routers."""

from smartconnect.routers.connection import create_connection_router
from smartconnect.routers.events import create_events_router
from smartconnect.routers.health import create_health_router
from smartconnect.routers.servers import create_servers_router

__all__ = [
    "create_connection_router",
    "create_events_router",
    "create_health_router",
    "create_servers_router",
]
