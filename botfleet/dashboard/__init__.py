"""Control surface: FastAPI WebSocket server and log forwarding."""

from .log_bridge import DashboardLogHandler
from .server import create_app, handle_frame, run_dashboard
from .websocket import ConnectionManager, ControlSurface

__all__ = [
    "ConnectionManager",
    "ControlSurface",
    "DashboardLogHandler",
    "create_app",
    "handle_frame",
    "run_dashboard",
]
