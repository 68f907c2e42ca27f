"""FastAPI control surface for the bot fleet.

One WebSocket endpoint carries everything: supervisor events go up as
`{"event", "data"}` frames, operator actions come down the same way.
Two small REST routes expose fleet status for scripts and health checks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Callable

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from ..accounts import AccountStore
from ..config_schema import AppConfig
from ..errors import CommandRejected
from ..fleet.supervisor import FleetSupervisor
from ..messages import parse_command
from ..world.connection import ConnectionFactory
from ..world.offline import OfflineWorld
from . import log_bridge
from .websocket import ControlSurface, frame

logger = logging.getLogger(__name__)


class InvalidFrame(ValueError):
    """A downward frame that cannot be acted on."""


def _handle_spawn_auth_bot(supervisor: FleetSupervisor, data: Any) -> None:
    supervisor.spawn_auth_unit()


def _handle_send_command(supervisor: FleetSupervisor, data: Any) -> None:
    try:
        command = parse_command(data)
    except CommandRejected as e:
        raise InvalidFrame(str(e)) from e
    supervisor.broadcast(command)


def _handle_send_chat(supervisor: FleetSupervisor, data: Any) -> None:
    message = data.get("message") if isinstance(data, dict) else None
    if not isinstance(message, str) or not message:
        raise InvalidFrame("send-chat requires a non-empty 'message'")
    supervisor.send_chat(message)


def _handle_disconnect_all(supervisor: FleetSupervisor, data: Any) -> None:
    supervisor.terminate_all()


FRAME_HANDLERS: dict[str, Callable[[FleetSupervisor, Any], None]] = {
    "spawn-auth-bot": _handle_spawn_auth_bot,
    "send-command": _handle_send_command,
    "send-chat": _handle_send_chat,
    "disconnect-all": _handle_disconnect_all,
}


def handle_frame(supervisor: FleetSupervisor, raw: str) -> bool:
    """Apply one downward frame. Invalid frames are logged and ignored.

    Returns:
        True if the frame was acted on
    """
    try:
        message = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring non-JSON frame: %s", raw[:100])
        return False
    if not isinstance(message, dict):
        logger.warning("Ignoring frame that is not an object: %s", raw[:100])
        return False

    event = message.get("event")
    handler = FRAME_HANDLERS.get(event) if isinstance(event, str) else None
    if handler is None:
        logger.warning("Ignoring unknown event %r", event)
        return False

    try:
        handler(supervisor, message.get("data") or {})
    except InvalidFrame as e:
        logger.warning("Ignoring %s: %s", event, e)
        return False
    return True


def _register_api_routes(app: FastAPI) -> None:
    """REST status routes."""

    @app.get("/api/bots")
    async def get_bots() -> dict[str, Any]:
        """Live bots with their names, state and last reported status."""
        return app.state.supervisor.snapshot()

    @app.get("/api/health")
    async def get_health() -> dict[str, Any]:
        supervisor: FleetSupervisor = app.state.supervisor
        surface: ControlSurface = app.state.surface
        return {
            "status": "ok",
            "bots": len(supervisor.identities),
            "pending_respawns": len(supervisor.pending_respawns),
            "connections": surface.manager.connection_count,
        }


def _register_websocket_routes(app: FastAPI, keepalive_seconds: float) -> None:
    """Register the control WebSocket."""

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        surface: ControlSurface = app.state.surface
        supervisor: FleetSupervisor = app.state.supervisor
        await surface.manager.connect(websocket)

        try:
            await websocket.send_text(
                json.dumps(frame("initial-accounts", supervisor.online_names()))
            )

            while True:
                try:
                    data = await asyncio.wait_for(
                        websocket.receive_text(),
                        timeout=keepalive_seconds,
                    )
                except asyncio.TimeoutError:
                    await websocket.send_text("ping")
                    continue

                if data == "ping":
                    await websocket.send_text("pong")
                elif data == "pong":
                    continue
                else:
                    handle_frame(supervisor, data)

        except WebSocketDisconnect:
            logger.info("Client disconnected normally")
        finally:
            await surface.manager.disconnect(websocket)


def create_app(
    config: AppConfig,
    connection_factory: ConnectionFactory | None = None,
    accounts: AccountStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Validated application config
        connection_factory: Builds one connection per bot login. Defaults to
            an offline world built from config.offline.
        accounts: Account store. Defaults to config.accounts_file.
    """
    world: OfflineWorld | None = None
    if connection_factory is None:
        world = OfflineWorld.from_config(config.offline)
        connection_factory = world.connect
    store = accounts or AccountStore(config.accounts_file)
    surface = ControlSurface()
    supervisor = FleetSupervisor(connection_factory, config, surface, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Start the fleet with the server, stop it on shutdown."""
        surface.start()
        handler = None
        if config.logging.forward_to_dashboard:
            handler = log_bridge.install(surface)
        store.ensure_exists()
        supervisor.start(store.read())
        try:
            yield
        finally:
            await supervisor.shutdown()
            await surface.stop()
            if handler is not None:
                log_bridge.uninstall(handler)

    app = FastAPI(
        title="Bot Fleet Control",
        description="Command and observe a fleet of game bots",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.surface = surface
    app.state.supervisor = supervisor
    app.state.accounts = store
    app.state.world = world

    _register_api_routes(app)
    _register_websocket_routes(app, config.dashboard.keepalive_seconds)

    return app


def run_dashboard(config: AppConfig, connection_factory: ConnectionFactory | None = None) -> None:
    """Run the control surface and the fleet until interrupted."""
    import uvicorn

    app = create_app(config, connection_factory)
    uvicorn.run(
        app,
        host=config.dashboard.host,
        port=config.dashboard.port,
        log_level=config.logging.level.lower(),
    )
