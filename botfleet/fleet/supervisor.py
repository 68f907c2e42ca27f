"""Fleet supervisor - spawns, tracks, re-keys and respawns execution units.

The supervisor is the only owner of the identity map and the respawn
table. Units talk to it through three callbacks (message, exit, fault),
all invoked on the event loop thread, and it talks to the control surface
through an EventSink.

Unit exits are classified by exit code:
- EXIT_CLEAN (0): terminated by the supervisor -> no restart
- anything else: connection lost, login failed or crashed -> restart after
  a fixed delay, unless the unit was running an interactive login

Usage:
    supervisor = FleetSupervisor(world.connect, config, sink, accounts)
    supervisor.start(accounts.read())
    supervisor.broadcast(ClearMapCommand())
    await supervisor.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from ..errors import EXIT_CLEAN
from ..messages import (
    AuthLink,
    Authenticated,
    ChatCommand,
    ClearMapCommand,
    Command,
    LogLine,
    StatusUpdate,
    UnitError,
    UnitEvent,
)
from .registry import IdentityCollisionError, IdentityMap, UnitEntry
from .unit import ExecutionUnit

if TYPE_CHECKING:
    from ..accounts import AccountStore
    from ..config_schema import AppConfig
    from ..world.connection import ConnectionFactory

logger = logging.getLogger(__name__)

AUTH_HANDLE_PREFIX = "AuthBot-"


class EventSink(Protocol):
    """Receiver of control-surface events."""

    def emit(self, event: str, data: dict[str, Any]) -> None: ...


@dataclass
class SupervisorStats:
    """Counters exposed on the status endpoint."""

    spawned: int = 0
    exited: int = 0
    respawns_scheduled: int = 0
    faults: int = 0
    started_at: datetime = field(default_factory=datetime.now)


class FleetSupervisor:
    """Owns every execution unit of the fleet.

    Attributes:
        identities: Live units keyed by handle, in spawn order
        stats: Lifetime counters
    """

    def __init__(
        self,
        connection_factory: ConnectionFactory,
        config: AppConfig,
        sink: EventSink,
        accounts: AccountStore | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.connection_factory = connection_factory
        self.config = config
        self.sink = sink
        self.accounts = accounts
        self.identities = IdentityMap()
        self.stats = SupervisorStats()
        self._rng = rng or random.Random()
        self._respawns: dict[str, asyncio.TimerHandle] = {}
        self._closing = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def spawn(self, handle: str, is_auth_flow: bool = False) -> ExecutionUnit | None:
        """Start a unit under handle. Returns None if one is already live."""
        if self._closing:
            logger.debug("Supervisor closing, not spawning %s", handle)
            return None
        if self.identities.lookup(handle) is not None:
            logger.info("Unit %s already running, not spawning another", handle)
            return None

        pending = self._respawns.pop(handle, None)
        if pending is not None:
            pending.cancel()

        unit = ExecutionUnit(
            handle,
            connection_factory=self.connection_factory,
            behavior=self.config.behavior,
            on_message=self.on_unit_message,
            on_exit=self.on_unit_exit,
            on_fault=self.on_unit_fault,
            is_auth_flow=is_auth_flow,
            accounts=self.accounts,
            rng=self._rng,
        )
        try:
            self.identities.register(handle, UnitEntry(unit, handle, is_auth_flow=is_auth_flow))
        except IdentityCollisionError as e:
            logger.warning("%s", e)
            return None

        self.stats.spawned += 1
        logger.info("Spawning unit %s%s", handle, " (auth flow)" if is_auth_flow else "")
        unit.start()
        return unit

    def spawn_auth_unit(self) -> ExecutionUnit | None:
        """Start an interactive-login unit under a temporary handle."""
        handle = self._temporary_handle()
        unit = self.spawn(handle, is_auth_flow=True)
        if unit is not None:
            self.sink.emit("bot-online", {"username": handle, "status": "Authenticating..."})
        return unit

    def _temporary_handle(self) -> str:
        while True:
            handle = f"{AUTH_HANDLE_PREFIX}{self._rng.randint(0, 9999)}"
            if self.identities.lookup(handle) is None:
                return handle

    def start(self, handles: list[str]) -> None:
        """Spawn one ordinary unit per account handle."""
        logger.info("Starting fleet with %d account(s)", len(handles))
        for handle in handles:
            self.spawn(handle)

    def terminate_all(self) -> int:
        """Stop every live unit. Returns how many were stopped.

        Each unit reports its own exit, which does the cleanup.
        """
        entries = self.identities.entries()
        for entry in entries:
            entry.unit.terminate()
        if entries:
            logger.info("Terminating %d unit(s)", len(entries))
        return len(entries)

    async def shutdown(self) -> None:
        """Cancel pending respawns, stop all units and wait for them."""
        self._closing = True
        for handle in list(self._respawns):
            self._respawns.pop(handle).cancel()
        units = [entry.unit for entry in self.identities.entries()]
        self.terminate_all()
        await asyncio.gather(*(unit.wait() for unit in units), return_exceptions=True)
        logger.info("Supervisor shut down")

    # -------------------------------------------------------------------------
    # Unit callbacks
    # -------------------------------------------------------------------------

    def on_unit_message(self, unit: ExecutionUnit, event: UnitEvent) -> None:
        if isinstance(event, AuthLink):
            self.sink.emit(
                "auth-link",
                {"link": event.link, "user_code": event.user_code, "username": event.bot},
            )
            self._log(event.bot, f"Auth required. Code: {event.user_code}")
        elif isinstance(event, Authenticated):
            self._on_authenticated(unit, event)
        elif isinstance(event, StatusUpdate):
            entry = self.identities.lookup(event.bot)
            if entry is None:
                logger.debug("Status from unknown bot %s dropped", event.bot)
                return
            self.sink.emit(
                "bot-status-update",
                {"username": entry.display_name, "status": event.status},
            )
        elif isinstance(event, LogLine):
            self._log(event.bot, event.text)
        elif isinstance(event, UnitError):
            self._log(event.bot, f"ERROR: {event.error}", "error")
        else:
            logger.warning("Unknown unit event %r", event)

    def _on_authenticated(self, unit: ExecutionUnit, event: Authenticated) -> None:
        key = self.identities.key_of(unit)
        if key is None:
            logger.warning("Authenticated event from unregistered unit %s", event.initial_handle)
            return
        entry = self.identities.set_final_handle(key, event.nickname)
        assert entry is not None

        policy = self.config.supervisor.rekey_policy
        if policy == "always" or entry.is_auth_flow:
            try:
                self.identities.rekey(key, event.nickname)
            except IdentityCollisionError as e:
                logger.warning("Keeping %s under %s: %s", event.nickname, key, e)

        self.sink.emit(
            "bot-authenticated",
            {"tempUsername": event.initial_handle, "finalUsername": event.nickname},
        )
        self._log(
            "System",
            f"Bot from file '{event.initial_handle}' is now in-game as '{event.nickname}'.",
        )

    def on_unit_exit(self, unit: ExecutionUnit, exit_code: int) -> None:
        key = self.identities.key_of(unit)
        if key is None:
            logger.debug("Exit of unregistered unit %s ignored", unit.handle)
            return
        entry = self.identities.remove(key)
        assert entry is not None
        self.stats.exited += 1

        name = entry.display_name
        self.sink.emit("bot-offline", {"username": name})
        self._log("System", f"Bot {name} exited with code {exit_code}.")

        if exit_code != EXIT_CLEAN and not entry.is_auth_flow and not self._closing:
            self._schedule_respawn(entry.initial_handle)

    def on_unit_fault(self, unit: ExecutionUnit, exc: BaseException) -> None:
        """Report a unit crash. The exit callback that follows cleans up."""
        self.stats.faults += 1
        logger.error("Unit %s faulted: %s", unit.bot_name, exc, exc_info=exc)
        self._log(unit.bot_name, f"ERROR: Worker error: {exc}", "error")

    def _schedule_respawn(self, handle: str) -> None:
        delay = self.config.supervisor.respawn_delay_seconds
        existing = self._respawns.pop(handle, None)
        if existing is not None:
            existing.cancel()
        loop = asyncio.get_running_loop()
        self._respawns[handle] = loop.call_later(delay, self._respawn, handle)
        self.stats.respawns_scheduled += 1
        self._log("System", f"Restarting {handle} in {delay:g} seconds...")

    def _respawn(self, handle: str) -> None:
        self._respawns.pop(handle, None)
        self.spawn(handle)

    @property
    def pending_respawns(self) -> list[str]:
        return list(self._respawns)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def broadcast(self, command: Command) -> int:
        """Send a command to every live unit. Returns the number reached.

        A clearmap command is split so unit i of N sweeps at angle 2*pi*i/N.
        """
        entries = self.identities.entries()
        if isinstance(command, ClearMapCommand):
            count = len(entries)
            for index, entry in enumerate(entries):
                entry.unit.post(ClearMapCommand(angle=2 * math.pi * index / count))
        else:
            for entry in entries:
                entry.unit.post(command)
        return len(entries)

    def send_chat(self, message: str) -> int:
        return self.broadcast(ChatCommand(message=message))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def online_names(self) -> list[str]:
        """In-game names of live, logged-in units, in spawn order."""
        return [
            entry.final_handle
            for entry in self.identities.entries()
            if entry.final_handle is not None
        ]

    def snapshot(self) -> dict[str, Any]:
        """Fleet status for the REST endpoint."""
        bots = []
        for key, entry in zip(self.identities.keys(), self.identities.entries()):
            engine = entry.unit.engine
            bots.append({
                "key": key,
                "initial_handle": entry.initial_handle,
                "final_handle": entry.final_handle,
                "auth_flow": entry.is_auth_flow,
                "state": entry.unit.state.value,
                "status": engine.last_status if engine is not None else None,
                "mode": engine.state.mode.value if engine is not None else None,
            })
        return {
            "bots": bots,
            "pending_respawns": self.pending_respawns,
            "stats": {
                "spawned": self.stats.spawned,
                "exited": self.stats.exited,
                "respawns_scheduled": self.stats.respawns_scheduled,
                "faults": self.stats.faults,
                "started_at": self.stats.started_at.isoformat(),
            },
        }

    def _log(self, bot: str, text: str, kind: str = "info") -> None:
        self.sink.emit("log", {"bot": bot, "text": text, "type": kind})
