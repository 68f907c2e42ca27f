"""Per-bot behavior engine.

Turns commands into BehaviorState transitions and advances the active
behavior once per physics tick:

- follow:   keep a dynamic follow goal on the target
- grief:    stay next to the target and clear the nearest block around it
- trap:     approach, then enclose the target and fall back to follow
- clearmap: keep walking toward a far point along the assigned angle

The engine never raises into its caller for expected failures (bad
targets, refused actions); those become log lines or an idle transition.
Unexpected errors are left to the execution unit's tick boundary.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from ..errors import format_exception
from ..messages import (
    ChatCommand,
    ClearMapCommand,
    Command,
    LogLine,
    StatusUpdate,
    StopCommand,
    TargetCommand,
    UnitError,
    UnitEvent,
)
from ..world.connection import GoalFollow, GoalNear, GoalXZ
from .scan import TargetScanner
from .state import BehaviorState, Mode, status_for
from .trap import StructurePlanner

if TYPE_CHECKING:
    from ..config_schema import BehaviorConfig
    from ..world.connection import GameConnection

logger = logging.getLogger(__name__)


class BehaviorEngine:
    """Command handler and tick handler for one bot.

    Attributes:
        connection: The bot's game connection
        config: Behavior tuning
        state: Mode/target/timers, mutated only through its transitions
        scanner: Grief target acquisition
        planner: Trap structure planner
    """

    def __init__(
        self,
        connection: GameConnection,
        config: BehaviorConfig,
        emit: Callable[[UnitEvent], None],
        bot_name: Callable[[], str],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.connection = connection
        self.config = config
        self.state = BehaviorState()
        self._emit = emit
        self._bot_name = bot_name
        self.scanner = TargetScanner(connection, self.state, config, clock)
        self.planner = StructurePlanner(connection, self.state, config, self, sleep)
        self.last_status: str | None = None

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def log(self, text: str) -> None:
        self._emit(LogLine(bot=self._bot_name(), text=text))

    def report_status(self, status: str) -> None:
        self.last_status = status
        self._emit(StatusUpdate(bot=self._bot_name(), status=status))

    def fault(self, exc: BaseException) -> None:
        logger.error("Behavior fault for %s: %s", self._bot_name(), exc)
        self._emit(UnitError(bot=self._bot_name(), error=format_exception(exc)))

    def go_idle(self) -> None:
        """Drop the current behavior and stand still."""
        self.state.reset()
        self.connection.set_sprint(False)
        self.connection.stop_navigation()
        self.report_status("Idle")

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def handle_command(self, command: Command) -> bool:
        """Apply a command. Returns False if it was rejected."""
        if isinstance(command, TargetCommand):
            return self._engage(command)
        if isinstance(command, ClearMapCommand):
            self.go_idle()
            self.state.begin_sweep(command.angle)
            self.log(f"Initializing clearmap protocol at angle {command.angle:.2f}.")
            self.report_status("Clearing Map")
            return True
        if isinstance(command, StopCommand):
            self.log("Stopping current action.")
            self.go_idle()
            return True
        if isinstance(command, ChatCommand):
            self.connection.chat(command.message)
            return True
        raise TypeError(f"Unhandled command type: {type(command).__name__}")

    def _engage(self, command: TargetCommand) -> bool:
        target = command.target
        if not target:
            self.log("Target player name is required.")
            return False
        player = self.connection.get_player(target)
        if player is None or player.position is None:
            self.log(f"Can't see target player {target}.")
            return False

        mode = Mode(command.mode)
        self.go_idle()
        self.state.engage(mode, target)
        self.log(f"Executing '{mode.value}' on {target}.")
        self.report_status(status_for(mode, target))
        return True

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    async def on_tick(self) -> None:
        """Advance the active behavior by one physics tick."""
        mode = self.state.mode
        if mode is Mode.NONE:
            return
        if mode is Mode.CLEARMAP:
            self._sweep()
            return

        target = self.state.target
        player = self.connection.get_player(target) if target else None
        if player is None or player.position is None:
            logger.debug("%s lost sight of %s", self._bot_name(), target)
            self.go_idle()
            return

        if mode is Mode.FOLLOW:
            self.connection.set_sprint(True)
            self.connection.set_goal(GoalFollow(player.name, self.config.follow_range), dynamic=True)
        elif mode is Mode.GRIEF:
            self.connection.set_sprint(True)
            self.connection.set_goal(GoalNear(player.position, self.config.grief_range), dynamic=True)
            await self.scanner.scan_and_act(player.position)
        elif mode is Mode.TRAP:
            self.planner.step(player.name, player.position)

    def _sweep(self) -> None:
        self.connection.set_sprint(True)
        if self.connection.is_navigating():
            return
        angle = self.state.sweep_angle
        position = self.connection.position
        distance = self.config.sweep_distance
        self.connection.set_goal(
            GoalXZ(position.x + distance * math.cos(angle), position.z + distance * math.sin(angle))
        )
        self.log("Set new distant goal in my assigned direction.")

    async def drain(self) -> None:
        """Wait for background work (digs, trap build) to settle."""
        await self.scanner.drain()
        task = self.planner.build_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    def cancel_background(self) -> None:
        """Abandon in-flight digs and any trap build (unit shutdown)."""
        self.scanner.cancel()
        task = self.planner.build_task
        if task is not None and not task.done():
            task.cancel()
