"""Execution unit - one bot, one connection, one asyncio task.

The unit:
1. Opens its connection (reporting device-code links upward)
2. Announces the server-assigned name
3. Runs the behavior engine once per physics tick
4. Applies commands from its inbox between ticks
5. Exits when the connection ends or the supervisor terminates it

Every tick and every command is wrapped, so a fault inside the behavior
engine is reported as a UnitError and the unit keeps running. Only the
end of the tick stream (connection loss) or termination ends the unit.

Usage:
    unit = ExecutionUnit("Alice", connection_factory=world.connect, ...)
    unit.start()
    unit.post(TargetCommand("follow", "Bob"))
    unit.terminate()
    await unit.wait()
"""

from __future__ import annotations

import asyncio
import logging
import random
from enum import Enum
from typing import TYPE_CHECKING, Callable

from ..behavior.engine import BehaviorEngine
from ..errors import EXIT_ABNORMAL, EXIT_CLEAN, ConnectionLost, format_exception
from ..messages import AuthLink, Authenticated, Command, LogLine, UnitError, UnitEvent

if TYPE_CHECKING:
    from ..accounts import AccountStore
    from ..config_schema import BehaviorConfig
    from ..world.connection import ConnectionFactory, GameConnection

logger = logging.getLogger(__name__)


class UnitState(str, Enum):
    """Lifecycle of an execution unit."""

    CREATED = "created"
    CONNECTING = "connecting"
    ONLINE = "online"
    STOPPED = "stopped"


MessageHandler = Callable[["ExecutionUnit", UnitEvent], None]
ExitHandler = Callable[["ExecutionUnit", int], None]
FaultHandler = Callable[["ExecutionUnit", BaseException], None]


class ExecutionUnit:
    """Isolated worker owning one bot connection.

    Attributes:
        handle: Initial handle the unit was spawned under
        is_auth_flow: Whether this unit runs an interactive login
        connection: The live connection once start() has run
        engine: Behavior engine bound to the connection
        exit_code: Set when the unit has stopped
    """

    def __init__(
        self,
        handle: str,
        *,
        connection_factory: ConnectionFactory,
        behavior: BehaviorConfig,
        on_message: MessageHandler,
        on_exit: ExitHandler,
        on_fault: FaultHandler,
        is_auth_flow: bool = False,
        accounts: AccountStore | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.handle = handle
        self.is_auth_flow = is_auth_flow
        self._factory = connection_factory
        self._behavior = behavior
        self._on_message = on_message
        self._on_exit = on_exit
        self._on_fault = on_fault
        self._accounts = accounts
        self._rng = rng or random.Random()
        self._inbox: asyncio.Queue[Command] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._terminated = False
        self.state = UnitState.CREATED
        self.connection: GameConnection | None = None
        self.engine: BehaviorEngine | None = None
        self.exit_code: int | None = None

    # -------------------------------------------------------------------------
    # Supervisor-facing API
    # -------------------------------------------------------------------------

    @property
    def bot_name(self) -> str:
        """Server-assigned name once known, else the initial handle."""
        if self.connection is not None and self.connection.username:
            return self.connection.username
        return self.handle

    @property
    def is_alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Unit %s already started", self.handle)
            return
        self._task = asyncio.create_task(self._main(), name=f"unit-{self.handle}")
        self._task.add_done_callback(self._on_done)

    def post(self, command: Command) -> None:
        """Queue a command. Dropped until the bot has spawned."""
        if self.state is not UnitState.ONLINE:
            logger.debug("Unit %s not online, dropping %s", self.handle, command)
            return
        self._inbox.put_nowait(command)

    def terminate(self) -> None:
        """Stop the unit. Its exit is reported with EXIT_CLEAN."""
        if self._task is None or self._task.done():
            return
        self._terminated = True
        self._task.cancel()

    async def wait(self) -> None:
        """Wait until the unit has fully stopped."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Event helpers
    # -------------------------------------------------------------------------

    def _emit(self, event: UnitEvent) -> None:
        self._on_message(self, event)

    def _log(self, text: str) -> None:
        self._emit(LogLine(bot=self.bot_name, text=text))

    def _error(self, exc: BaseException) -> None:
        self._emit(UnitError(bot=self.bot_name, error=format_exception(exc)))

    async def _on_auth_code(self, link: str, user_code: str) -> None:
        self._emit(AuthLink(bot=self.bot_name, link=link, user_code=user_code))

    # -------------------------------------------------------------------------
    # Task body
    # -------------------------------------------------------------------------

    async def _main(self) -> None:
        exit_code = EXIT_ABNORMAL
        try:
            exit_code = await self._run()
        except asyncio.CancelledError:
            exit_code = EXIT_CLEAN if self._terminated else EXIT_ABNORMAL
        except Exception as e:
            logger.exception("Unit %s crashed: %s", self.handle, e)
            self._on_fault(self, e)
            exit_code = EXIT_ABNORMAL
        finally:
            self.exit_code = exit_code
            try:
                if self.engine is not None:
                    self.engine.cancel_background()
                if self.connection is not None:
                    await self.connection.close(
                        "terminated" if self._terminated else "unit stopped"
                    )
            finally:
                self.state = UnitState.STOPPED

    def _on_done(self, task: asyncio.Task[None]) -> None:
        # Also runs when the task was cancelled before its first step.
        if self.exit_code is None:
            self.exit_code = EXIT_CLEAN if self._terminated else EXIT_ABNORMAL
        self.state = UnitState.STOPPED
        self._on_exit(self, self.exit_code)

    def _login_name(self) -> str:
        if self.is_auth_flow:
            return f"Player{self._rng.randint(0, 999)}"
        return self.handle

    async def _run(self) -> int:
        self._log("Starting bot...")
        self.state = UnitState.CONNECTING
        connection = self._factory(self._login_name())
        self.connection = connection
        self.engine = BehaviorEngine(
            connection, self._behavior, self._emit, lambda: self.bot_name
        )

        try:
            final_name = await connection.connect(self._on_auth_code)
        except ConnectionLost as e:
            self._error(e)
            return EXIT_ABNORMAL

        self._on_spawn(final_name)

        pump = asyncio.create_task(self._pump_commands(), name=f"inbox-{self.handle}")
        try:
            async for _ in connection.ticks():
                await self._tick()
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)

        reason = connection.disconnect_reason or "connection ended"
        self._log(f"Disconnected: {reason}.")
        return EXIT_ABNORMAL

    def _on_spawn(self, final_name: str) -> None:
        if self.is_auth_flow and self._accounts is not None:
            try:
                self._accounts.append(final_name)
            except OSError as e:
                logger.error("Could not save account %s: %s", final_name, e)
        self._emit(
            Authenticated(bot=final_name, nickname=final_name, initial_handle=self.handle)
        )
        self.state = UnitState.ONLINE
        self._log("Bot online.")
        assert self.engine is not None
        self.engine.report_status("Idle")

    async def _tick(self) -> None:
        assert self.engine is not None
        try:
            await self.engine.on_tick()
        except Exception as e:
            logger.exception("Tick error for %s", self.bot_name)
            self._error(e)

    async def _pump_commands(self) -> None:
        assert self.engine is not None
        while True:
            command = await self._inbox.get()
            try:
                self.engine.handle_command(command)
            except Exception as e:
                logger.exception("Command error for %s", self.bot_name)
                self._error(e)
