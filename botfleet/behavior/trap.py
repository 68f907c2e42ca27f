"""Enclosure building around a target player.

TRAP_OFFSETS is the fixed 3x4x3 shell around a player's feet: an 8-block
floor ring, two 8-block wall layers and a 9-block roof. The planner walks
the offsets in that order, filling each empty position by placing against
the first solid axis neighbor it finds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Literal, Protocol

from ..errors import ActionFailed
from ..geometry import AXIS_NEIGHBORS, Vec3
from ..world.connection import GoalFollow, Item

if TYPE_CHECKING:
    from ..config_schema import BehaviorConfig
    from ..world.connection import GameConnection
    from .state import BehaviorState

logger = logging.getLogger(__name__)

TrapRole = Literal["floor", "wall", "roof"]


@dataclass(frozen=True)
class TrapOffset:
    offset: Vec3
    role: TrapRole


def _build_offsets() -> tuple[TrapOffset, ...]:
    offsets: list[TrapOffset] = []
    for x in (-1, 0, 1):
        for z in (-1, 0, 1):
            if x == 0 and z == 0:
                continue
            offsets.append(TrapOffset(Vec3(x, -1, z), "floor"))
    ring = [(-1, -1), (-1, 1), (1, -1), (1, 1), (0, -1), (0, 1), (-1, 0), (1, 0)]
    for y in (0, 1):
        for x, z in ring:
            offsets.append(TrapOffset(Vec3(x, y, z), "wall"))
    for x in (-1, 0, 1):
        for z in (-1, 0, 1):
            offsets.append(TrapOffset(Vec3(x, 2, z), "roof"))
    return tuple(offsets)


TRAP_OFFSETS: tuple[TrapOffset, ...] = _build_offsets()


def offsets_by_role(role: TrapRole) -> tuple[Vec3, ...]:
    return tuple(t.offset for t in TRAP_OFFSETS if t.role == role)


class BehaviorHost(Protocol):
    """Callbacks into the owning engine."""

    def log(self, text: str) -> None: ...

    def report_status(self, status: str) -> None: ...

    def go_idle(self) -> None: ...

    def fault(self, exc: BaseException) -> None: ...


class StructurePlanner:
    """Approach a target, then enclose it."""

    def __init__(
        self,
        connection: GameConnection,
        state: BehaviorState,
        config: BehaviorConfig,
        host: BehaviorHost,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.connection = connection
        self.state = state
        self.config = config
        self.host = host
        self._sleep = sleep
        self._task: asyncio.Task[int] | None = None

    @property
    def build_task(self) -> asyncio.Task[int] | None:
        return self._task

    def step(self, target: str, target_position: Vec3) -> bool:
        """Run one trap tick. Returns True if a build was started."""
        if self.state.is_building:
            return False

        distance = self.connection.position.distance_to(target_position)
        if distance > self.config.trap_range:
            self.connection.set_goal(
                GoalFollow(target, self.config.trap_approach_range), dynamic=True
            )
            return False

        self.connection.stop_navigation()
        epoch = self.state.begin_building()
        task = asyncio.create_task(
            self.build(target, target_position, epoch), name=f"trap-{target}"
        )
        task.add_done_callback(lambda t: self._on_build_done(t, epoch))
        self._task = task
        return True

    def _on_build_done(self, task: asyncio.Task[int], epoch: int) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        self.host.fault(exc)
        if self.state.epoch == epoch:
            self.host.go_idle()

    async def build(self, target: str, target_position: Vec3, epoch: int) -> int:
        """Place the enclosure. Returns the number of blocks placed.

        Stops placing as soon as the behavior state moves on (stop
        command, new mode, target lost), leaving that new state alone.
        """
        item = await self.acquire_material()
        if self.state.epoch != epoch:
            return 0
        if item is None:
            self.host.log(f"Cannot find or get {self.config.trap_block} to trap with. Aborting.")
            self.host.go_idle()
            return 0

        try:
            await self.connection.equip(item)
        except ActionFailed as e:
            self.host.log(f"Could not equip {item.name}: {e.reason}. Aborting.")
            if self.state.epoch == epoch:
                self.host.go_idle()
            return 0

        origin = target_position.floored()
        placed = 0
        for trap_offset in TRAP_OFFSETS:
            if self.state.epoch != epoch:
                logger.debug("Trap build for %s superseded after %d blocks", target, placed)
                return placed
            if await self._fill(origin.plus(trap_offset.offset)):
                placed += 1

        if self.state.epoch != epoch:
            return placed
        self.host.log(f"Trap for {target} should be complete.")
        self.state.finish_building(switch_to_follow=True)
        self.host.report_status(f"Following {target}")
        return placed

    async def acquire_material(self) -> Item | None:
        """Find the building material, requesting a grant if privileged."""
        name = self.config.trap_block
        item = self.connection.find_item(name)
        if item is not None:
            return item
        if not self.connection.is_creative:
            return None
        try:
            await self.connection.grant_item(
                name, self.config.grant_stack_size, self.config.grant_slot
            )
        except ActionFailed as e:
            logger.warning("Grant of %s failed: %s", name, e)
            return None
        self.host.log(f"Gave myself a stack of {name}.")
        return self.connection.find_item(name)

    async def _fill(self, position: Vec3) -> bool:
        block = self.connection.block_at(position)
        if block is None or not block.is_empty:
            return False
        for neighbor in AXIS_NEIGHBORS:
            reference = self.connection.block_at(position.plus(neighbor))
            if reference is None or not reference.is_solid:
                continue
            try:
                await self.connection.place_block(reference, neighbor.scaled(-1))
            except ActionFailed as e:
                logger.debug("place at %s against %s failed: %s", position, reference.position, e)
                continue
            await self._sleep(self.config.placement_delay_seconds)
            return True
        return False
