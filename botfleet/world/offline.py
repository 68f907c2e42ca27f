"""In-memory block world implementing the GameConnection contract.

Used by the test suite, and by `run.py` when `server.backend` is
`offline`, to drive the fleet without a game server. Navigation moves the
bot in a straight line toward its goal at a fixed speed per tick; there is
no collision or pathfinding.

Usage:
    world = OfflineWorld.flat(radius=16)
    world.add_player("Steve", Vec3(4, 1, 4))
    connection = world.connect("Alice")
    await connection.connect(on_auth_code)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import TYPE_CHECKING, AsyncIterator

from ..errors import ActionFailed, ConnectionLost
from ..geometry import Vec3
from .connection import (
    AIR_BLOCKS,
    AuthCodeCallback,
    Block,
    Goal,
    GoalFollow,
    GoalNear,
    GoalXZ,
    Item,
    Player,
)

if TYPE_CHECKING:
    from ..config_schema import OfflineConfig

logger = logging.getLogger(__name__)

EMPTY_BLOCKS: frozenset[str] = AIR_BLOCKS | {"water", "lava"}
VERIFICATION_URI = "https://www.microsoft.com/link"


class OfflineWorld:
    """Shared world state for every offline connection."""

    def __init__(
        self,
        *,
        tick_interval: float = 0.05,
        move_speed: float = 0.5,
        creative: bool = True,
        require_auth: bool = False,
        reach: float = 8.5,
        spawn_point: Vec3 = Vec3(0, 1, 0),
    ) -> None:
        self.tick_interval = tick_interval
        self.move_speed = move_speed
        self.creative = creative
        self.require_auth = require_auth
        self.reach = reach
        self.spawn_point = spawn_point
        # login name -> server-assigned name, for auth-flow logins
        self.auth_names: dict[str, str] = {}
        # login names whose connect() fails
        self.rejected_logins: set[str] = set()
        self.chat_log: list[tuple[str, str]] = []
        self._blocks: dict[Vec3, str] = {}
        self._players: dict[str, Vec3] = {}
        self._bots: dict[str, OfflineConnection] = {}
        self._codes = itertools.count(1)

    @classmethod
    def flat(cls, radius: int = 16, floor: str = "stone", **kwargs: object) -> OfflineWorld:
        """Create a world with a square floor layer at y=0."""
        world = cls(**kwargs)  # type: ignore[arg-type]
        for x in range(-radius, radius + 1):
            for z in range(-radius, radius + 1):
                world.set_block(Vec3(x, 0, z), floor)
        return world

    @classmethod
    def from_config(cls, config: OfflineConfig) -> OfflineWorld:
        world = cls.flat(
            radius=config.platform_radius,
            tick_interval=config.tick_interval_seconds,
            move_speed=config.move_speed,
            creative=config.creative,
        )
        for player in config.players:
            world.add_player(player.name, Vec3(player.x, player.y, player.z))
        return world

    # -------------------------------------------------------------------------
    # Blocks
    # -------------------------------------------------------------------------

    def set_block(self, position: Vec3, name: str) -> None:
        pos = position.floored()
        if name in AIR_BLOCKS:
            self._blocks.pop(pos, None)
        else:
            self._blocks[pos] = name

    def block_at(self, position: Vec3) -> Block:
        pos = position.floored()
        name = self._blocks.get(pos, "air")
        return Block(pos, name, "empty" if name in EMPTY_BLOCKS else "block")

    # -------------------------------------------------------------------------
    # Players
    # -------------------------------------------------------------------------

    def add_player(self, name: str, position: Vec3) -> None:
        self._players[name] = position

    def move_player(self, name: str, position: Vec3) -> None:
        if name not in self._players:
            raise KeyError(name)
        self._players[name] = position

    def remove_player(self, name: str) -> None:
        self._players.pop(name, None)

    def player_position(self, name: str) -> Vec3 | None:
        return self._players.get(name)

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def connect(self, login: str) -> OfflineConnection:
        """ConnectionFactory entry point."""
        return OfflineConnection(self, login)

    def bot(self, name: str) -> OfflineConnection | None:
        return self._bots.get(name)

    async def kick(self, name: str, reason: str = "kicked") -> None:
        """End a bot's connection from the server side."""
        connection = self._bots.get(name)
        if connection is not None:
            await connection.close(reason)

    def _next_user_code(self) -> str:
        return f"OFF{next(self._codes):05d}"


class OfflineConnection:
    """One bot's view of an OfflineWorld."""

    def __init__(self, world: OfflineWorld, login: str) -> None:
        self.world = world
        self.login = login
        self._username: str | None = None
        self._position = world.spawn_point
        self._goal: Goal | None = None
        self._dynamic = False
        self._sprinting = False
        self._closed = False
        self._reason: str | None = None
        self.inventory: dict[int, Item] = {}
        self.held_slot: int | None = None
        self.looked_at: Vec3 | None = None

    @property
    def username(self) -> str | None:
        return self._username

    @property
    def position(self) -> Vec3:
        return self._position

    @property
    def is_creative(self) -> bool:
        return self.world.creative

    @property
    def disconnect_reason(self) -> str | None:
        return self._reason

    @property
    def goal(self) -> Goal | None:
        return self._goal

    @property
    def sprinting(self) -> bool:
        return self._sprinting

    async def connect(self, on_auth_code: AuthCodeCallback) -> str:
        if self.world.require_auth:
            await on_auth_code(VERIFICATION_URI, self.world._next_user_code())
        if self.login in self.world.rejected_logins:
            self._closed = True
            self._reason = "login rejected"
            raise ConnectionLost(f"Login rejected for {self.login}")
        name = self.world.auth_names.get(self.login, self.login)
        self._username = name
        self.world._bots[name] = self
        self.world._players[name] = self._position
        logger.debug("Offline bot %s spawned at %s", name, self._position)
        return name

    async def ticks(self) -> AsyncIterator[int]:
        tick = 0
        while not self._closed:
            await asyncio.sleep(self.world.tick_interval)
            if self._closed:
                break
            tick += 1
            self._advance()
            yield tick

    async def close(self, reason: str = "closed") -> None:
        if self._closed:
            return
        self._closed = True
        self._reason = reason
        if self._username is not None:
            self.world._bots.pop(self._username, None)
            self.world._players.pop(self._username, None)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_player(self, name: str) -> Player | None:
        position = self.world.player_position(name)
        if position is None:
            return None
        return Player(name, position)

    def block_at(self, position: Vec3) -> Block | None:
        return self.world.block_at(position)

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def set_goal(self, goal: Goal | None, dynamic: bool = False) -> None:
        self._goal = goal
        self._dynamic = dynamic

    def stop_navigation(self) -> None:
        self._goal = None
        self._dynamic = False

    def is_navigating(self) -> bool:
        if self._goal is None:
            return False
        return not self._reached(self._goal)

    def set_sprint(self, sprinting: bool) -> None:
        self._sprinting = sprinting

    def _goal_target(self, goal: Goal) -> tuple[Vec3 | None, float]:
        if isinstance(goal, GoalFollow):
            return self.world.player_position(goal.player), goal.range
        if isinstance(goal, GoalNear):
            return goal.position, goal.range
        return Vec3(goal.x, self._position.y, goal.z), 0.5

    def _reached(self, goal: Goal) -> bool:
        target, radius = self._goal_target(goal)
        if target is None:
            return True
        if isinstance(goal, GoalXZ):
            return self._position.horizontal_distance_to(target) <= radius
        return self._position.distance_to(target) <= radius

    def _advance(self) -> None:
        """Step toward the current goal."""
        goal = self._goal
        if goal is None:
            return
        target, radius = self._goal_target(goal)
        if target is None:
            return
        distance = self._position.distance_to(target)
        if distance <= radius:
            if not self._dynamic:
                self._goal = None
            return
        speed = self.world.move_speed * (1.3 if self._sprinting else 1.0)
        step = min(speed, distance - radius)
        direction = target.minus(self._position).scaled(1.0 / distance)
        self._position = self._position.plus(direction.scaled(step))
        if self._username is not None:
            self.world._players[self._username] = self._position

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    def _require_open(self, action: str) -> None:
        if self._closed:
            raise ActionFailed(action, "connection closed")

    async def look_at(self, position: Vec3) -> None:
        self._require_open("look")
        self.looked_at = position

    async def dig(self, block: Block) -> None:
        self._require_open("dig")
        current = self.world.block_at(block.position)
        if current.name in AIR_BLOCKS:
            raise ActionFailed("dig", f"no block at {block.position}")
        if self._position.distance_to(block.position) > self.world.reach:
            raise ActionFailed("dig", f"{block.position} out of reach")
        self.world.set_block(block.position, "air")

    async def place_block(self, reference: Block, face: Vec3) -> None:
        self._require_open("place")
        held = self.inventory.get(self.held_slot) if self.held_slot is not None else None
        if held is None or held.count <= 0:
            raise ActionFailed("place", "nothing in hand")
        if not self.world.block_at(reference.position).is_solid:
            raise ActionFailed("place", f"reference {reference.position} is not solid")
        destination = reference.position.plus(face)
        if not self.world.block_at(destination).is_empty:
            raise ActionFailed("place", f"{destination} is occupied")
        self.world.set_block(destination, held.name)
        if held.count == 1:
            del self.inventory[held.slot]
            self.held_slot = None
        else:
            self.inventory[held.slot] = Item(held.name, held.count - 1, held.slot)

    def find_item(self, name: str) -> Item | None:
        for item in self.inventory.values():
            if item.name == name:
                return item
        return None

    def give(self, name: str, count: int, slot: int = 36) -> Item:
        """Put a stack in the inventory (test and setup helper)."""
        item = Item(name, count, slot)
        self.inventory[slot] = item
        return item

    async def grant_item(self, name: str, count: int, slot: int) -> None:
        self._require_open("grant")
        if not self.world.creative:
            raise ActionFailed("grant", "not in creative mode")
        self.give(name, count, slot)

    async def equip(self, item: Item) -> None:
        self._require_open("equip")
        if self.inventory.get(item.slot) is None:
            raise ActionFailed("equip", f"{item.name} not in slot {item.slot}")
        self.held_slot = item.slot

    def chat(self, text: str) -> None:
        self._require_open("chat")
        self.world.chat_log.append((self._username or self.login, text))
