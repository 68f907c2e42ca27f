"""Contract between an execution unit and its remote game connection.

The behavior engine never talks to the network directly. It consumes a
GameConnection: tick signals, world/player visibility queries, navigation
goals and primitive actions. Failed actions raise ActionFailed; connection
loss ends the tick stream.

Usage:
    connection = factory("Alice")
    final_name = await connection.connect(on_auth_code)
    async for _ in connection.ticks():
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Literal, Protocol, Union

from ..geometry import Vec3

# Materials that occupy no space for scanning purposes
AIR_BLOCKS: frozenset[str] = frozenset({"air", "cave_air", "void_air"})

BoundingBox = Literal["block", "empty"]


@dataclass(frozen=True)
class Block:
    """A block as seen by the bot.

    Attributes:
        position: Integral block coordinates
        name: Material name (e.g. "dirt", "air")
        bounding_box: "block" for solid blocks, "empty" for air/fluids
    """

    position: Vec3
    name: str
    bounding_box: BoundingBox = "block"

    @property
    def is_empty(self) -> bool:
        return self.bounding_box == "empty"

    @property
    def is_solid(self) -> bool:
        return self.bounding_box == "block"


@dataclass(frozen=True)
class Player:
    """A player currently known to the connection.

    position is None when the player is listed but their entity is out of
    view, which counts as not visible.
    """

    name: str
    position: Vec3 | None


@dataclass(frozen=True)
class Item:
    """An inventory stack."""

    name: str
    count: int
    slot: int


# =============================================================================
# NAVIGATION GOALS
# =============================================================================


@dataclass(frozen=True)
class GoalFollow:
    """Stay within `range` of a named player, tracking their movement."""

    player: str
    range: float


@dataclass(frozen=True)
class GoalNear:
    """Get within `range` of a fixed position."""

    position: Vec3
    range: float


@dataclass(frozen=True)
class GoalXZ:
    """Reach a column, any height."""

    x: float
    z: float


Goal = Union[GoalFollow, GoalNear, GoalXZ]

# (verification_uri, user_code) -> None
AuthCodeCallback = Callable[[str, str], Awaitable[None]]


class GameConnection(Protocol):
    """Interface a connection backend must implement."""

    @property
    def username(self) -> str | None:
        """Server-assigned username, None until logged in."""
        ...

    @property
    def position(self) -> Vec3:
        """Current bot entity position."""
        ...

    @property
    def is_creative(self) -> bool:
        """Whether the bot may request item grants."""
        ...

    @property
    def disconnect_reason(self) -> str | None:
        """Why the tick stream ended, if it has."""
        ...

    async def connect(self, on_auth_code: AuthCodeCallback) -> str:
        """Log in and spawn. Returns the final username.

        Raises:
            ConnectionLost: If login or spawn fails.
        """
        ...

    def ticks(self) -> AsyncIterator[int]:
        """Yield once per physics tick until the connection ends."""
        ...

    def get_player(self, name: str) -> Player | None: ...

    def block_at(self, position: Vec3) -> Block | None: ...

    def set_goal(self, goal: Goal | None, dynamic: bool = False) -> None: ...

    def stop_navigation(self) -> None: ...

    def is_navigating(self) -> bool: ...

    def set_sprint(self, sprinting: bool) -> None: ...

    async def look_at(self, position: Vec3) -> None: ...

    async def dig(self, block: Block) -> None: ...

    async def place_block(self, reference: Block, face: Vec3) -> None: ...

    def find_item(self, name: str) -> Item | None: ...

    async def grant_item(self, name: str, count: int, slot: int) -> None: ...

    async def equip(self, item: Item) -> None: ...

    def chat(self, text: str) -> None: ...

    async def close(self, reason: str = "closed") -> None: ...


# login name -> connection (not yet connected)
ConnectionFactory = Callable[[str], GameConnection]
