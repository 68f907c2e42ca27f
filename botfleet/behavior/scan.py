"""Target acquisition for destructive actions.

Scans the cube around a reference position for diggable blocks, ranks
them by distance from the bot and clears the nearest one, at most once per
click interval.

Usage:
    scanner = TargetScanner(connection, state, behavior_config)
    block = await scanner.scan_and_act(target_position)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Callable, Collection, Protocol

from ..errors import ActionFailed
from ..geometry import Vec3
from ..world.connection import AIR_BLOCKS, Block

if TYPE_CHECKING:
    from ..config_schema import BehaviorConfig
    from ..world.connection import GameConnection
    from .state import BehaviorState

logger = logging.getLogger(__name__)


class BlockSource(Protocol):
    """The slice of GameConnection the scan needs."""

    @property
    def position(self) -> Vec3: ...

    def block_at(self, position: Vec3) -> Block | None: ...


def find_candidates(
    source: BlockSource,
    center: Vec3,
    scan_radius: int,
    max_distance: float,
    protected: Collection[str],
) -> list[Block]:
    """List diggable blocks around center, nearest to the bot first.

    Args:
        source: Provides the bot position and block lookups
        center: Middle of the scan cube (floored to block coordinates)
        scan_radius: Half-size of the cube
        max_distance: Blocks farther than this from the bot are skipped
        protected: Material names that are never returned

    Returns:
        Candidate blocks sorted by ascending distance from the bot
    """
    origin = center.floored()
    bot = source.position
    candidates: list[tuple[float, Block]] = []
    for dx in range(-scan_radius, scan_radius + 1):
        for dy in range(-scan_radius, scan_radius + 1):
            for dz in range(-scan_radius, scan_radius + 1):
                position = origin.offset(dx, dy, dz)
                distance = bot.distance_to(position)
                if distance > max_distance:
                    continue
                block = source.block_at(position)
                if block is None or block.name in AIR_BLOCKS or block.name in protected:
                    continue
                candidates.append((distance, block))
    candidates.sort(key=lambda pair: pair[0])
    return [block for _, block in candidates]


class ClickLimiter:
    """Minimum interval between destructive actions, derived from a CPS rate.

    The last action time lives in BehaviorState so it resets with the bot.
    """

    def __init__(
        self,
        state: BehaviorState,
        cps: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cps <= 0:
            raise ValueError(f"cps must be positive, got {cps}")
        self.state = state
        self.interval = 1.0 / cps
        self.clock = clock

    def ready(self) -> bool:
        """Whether enough time has passed since the last action."""
        return self.clock() - self.state.last_action_at >= self.interval

    def consume(self) -> None:
        self.state.mark_action(self.clock())


class TargetScanner:
    """Scan-and-dig step run on every grief tick."""

    def __init__(
        self,
        connection: GameConnection,
        state: BehaviorState,
        config: BehaviorConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.connection = connection
        self.state = state
        self.config = config
        self.protected = frozenset(config.protected_blocks)
        self.limiter = ClickLimiter(state, config.cps, clock)
        self._digs: set[asyncio.Task[None]] = set()

    async def scan_and_act(self, center: Vec3) -> Block | None:
        """Clear the nearest eligible block around center.

        Returns:
            The block an action was started on, or None when rate limited
            or nothing is eligible
        """
        if not self.limiter.ready():
            return None

        candidates = find_candidates(
            self.connection,
            center,
            self.config.scan_radius,
            self.config.max_dig_distance,
            self.protected,
        )
        if not candidates:
            return None

        block = candidates[0]
        self.limiter.consume()
        epoch = self.state.epoch
        try:
            await self.connection.look_at(block.position.offset(0.5, 0.5, 0.5))
        except ActionFailed as e:
            logger.debug("look at %s failed: %s", block.position, e)
            return None
        if self.state.epoch != epoch:
            return None

        task = asyncio.create_task(self._dig(block), name=f"dig-{block.position}")
        self._digs.add(task)
        task.add_done_callback(self._digs.discard)
        return block

    async def _dig(self, block: Block) -> None:
        try:
            await self.connection.dig(block)
        except ActionFailed as e:
            logger.debug("dig %s failed: %s", block.position, e)
        except Exception as e:
            logger.warning("dig %s raised %s: %s", block.position, type(e).__name__, e)

    @property
    def pending(self) -> int:
        """Digs still in flight."""
        return len(self._digs)

    async def drain(self) -> None:
        """Wait for in-flight digs to settle."""
        if self._digs:
            await asyncio.gather(*self._digs, return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._digs):
            task.cancel()
