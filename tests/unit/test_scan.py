"""Unit tests for target acquisition and the click limiter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from botfleet.behavior.scan import ClickLimiter, TargetScanner, find_candidates
from botfleet.behavior.state import BehaviorState
from botfleet.config_schema import BehaviorConfig
from botfleet.errors import ActionFailed
from botfleet.geometry import Vec3
from botfleet.world.connection import Block
from botfleet.world.offline import OfflineWorld
from tests.testing_utils import VirtualClock


class FakeSource:
    """Bot position plus a sparse block map; everything else is air."""

    def __init__(self, position: Vec3, blocks: dict[Vec3, str]) -> None:
        self.position = position
        self._blocks = blocks

    def block_at(self, position: Vec3) -> Block | None:
        name = self._blocks.get(position)
        if name is None:
            return Block(position, "air", "empty")
        if name == "unloaded":
            return None
        return Block(position, name)


@pytest.fixture
def clock() -> VirtualClock:
    clock = VirtualClock()
    clock.advance(100.0)
    return clock


class TestFindCandidates:
    def test_sorted_by_distance_from_bot(self) -> None:
        source = FakeSource(
            Vec3(0, 0, 0),
            {Vec3(3, 0, 0): "dirt", Vec3(1, 0, 0): "stone", Vec3(2, 0, 0): "sand"},
        )
        found = find_candidates(source, Vec3(2, 0, 0), 2, 8.0, ())
        assert [b.position for b in found] == [Vec3(1, 0, 0), Vec3(2, 0, 0), Vec3(3, 0, 0)]

    def test_protected_material_never_selected(self) -> None:
        source = FakeSource(
            Vec3(0, 0, 0),
            {Vec3(1, 0, 0): "bedrock", Vec3(0, 1, 0): "water", Vec3(2, 0, 0): "dirt"},
        )
        found = find_candidates(source, Vec3(0, 0, 0), 3, 8.0, {"bedrock", "water"})
        assert [b.name for b in found] == ["dirt"]

    def test_only_protected_yields_nothing(self) -> None:
        source = FakeSource(Vec3(0, 0, 0), {Vec3(1, 0, 0): "bedrock"})
        assert find_candidates(source, Vec3(0, 0, 0), 2, 8.0, {"bedrock"}) == []

    def test_beyond_max_distance_skipped(self) -> None:
        source = FakeSource(Vec3(0, 0, 0), {Vec3(5, 0, 0): "dirt", Vec3(2, 0, 0): "dirt"})
        found = find_candidates(source, Vec3(3, 0, 0), 3, 3.0, ())
        assert [b.position for b in found] == [Vec3(2, 0, 0)]

    def test_unloaded_blocks_skipped(self) -> None:
        source = FakeSource(Vec3(0, 0, 0), {Vec3(1, 0, 0): "unloaded"})
        assert find_candidates(source, Vec3(0, 0, 0), 1, 8.0, ()) == []

    def test_center_is_floored(self) -> None:
        source = FakeSource(Vec3(0, 0, 0), {Vec3(1, 0, 0): "dirt"})
        found = find_candidates(source, Vec3(1.7, 0.4, 0.9), 0, 8.0, ())
        assert [b.position for b in found] == [Vec3(1, 0, 0)]


class TestClickLimiter:
    def test_interval_from_cps(self, clock: VirtualClock) -> None:
        limiter = ClickLimiter(BehaviorState(), cps=20, clock=clock.time)
        assert limiter.interval == pytest.approx(0.05)
        assert limiter.ready()

        limiter.consume()
        assert not limiter.ready()
        clock.advance(0.049)
        assert not limiter.ready()
        clock.advance(0.001)
        assert limiter.ready()

    def test_rejects_non_positive_cps(self) -> None:
        with pytest.raises(ValueError):
            ClickLimiter(BehaviorState(), cps=0)


class TestTargetScanner:
    @pytest.mark.asyncio
    async def test_scans_closer_than_interval_take_one_action(self, clock: VirtualClock) -> None:
        world = OfflineWorld.flat(radius=4)
        connection = world.connect("Alice")
        await connection.connect(AsyncMock())
        state = BehaviorState()
        scanner = TargetScanner(connection, state, BehaviorConfig(cps=20), clock.time)

        first = await scanner.scan_and_act(Vec3(1, 1, 1))
        clock.advance(0.01)
        second = await scanner.scan_and_act(Vec3(1, 1, 1))
        await scanner.drain()

        assert first is not None
        assert second is None
        assert world.block_at(first.position).name == "air"

        clock.advance(0.05)
        assert await scanner.scan_and_act(Vec3(1, 1, 1)) is not None
        await scanner.drain()

    @pytest.mark.asyncio
    async def test_looks_at_block_center(self, clock: VirtualClock) -> None:
        world = OfflineWorld.flat(radius=2)
        connection = world.connect("Alice")
        await connection.connect(AsyncMock())
        scanner = TargetScanner(connection, BehaviorState(), BehaviorConfig(), clock.time)

        block = await scanner.scan_and_act(Vec3(0, 1, 0))
        await scanner.drain()

        assert block is not None
        assert connection.looked_at == block.position.offset(0.5, 0.5, 0.5)

    @pytest.mark.asyncio
    async def test_nothing_eligible(self, clock: VirtualClock) -> None:
        world = OfflineWorld.flat(radius=2, floor="bedrock")
        connection = world.connect("Alice")
        await connection.connect(AsyncMock())
        state = BehaviorState()
        scanner = TargetScanner(connection, state, BehaviorConfig(), clock.time)

        assert await scanner.scan_and_act(Vec3(0, 1, 0)) is None
        assert state.last_action_at == 0.0

    @pytest.mark.asyncio
    async def test_look_failure_is_swallowed(self, clock: VirtualClock) -> None:
        connection = MagicMock()
        connection.position = Vec3(0, 1, 0)
        connection.block_at.side_effect = lambda pos: Block(pos, "dirt")
        connection.look_at = AsyncMock(side_effect=ActionFailed("look", "closed"))
        connection.dig = AsyncMock()
        scanner = TargetScanner(connection, BehaviorState(), BehaviorConfig(scan_radius=1), clock.time)

        assert await scanner.scan_and_act(Vec3(0, 1, 0)) is None
        connection.dig.assert_not_called()

    @pytest.mark.asyncio
    async def test_state_change_during_look_discards_dig(self, clock: VirtualClock) -> None:
        state = BehaviorState()
        connection = MagicMock()
        connection.position = Vec3(0, 1, 0)
        connection.block_at.side_effect = lambda pos: Block(pos, "dirt")

        async def look_and_stop(_position: Vec3) -> None:
            state.reset()

        connection.look_at = AsyncMock(side_effect=look_and_stop)
        connection.dig = AsyncMock()
        scanner = TargetScanner(connection, state, BehaviorConfig(scan_radius=1), clock.time)

        assert await scanner.scan_and_act(Vec3(0, 1, 0)) is None
        assert scanner.pending == 0
        connection.dig.assert_not_called()

    @pytest.mark.asyncio
    async def test_dig_failure_does_not_escape(self, clock: VirtualClock) -> None:
        connection = MagicMock()
        connection.position = Vec3(0, 1, 0)
        connection.block_at.side_effect = lambda pos: Block(pos, "dirt")
        connection.look_at = AsyncMock()
        connection.dig = AsyncMock(side_effect=ActionFailed("dig", "out of reach"))
        scanner = TargetScanner(connection, BehaviorState(), BehaviorConfig(scan_radius=1), clock.time)

        assert await scanner.scan_and_act(Vec3(0, 1, 0)) is not None
        await scanner.drain()
        connection.dig.assert_awaited_once()
