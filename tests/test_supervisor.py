"""Tests for the fleet supervisor.

Tests that the supervisor:
- Keeps one unit per handle and dedupes spawns
- Re-keys authentication-flow units to their in-game name
- Forwards unit events to the control surface
- Restarts units that exit abnormally, after a delay
- Does NOT restart terminated units or authentication-flow units
- Splits clearmap angles evenly across live units
"""

from __future__ import annotations

import asyncio
import math
from unittest.mock import MagicMock

import pytest

from botfleet.config_schema import AppConfig, SupervisorConfig
from botfleet.errors import EXIT_ABNORMAL, EXIT_CLEAN
from botfleet.fleet.registry import UnitEntry
from botfleet.fleet.supervisor import FleetSupervisor
from botfleet.messages import (
    Authenticated,
    AuthLink,
    ChatCommand,
    ClearMapCommand,
    LogLine,
    StatusUpdate,
    StopCommand,
    UnitError,
)
from botfleet.world.offline import OfflineWorld
from tests.testing_utils import RecordingSink, wait_for


def _supervisor(
    world: OfflineWorld, config: AppConfig, sink: RecordingSink
) -> FleetSupervisor:
    return FleetSupervisor(world.connect, config, sink)


def _register(supervisor: FleetSupervisor, handle: str, is_auth_flow: bool = False) -> MagicMock:
    """Put a mock unit in the identity map, as spawn() would."""
    unit = MagicMock(name=handle)
    unit.handle = handle
    unit.bot_name = handle
    supervisor.identities.register(handle, UnitEntry(unit, handle, is_auth_flow=is_auth_flow))
    return unit


class TestEventForwarding:
    def test_auth_link(self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "AuthBot-1", is_auth_flow=True)

        supervisor.on_unit_message(unit, AuthLink("AuthBot-1", "https://link", "ABCD"))

        assert sink.of("auth-link") == [
            {"link": "https://link", "user_code": "ABCD", "username": "AuthBot-1"}
        ]
        assert "Auth required. Code: ABCD" in sink.log_texts("AuthBot-1")
        assert supervisor.identities.keys() == ["AuthBot-1"]

    def test_authenticated_rekeys_auth_unit(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        _register(supervisor, "Alice")
        unit = _register(supervisor, "AuthBot-1", is_auth_flow=True)

        supervisor.on_unit_message(unit, Authenticated("Notch", "Notch", "AuthBot-1"))

        assert supervisor.identities.keys() == ["Alice", "Notch"]
        entry = supervisor.identities.lookup("Notch")
        assert entry is not None and entry.unit is unit
        assert supervisor.identities.lookup("AuthBot-1") is entry
        assert sink.of("bot-authenticated") == [
            {"tempUsername": "AuthBot-1", "finalUsername": "Notch"}
        ]

    def test_auth_only_policy_keeps_file_handle(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "alice_file")

        supervisor.on_unit_message(unit, Authenticated("Alice", "Alice", "alice_file"))

        assert supervisor.identities.keys() == ["alice_file"]
        assert supervisor.online_names() == ["Alice"]
        assert (
            "Bot from file 'alice_file' is now in-game as 'Alice'." in sink.log_texts("System")
        )

    def test_online_names_skip_units_not_logged_in(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        alice = _register(supervisor, "Alice")
        _register(supervisor, "AuthBot-7", is_auth_flow=True)

        assert supervisor.online_names() == []

        supervisor.on_unit_message(alice, Authenticated("Alice", "Alice", "Alice"))

        assert supervisor.online_names() == ["Alice"]

    def test_always_policy_rekeys_every_unit(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        config = app_config.model_copy(
            update={"supervisor": SupervisorConfig(rekey_policy="always")}
        )
        supervisor = _supervisor(world, config, sink)
        unit = _register(supervisor, "alice_file")

        supervisor.on_unit_message(unit, Authenticated("Alice", "Alice", "alice_file"))

        assert supervisor.identities.keys() == ["Alice"]

    def test_status_uses_final_name(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "alice_file")
        supervisor.on_unit_message(unit, Authenticated("Alice", "Alice", "alice_file"))

        supervisor.on_unit_message(unit, StatusUpdate("Alice", "Following Steve"))

        assert sink.of("bot-status-update") == [{"username": "Alice", "status": "Following Steve"}]

    def test_status_from_unknown_bot_dropped(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        supervisor.on_unit_message(MagicMock(), StatusUpdate("Ghost", "Idle"))
        assert sink.of("bot-status-update") == []

    def test_log_and_error(self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "Alice")

        supervisor.on_unit_message(unit, LogLine("Alice", "Bot online."))
        supervisor.on_unit_message(unit, UnitError("Alice", "Traceback..."))

        assert sink.of("log") == [
            {"bot": "Alice", "text": "Bot online.", "type": "info"},
            {"bot": "Alice", "text": "ERROR: Traceback...", "type": "error"},
        ]

    def test_fault_is_reported_without_cleanup(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "Alice")

        supervisor.on_unit_fault(unit, RuntimeError("boom"))

        assert supervisor.identities.keys() == ["Alice"]
        assert sink.has("log", bot="Alice", type="error")
        assert supervisor.stats.faults == 1


class TestExitAndRespawn:
    @pytest.mark.asyncio
    async def test_abnormal_exit_schedules_respawn(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "Alice")

        supervisor.on_unit_exit(unit, EXIT_ABNORMAL)

        assert "Alice" not in supervisor.identities
        assert sink.of("bot-offline") == [{"username": "Alice"}]
        assert supervisor.pending_respawns == ["Alice"]

        await wait_for(lambda: "Alice" in supervisor.identities)
        assert supervisor.pending_respawns == []
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_clean_exit_not_respawned(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "Alice")

        supervisor.on_unit_exit(unit, EXIT_CLEAN)

        assert supervisor.pending_respawns == []
        assert sink.of("bot-offline") == [{"username": "Alice"}]

    @pytest.mark.asyncio
    async def test_auth_unit_never_respawned(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "AuthBot-3", is_auth_flow=True)

        supervisor.on_unit_exit(unit, EXIT_ABNORMAL)

        assert supervisor.pending_respawns == []

    @pytest.mark.asyncio
    async def test_offline_event_uses_final_name(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "alice_file")
        supervisor.on_unit_message(unit, Authenticated("Alice", "Alice", "alice_file"))

        supervisor.on_unit_exit(unit, EXIT_CLEAN)

        assert sink.of("bot-offline") == [{"username": "Alice"}]
        assert len(supervisor.identities) == 0

    @pytest.mark.asyncio
    async def test_exit_of_unknown_unit_ignored(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        supervisor.on_unit_exit(MagicMock(), EXIT_ABNORMAL)
        assert sink.of("bot-offline") == []

    @pytest.mark.asyncio
    async def test_spawn_cancels_pending_respawn(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        config = app_config.model_copy(
            update={"supervisor": SupervisorConfig(respawn_delay_seconds=60)}
        )
        supervisor = _supervisor(world, config, sink)
        unit = _register(supervisor, "Alice")
        supervisor.on_unit_exit(unit, EXIT_ABNORMAL)
        assert supervisor.pending_respawns == ["Alice"]

        assert supervisor.spawn("Alice") is not None
        assert supervisor.pending_respawns == []
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_respawns(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        unit = _register(supervisor, "Alice")
        supervisor.on_unit_exit(unit, EXIT_ABNORMAL)

        await supervisor.shutdown()
        await asyncio.sleep(app_config.supervisor.respawn_delay_seconds * 2)

        assert supervisor.pending_respawns == []
        assert len(supervisor.identities) == 0


class TestSpawn:
    @pytest.mark.asyncio
    async def test_spawn_dedupes(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)

        first = supervisor.spawn("Alice")
        second = supervisor.spawn("Alice")

        assert first is not None
        assert second is None
        assert supervisor.identities.keys() == ["Alice"]
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_spawn_auth_unit(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)

        unit = supervisor.spawn_auth_unit()

        assert unit is not None
        assert unit.is_auth_flow
        assert unit.handle.startswith("AuthBot-")
        assert sink.of("bot-online") == [{"username": unit.handle, "status": "Authenticating..."}]
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_start_spawns_each_account(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)

        supervisor.start(["Alice", "Bob"])

        assert supervisor.identities.keys() == ["Alice", "Bob"]
        assert supervisor.stats.spawned == 2
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_terminate_all_cleans_up_without_respawn(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        supervisor.start(["Alice", "Bob"])
        await wait_for(lambda: len(sink.of("bot-authenticated")) == 2)

        assert supervisor.terminate_all() == 2
        await wait_for(lambda: len(supervisor.identities) == 0)

        assert {d["username"] for d in sink.of("bot-offline")} == {"Alice", "Bob"}
        assert supervisor.pending_respawns == []
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_terminate_before_unit_runs_still_cleans_up(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)

        supervisor.spawn("Alice")
        supervisor.terminate_all()
        await wait_for(lambda: len(supervisor.identities) == 0)

        assert sink.of("bot-offline") == [{"username": "Alice"}]
        assert "Bot Alice exited with code 0." in sink.log_texts("System")
        assert supervisor.pending_respawns == []
        assert supervisor.spawn("Alice") is not None
        await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_right_after_start(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)

        supervisor.start(["Alice", "Bob"])
        await supervisor.shutdown()

        assert len(supervisor.identities) == 0
        assert [d["username"] for d in sink.of("bot-offline")] == ["Alice", "Bob"]
        assert supervisor.pending_respawns == []


class TestBroadcast:
    def test_clearmap_angles_in_registry_order(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        units = [_register(supervisor, name) for name in ("A", "B", "C", "D")]

        assert supervisor.broadcast(ClearMapCommand()) == 4

        angles = [unit.post.call_args.args[0].angle for unit in units]
        assert angles == pytest.approx([0.0, math.pi / 2, math.pi, 3 * math.pi / 2])

    def test_other_commands_go_to_everyone_unchanged(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        units = [_register(supervisor, name) for name in ("A", "B")]

        supervisor.broadcast(StopCommand())
        supervisor.send_chat("hi")

        for unit in units:
            assert [c.args[0] for c in unit.post.call_args_list] == [StopCommand(), ChatCommand("hi")]

    def test_broadcast_with_no_units(
        self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink
    ) -> None:
        supervisor = _supervisor(world, app_config, sink)
        assert supervisor.broadcast(ClearMapCommand()) == 0


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot(self, world: OfflineWorld, app_config: AppConfig, sink: RecordingSink) -> None:
        supervisor = _supervisor(world, app_config, sink)
        supervisor.spawn("Alice")
        await wait_for(lambda: sink.has("bot-status-update", username="Alice", status="Idle"))

        snapshot = supervisor.snapshot()

        assert snapshot["bots"] == [
            {
                "key": "Alice",
                "initial_handle": "Alice",
                "final_handle": "Alice",
                "auth_flow": False,
                "state": "online",
                "status": "Idle",
                "mode": "none",
            }
        ]
        assert snapshot["stats"]["spawned"] == 1
        await supervisor.shutdown()
