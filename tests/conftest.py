"""Pytest fixtures for botfleet tests.

Common fixtures for driving bots against the offline world.
"""

from __future__ import annotations

# Load environment variables from .env before any tests run
from dotenv import load_dotenv

load_dotenv()

from pathlib import Path

import pytest

from botfleet.accounts import AccountStore
from botfleet.config_schema import (
    AppConfig,
    BehaviorConfig,
    OfflineConfig,
    SupervisorConfig,
)
from botfleet.geometry import Vec3
from botfleet.world.offline import OfflineWorld
from tests.testing_utils import RecordingSink


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: end-to-end test running real units against the offline world",
    )


@pytest.fixture
def behavior_config() -> BehaviorConfig:
    """Behavior tuning with no placement delay."""
    return BehaviorConfig(placement_delay_seconds=0.0)


@pytest.fixture
def app_config(behavior_config: BehaviorConfig) -> AppConfig:
    """App config with fast ticks and a short respawn delay."""
    return AppConfig(
        behavior=behavior_config,
        supervisor=SupervisorConfig(respawn_delay_seconds=0.05),
        offline=OfflineConfig(tick_interval_seconds=0.01, platform_radius=8),
    )


@pytest.fixture
def world() -> OfflineWorld:
    """Flat stone world with one human player, ticking every 10ms."""
    world = OfflineWorld.flat(radius=8, tick_interval=0.01, move_speed=1.0)
    world.add_player("Steve", Vec3(4, 1, 4))
    return world


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def accounts(tmp_path: Path) -> AccountStore:
    """Empty account file in a temp directory."""
    store = AccountStore(tmp_path / "accountsList.txt")
    store.ensure_exists()
    return store
