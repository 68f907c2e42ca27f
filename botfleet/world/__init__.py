"""Game world contract and the offline backend."""

from .connection import (
    AIR_BLOCKS,
    Block,
    ConnectionFactory,
    GameConnection,
    Goal,
    GoalFollow,
    GoalNear,
    GoalXZ,
    Item,
    Player,
)
from .offline import OfflineConnection, OfflineWorld

__all__ = [
    "AIR_BLOCKS",
    "Block",
    "ConnectionFactory",
    "GameConnection",
    "Goal",
    "GoalFollow",
    "GoalNear",
    "GoalXZ",
    "Item",
    "Player",
    "OfflineConnection",
    "OfflineWorld",
]
