"""Per-bot behavior: state machine, target scan and trap building."""

from .engine import BehaviorEngine
from .scan import ClickLimiter, TargetScanner, find_candidates
from .state import BehaviorState, Mode, status_for
from .trap import TRAP_OFFSETS, StructurePlanner, TrapOffset, offsets_by_role

__all__ = [
    "BehaviorEngine",
    "BehaviorState",
    "ClickLimiter",
    "Mode",
    "StructurePlanner",
    "TargetScanner",
    "TRAP_OFFSETS",
    "TrapOffset",
    "find_candidates",
    "offsets_by_role",
    "status_for",
]
