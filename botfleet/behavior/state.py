"""Per-bot behavior state and its transitions.

BehaviorState is owned by one BehaviorEngine. Fields are read-only from
outside; every change goes through a transition method, and every
transition bumps `epoch` so long-running work (a trap build, a dig in
flight) can tell that the state moved on while it was suspended.
"""

from __future__ import annotations

from enum import Enum


class Mode(str, Enum):
    """What the bot is currently doing."""

    NONE = "none"
    FOLLOW = "follow"
    GRIEF = "grief"
    TRAP = "trap"
    CLEARMAP = "clearmap"


TARGET_MODES: frozenset[Mode] = frozenset({Mode.FOLLOW, Mode.GRIEF, Mode.TRAP})

STATUS_LABELS: dict[Mode, str] = {
    Mode.FOLLOW: "Following",
    Mode.GRIEF: "Griefing",
    Mode.TRAP: "Trapping",
}


def status_for(mode: Mode, target: str) -> str:
    """Status line shown while a target mode is active."""
    return f"{STATUS_LABELS[mode]} {target}"


class BehaviorState:
    """Mode, target and timers for one bot."""

    __slots__ = ("_mode", "_target", "_last_action_at", "_sweep_angle", "_is_building", "_epoch")

    def __init__(self) -> None:
        self._mode = Mode.NONE
        self._target: str | None = None
        self._last_action_at = 0.0
        self._sweep_angle = 0.0
        self._is_building = False
        self._epoch = 0

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def target(self) -> str | None:
        return self._target

    @property
    def last_action_at(self) -> float:
        return self._last_action_at

    @property
    def sweep_angle(self) -> float:
        return self._sweep_angle

    @property
    def is_building(self) -> bool:
        return self._is_building

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_idle(self) -> bool:
        return self._mode is Mode.NONE

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Back to idle: no mode, no target, no build in progress."""
        self._mode = Mode.NONE
        self._target = None
        self._is_building = False
        self._epoch += 1

    def engage(self, mode: Mode, target: str) -> None:
        """Start a target mode."""
        if mode not in TARGET_MODES:
            raise ValueError(f"{mode.value} is not a target mode")
        self._mode = mode
        self._target = target
        self._epoch += 1

    def begin_sweep(self, angle: float) -> None:
        self._mode = Mode.CLEARMAP
        self._target = None
        self._sweep_angle = angle
        self._epoch += 1

    def begin_building(self) -> int:
        """Raise the building guard. Returns the epoch the build belongs to."""
        self._is_building = True
        self._epoch += 1
        return self._epoch

    def finish_building(self, switch_to_follow: bool) -> None:
        """Lower the building guard, optionally handing over to follow."""
        self._is_building = False
        if switch_to_follow:
            self._mode = Mode.FOLLOW
        self._epoch += 1

    def mark_action(self, now: float) -> None:
        """Record the time of a destructive action (not a transition)."""
        self._last_action_at = now

    def snapshot(self) -> dict[str, object]:
        return {
            "mode": self._mode.value,
            "target": self._target,
            "sweep_angle": self._sweep_angle,
            "is_building": self._is_building,
        }

    def __repr__(self) -> str:
        return (
            f"BehaviorState(mode={self._mode.value}, target={self._target!r}, "
            f"is_building={self._is_building}, epoch={self._epoch})"
        )
