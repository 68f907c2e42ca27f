"""Messages crossing the supervisor/unit boundary.

Both directions are closed sets of frozen dataclasses. Commands flow
supervisor -> unit; events flow unit -> supervisor. Control-surface
payloads are converted with parse_command() at the edge so nothing past
it switches on raw strings.

Usage:
    command = parse_command({"command": "follow", "target": "Bob"})
    unit.post(command)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

from .errors import CommandRejected

TargetMode = Literal["follow", "grief", "trap"]
TARGET_MODES: tuple[str, ...] = ("follow", "grief", "trap")


# =============================================================================
# COMMANDS (supervisor -> unit)
# =============================================================================


@dataclass(frozen=True)
class TargetCommand:
    """Follow, grief or trap a named player."""

    mode: TargetMode
    target: str


@dataclass(frozen=True)
class ClearMapCommand:
    """Sweep outward along `angle` (radians)."""

    angle: float = 0.0


@dataclass(frozen=True)
class StopCommand:
    """Return to idle."""


@dataclass(frozen=True)
class ChatCommand:
    """Say `message` in game chat."""

    message: str


Command = Union[TargetCommand, ClearMapCommand, StopCommand, ChatCommand]


def parse_command(data: dict[str, Any]) -> Command:
    """Build a command from a control-surface payload.

    Args:
        data: Payload of the form {"command": name, ...params}

    Returns:
        The matching Command variant. A target command with an empty
        target is still returned; the unit rejects it with a log line.

    Raises:
        CommandRejected: Unknown command or malformed parameters
    """
    if not isinstance(data, dict):
        raise CommandRejected(f"Command payload must be an object, got {type(data).__name__}")
    name = data.get("command")
    if not name:
        raise CommandRejected("Missing 'command' field")

    if name in TARGET_MODES:
        target = data.get("target") or ""
        return TargetCommand(mode=name, target=str(target).strip())
    if name == "clearmap":
        try:
            angle = float(data.get("angle", 0.0))
        except (TypeError, ValueError) as e:
            raise CommandRejected(f"Invalid angle: {data.get('angle')!r}") from e
        return ClearMapCommand(angle=angle)
    if name == "stop":
        return StopCommand()
    if name == "chat":
        message = data.get("message")
        if not isinstance(message, str) or not message:
            raise CommandRejected("chat requires a non-empty 'message'")
        return ChatCommand(message=message)

    raise CommandRejected(f"Unknown command: {name!r}")


# =============================================================================
# EVENTS (unit -> supervisor)
# =============================================================================


@dataclass(frozen=True)
class AuthLink:
    """Device-code login is waiting for the operator."""

    bot: str
    link: str
    user_code: str


@dataclass(frozen=True)
class Authenticated:
    """The bot logged in and spawned as `nickname`."""

    bot: str
    nickname: str
    initial_handle: str


@dataclass(frozen=True)
class StatusUpdate:
    bot: str
    status: str


@dataclass(frozen=True)
class LogLine:
    bot: str
    text: str


@dataclass(frozen=True)
class UnitError:
    """A fault caught at the unit's tick/command boundary."""

    bot: str
    error: str


UnitEvent = Union[AuthLink, Authenticated, StatusUpdate, LogLine, UnitError]
