"""Error taxonomy for the bot fleet.

Every failure in the fleet falls into one of five categories, each with a
fixed handling site:

- REJECTED_COMMAND: bad or unreachable command target -> log line, state unchanged
- ACTION_FAILURE: one remote action (dig/place/equip) failed -> caught, logged at most
- UNIT_FAULT: uncaught error inside tick/command processing -> reported upward
- CONNECTION_LOSS: remote connection ended -> unit exits abnormally
- UNIT_EXIT: supervisor-visible exit -> identity cleanup, maybe respawn

Usage:
    from botfleet.errors import ActionFailed, ErrorCategory

    try:
        await connection.dig(block)
    except ActionFailed as e:
        logger.debug("dig failed: %s", e)
"""

from __future__ import annotations

import traceback
from enum import Enum


# Unit exit codes
EXIT_CLEAN = 0  # Terminated by the supervisor
EXIT_ABNORMAL = 1  # Connection lost, login failed or runtime fault


class ErrorCategory(str, Enum):
    """Where an error came from and how it is handled."""

    REJECTED_COMMAND = "rejected_command"
    ACTION_FAILURE = "action_failure"
    UNIT_FAULT = "unit_fault"
    CONNECTION_LOSS = "connection_loss"
    UNIT_EXIT = "unit_exit"


class FleetError(Exception):
    """Base class for fleet errors."""

    category: ErrorCategory = ErrorCategory.UNIT_FAULT


class CommandRejected(FleetError):
    """A control-surface command could not be accepted."""

    category = ErrorCategory.REJECTED_COMMAND


class ActionFailed(FleetError):
    """A single remote-world action was refused or failed."""

    category = ErrorCategory.ACTION_FAILURE

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"{action} failed: {reason}")


class ConnectionLost(FleetError):
    """The remote connection ended or could not be established."""

    category = ErrorCategory.CONNECTION_LOSS


def format_exception(exc: BaseException) -> str:
    """Render an exception with its traceback, for error events."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
