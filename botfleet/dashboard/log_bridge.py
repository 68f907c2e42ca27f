"""Mirror botfleet log records onto the control surface."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..fleet.supervisor import EventSink

SYSTEM_BOT = "System"


class DashboardLogHandler(logging.Handler):
    """Forward records as `log{bot: "System", text, type}` events.

    Records from the dashboard's own loggers are skipped; sending them
    would log again.
    """

    def __init__(self, sink: EventSink, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.sink = sink

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("botfleet.dashboard"):
            return False
        return super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
            kind = "error" if record.levelno >= logging.ERROR else "info"
            self.sink.emit("log", {"bot": SYSTEM_BOT, "text": text, "type": kind})
        except Exception:
            self.handleError(record)


def install(sink: EventSink, logger_name: str = "botfleet") -> DashboardLogHandler:
    """Attach a handler to the package logger. Returns it for removal."""
    handler = DashboardLogHandler(sink)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logging.getLogger(logger_name).addHandler(handler)
    return handler


def uninstall(handler: DashboardLogHandler, logger_name: str = "botfleet") -> None:
    logging.getLogger(logger_name).removeHandler(handler)
