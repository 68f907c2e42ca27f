"""Fleet supervision: execution units, identity map and supervisor."""

from .registry import IdentityCollisionError, IdentityMap, UnitEntry
from .supervisor import EventSink, FleetSupervisor
from .unit import ExecutionUnit, UnitState

__all__ = [
    "EventSink",
    "ExecutionUnit",
    "FleetSupervisor",
    "IdentityCollisionError",
    "IdentityMap",
    "UnitEntry",
    "UnitState",
]
