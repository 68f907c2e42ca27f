"""Identity map - which execution unit answers to which bot name

Each live unit is registered under exactly one key: its initial handle
(account-file name or temporary auth name) until login, and possibly its
final in-game name afterwards. Both names stay resolvable through
lookup() for the unit's lifetime.

Usage:
    identities = IdentityMap()
    identities.register("AuthBot-42", UnitEntry(unit, "AuthBot-42", is_auth_flow=True))
    identities.set_final_handle("AuthBot-42", "Notch")
    identities.rekey("AuthBot-42", "Notch")
    identities.lookup("AuthBot-42")  # same entry as lookup("Notch")

Thread-safety: This class is NOT thread-safe. It is owned by the
supervisor and only touched from the event loop thread.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

if TYPE_CHECKING:
    from .unit import ExecutionUnit


class IdentityCollisionError(Exception):
    """Raised when a key is already bound to a different unit."""

    def __init__(self, handle: str) -> None:
        self.handle = handle
        super().__init__(f"Identity collision: '{handle}' is already bound to a live unit")


@dataclass
class UnitEntry:
    """One live execution unit and its names."""

    unit: ExecutionUnit
    initial_handle: str
    is_auth_flow: bool = False
    final_handle: str | None = None

    @property
    def display_name(self) -> str:
        """Name shown on the control surface."""
        return self.final_handle or self.initial_handle


class IdentityMap:
    """Keyed store of live units, in spawn order."""

    _entries: dict[str, UnitEntry]

    def __init__(self) -> None:
        self._entries = {}

    def register(self, handle: str, entry: UnitEntry) -> None:
        """Bind a handle to a new unit.

        Raises:
            IdentityCollisionError: If the handle is already bound
        """
        if handle in self._entries:
            raise IdentityCollisionError(handle)
        self._entries[handle] = entry

    def set_final_handle(self, handle: str, final_handle: str) -> UnitEntry | None:
        """Record the server-assigned name on the entry keyed by handle."""
        entry = self._entries.get(handle)
        if entry is not None:
            entry.final_handle = final_handle
        return entry

    def rekey(self, old: str, new: str) -> UnitEntry:
        """Move an entry from one key to another in a single step.

        The entry keeps its position in spawn order. The map never holds
        the entry under both keys, and never lacks it.

        Raises:
            KeyError: If old is not bound
            IdentityCollisionError: If new is bound to a different unit
        """
        entry = self._entries[old]
        if old == new:
            return entry
        existing = self._entries.get(new)
        if existing is not None and existing is not entry:
            raise IdentityCollisionError(new)
        self._entries = {
            (new if key == old else key): value for key, value in self._entries.items()
        }
        return entry

    def remove(self, handle: str) -> UnitEntry | None:
        """Unbind a handle. Returns the removed entry, if any."""
        return self._entries.pop(handle, None)

    def lookup(self, name: str) -> UnitEntry | None:
        """Resolve a key, final handle or initial handle to its entry."""
        entry = self._entries.get(name)
        if entry is not None:
            return entry
        for candidate in self._entries.values():
            if name in (candidate.final_handle, candidate.initial_handle):
                return candidate
        return None

    def key_of(self, unit: ExecutionUnit) -> str | None:
        """Find the current key of a unit by identity."""
        for key, entry in self._entries.items():
            if entry.unit is unit:
                return key
        return None

    def keys(self) -> list[str]:
        return list(self._entries.keys())

    def entries(self) -> list[UnitEntry]:
        """Live entries in spawn order."""
        return list(self._entries.values())

    def __contains__(self, handle: object) -> bool:
        return handle in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))
