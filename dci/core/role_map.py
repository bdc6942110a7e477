from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from dci.errors import DuplicateRole, RoleNotFound


@dataclass(slots=True)
class RoleEntry:
    role: str
    bundle_name: str | None
    # The current reference; a wrapper replaces it while the role is bound.
    player: Any


class RoleEntries(Iterable[tuple[str, Any]]):
    """Lazy view over `(role, player)` pairs in insertion order.

    Each iteration starts from the beginning and reflects the map as it is at
    that moment.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: dict[str, RoleEntry]):
        self._entries = entries

    def __iter__(self) -> Iterator[tuple[str, Any]]:
        for entry in self._entries.values():
            yield entry.role, entry.player

    def __len__(self) -> int:
        return len(self._entries)


class RoleMap:
    """Ordered role -> player store for a single context instance.

    Insertion order is the order roles are bound and unbound in.
    """

    def __init__(self) -> None:
        self._entries: dict[str, RoleEntry] = {}

    def register(self, role: str, player: Any, bundle_name: str | None = None) -> None:
        if role in self._entries:
            raise DuplicateRole(f"Role already registered: {role}")
        self._entries[role] = RoleEntry(role=role, bundle_name=bundle_name, player=player)

    def assign(self, role: str, player: Any) -> None:
        self._require(role).player = player

    def has_role(self, name: str) -> bool:
        return name in self._entries

    def is_player(self, obj: Any) -> bool:
        return any(entry.player is obj for entry in self._entries.values())

    def player_for(self, role: str) -> Any | None:
        entry = self._entries.get(role)
        return entry.player if entry is not None else None

    def bundle_name_for(self, role: str) -> str | None:
        return self._require(role).bundle_name

    def entries(self) -> RoleEntries:
        return RoleEntries(self._entries)

    def roles(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def _require(self, role: str) -> RoleEntry:
        try:
            return self._entries[role]
        except KeyError:
            raise RoleNotFound(f"No such role: {role}") from None

    def __getitem__(self, role: str) -> Any:
        return self._require(role).player

    def __contains__(self, role: object) -> bool:
        return role in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        roles = ", ".join(self._entries)
        return f"RoleMap({roles})"
