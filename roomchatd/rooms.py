"""Room membership for the roomchatd relay.

This module handles:
- Room membership tracking (room name -> member connections)
- The room catalog, either fixed at startup or created on first join
- Pruning of empty rooms, except protected ones

RoomManager holds no lock of its own. Methods that read or change membership
must be called with the Registry state lock held; the Registry keeps each
connection record's ``room`` field in step with these member sets.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .constants import CATALOG_FIXED
from .util import normalize_room

if TYPE_CHECKING:
    from .config import RelayRuntimeConfig
    from .connection import Connection


class RoomManager:
    """Tracks room memberships and validates room names against the catalog."""

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("roomchatd.rooms")
        self.rooms: dict[str, set[Connection]] = {}

        self.fixed = config.room_catalog == CATALOG_FIXED
        # Catalog order is kept for listings.
        self._catalog: list[str] = []
        self._protected: set[str] = set()

        if self.fixed:
            for name in config.rooms:
                r = str(name).strip().lower()
                if r and r not in self._catalog:
                    self._catalog.append(r)
            self._protected.update(self._catalog)

        self.default_room: str | None = None
        if config.default_room:
            self.default_room = self.resolve_room(config.default_room)
            if self.default_room is not None:
                self._protected.add(self.default_room)

        for r in self._protected:
            self.rooms.setdefault(r, set())

    def resolve_room(self, room: str) -> str | None:
        """Return the canonical room name, or None if the catalog rejects it."""
        try:
            r = normalize_room(room, max_len=self.config.max_room_name_len)
        except ValueError:
            return None

        if self.fixed and r not in self._catalog:
            return None
        return r

    def get_room_members(self, room: str) -> set[Connection]:
        """Get set of connections currently in a room."""
        return self.rooms.get(room, set())

    def add_member(self, room: str, conn: Connection) -> None:
        """Add a connection to a room, creating the room if needed."""
        self.rooms.setdefault(room, set()).add(conn)

    def remove_member(self, room: str, conn: Connection) -> bool:
        """Remove a connection from a room, pruning it if empty and unprotected.

        Returns True if the connection was a member.
        """
        members = self.rooms.get(room)
        if members is None or conn not in members:
            return False

        members.discard(conn)
        if not members and room not in self._protected:
            self.rooms.pop(room, None)
            self.log.debug("Pruned empty room %s", room)
        return True

    def catalog(self) -> list[tuple[str, int]]:
        """(room, member count) pairs: catalog order for fixed, sorted for dynamic."""
        if self.fixed:
            return [(r, len(self.rooms.get(r, ()))) for r in self._catalog]
        return sorted((r, len(members)) for r, members in self.rooms.items())

    def clear_all(self) -> None:
        """Drop all memberships, keeping protected rooms. Called during shutdown."""
        self.rooms = {r: set() for r in self._protected}

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics for relay stats."""
        occupied = {r: links for r, links in self.rooms.items() if links}
        memberships = sum(len(v) for v in occupied.values())
        top_rooms = sorted(
            ((room, len(links)) for room, links in occupied.items()),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": len(self.rooms),
            "rooms_occupied": len(occupied),
            "memberships": memberships,
            "top_rooms": top_rooms,
        }
