from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .constants import (
    ERR_ALREADY_IN_ROOM,
    ERR_INVALID_ROOM,
    ERR_NOT_IN_ROOM,
    ERR_NOT_REGISTERED,
    LEAVE_TO_DEFAULT,
    REJECT_EMPTY,
    REJECT_INVALID,
    REJECT_TAKEN,
)
from .rooms import RoomManager
from .util import name_key, normalize_name

if TYPE_CHECKING:
    from .config import RelayRuntimeConfig
    from .connection import Connection


@dataclass
class ConnectionRecord:
    """Negotiated identity of a registered connection."""

    handle: Connection
    name: str
    room: str | None = None
    connected_at: float = field(default_factory=time.time)

    def online_seconds(self, now: float | None = None) -> float:
        return max(0.0, (time.time() if now is None else now) - self.connected_at)


@dataclass(frozen=True)
class RoomChange:
    """Outcome of a join or leave. ``error`` is None on success."""

    previous: str | None = None
    current: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Registry:
    """
    Authoritative shared state for the relay.

    Holds the connection records, the case-insensitive name index and the
    room memberships. Every public method runs under one re-entrant state
    lock, so each is atomic with respect to all others. Methods never perform
    I/O; callers copy out what they need and write to connections after the
    lock is released.

    Records handed to callers are copies, so they can be read without the lock.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("roomchatd.registry")
        self._state_lock = threading.RLock()
        self.room_manager = RoomManager(config)
        self._records: dict[Connection, ConnectionRecord] = {}
        self._names: dict[str, Connection] = {}  # name key -> handle

    # Registration

    def register(
        self, handle: Connection, candidate: Any
    ) -> tuple[str | None, str | None]:
        """
        Reserve a name and register ``handle`` under it in one atomic step.

        Returns:
            (name, None) on success, with the name trimmed, or
            (None, reason) where reason is one of REJECT_EMPTY, REJECT_TAKEN,
            REJECT_INVALID.
        """
        if not isinstance(candidate, str) or not candidate.strip():
            return None, REJECT_EMPTY

        name = normalize_name(candidate, max_chars=self.config.name_max_chars)
        if name is None:
            return None, REJECT_INVALID

        key = name_key(name)
        with self._state_lock:
            if handle in self._records:
                raise RuntimeError(f"{handle!r} is already registered")
            if key in self._names:
                return None, REJECT_TAKEN

            record = ConnectionRecord(handle=handle, name=name)
            self._records[handle] = record
            self._names[key] = handle

            if not self.config.room_selection:
                default_room = self.room_manager.default_room
                if default_room is not None:
                    self.room_manager.add_member(default_room, handle)
                    record.room = default_room

            total = len(self._records)

        self.log.info(
            "Registered name=%r conn=%s clients=%s", name, handle.conn_id, total
        )
        return name, None

    def unregister(self, handle: Connection) -> ConnectionRecord | None:
        """
        Remove ``handle`` from the records, its room and the name index.

        Returns the removed record the first time and None afterwards, so
        exactly one caller owns the departure notice.
        """
        with self._state_lock:
            record = self._records.pop(handle, None)
            if record is None:
                return None

            key = name_key(record.name)
            if self._names.get(key) is handle:
                self._names.pop(key, None)

            if record.room is not None:
                self.room_manager.remove_member(record.room, handle)

            total = len(self._records)

        self.log.info(
            "Unregistered name=%r room=%s conn=%s online_s=%.1f clients=%s",
            record.name,
            record.room,
            handle.conn_id,
            record.online_seconds(),
            total,
        )
        return replace(record)

    def is_name_taken(self, candidate: str) -> bool:
        with self._state_lock:
            return name_key(candidate) in self._names

    # Room moves

    def join_room(self, handle: Connection, room: Any) -> RoomChange:
        """
        Move ``handle`` into ``room``.

        The previous room (if any) is reported back so the caller can notify
        it of the departure.
        """
        target = self.room_manager.resolve_room(room) if isinstance(room, str) else None
        with self._state_lock:
            record = self._records.get(handle)
            if record is None:
                return RoomChange(error=ERR_NOT_REGISTERED)
            if target is None:
                return RoomChange(previous=record.room, current=record.room, error=ERR_INVALID_ROOM)
            if record.room == target:
                return RoomChange(previous=target, current=target, error=ERR_ALREADY_IN_ROOM)
            return self._move_locked(record, target)

    def leave_room(self, handle: Connection) -> RoomChange:
        """
        Leave the current room: to the lobby, or back to the default room
        when configured with ``leave_to = "default"``.
        """
        with self._state_lock:
            record = self._records.get(handle)
            if record is None:
                return RoomChange(error=ERR_NOT_REGISTERED)
            if record.room is None:
                return RoomChange(error=ERR_NOT_IN_ROOM)

            if self.config.leave_to == LEAVE_TO_DEFAULT:
                default_room = self.room_manager.default_room
                if record.room == default_room:
                    return RoomChange(
                        previous=record.room, current=record.room, error=ERR_ALREADY_IN_ROOM
                    )
                return self._move_locked(record, default_room)

            return self._move_locked(record, None)

    def _move_locked(self, record: ConnectionRecord, target: str | None) -> RoomChange:
        previous = record.room
        if previous is not None:
            self.room_manager.remove_member(previous, record.handle)
        if target is not None:
            self.room_manager.add_member(target, record.handle)
        record.room = target
        return RoomChange(previous=previous, current=target)

    # Snapshots

    def get_record(self, handle: Connection) -> ConnectionRecord | None:
        with self._state_lock:
            record = self._records.get(handle)
            return replace(record) if record is not None else None

    def room_members(self, room: str | None) -> list[str]:
        """Names of the members of ``room``, sorted case-insensitively."""
        if room is None:
            return []
        with self._state_lock:
            names = [
                self._records[h].name
                for h in self.room_manager.get_room_members(room)
                if h in self._records
            ]
        return sorted(names, key=str.casefold)

    def room_catalog(self) -> list[tuple[str, int]]:
        with self._state_lock:
            return self.room_manager.catalog()

    def recipients(self, room: str, exclude: Connection | None = None) -> list[Connection]:
        """Copy of the member handles of ``room``, minus ``exclude``."""
        with self._state_lock:
            return [h for h in self.room_manager.get_room_members(room) if h is not exclude]

    def all_connections(self, exclude: Connection | None = None) -> list[Connection]:
        with self._state_lock:
            return [h for h in self._records if h is not exclude]

    def __len__(self) -> int:
        with self._state_lock:
            return len(self._records)

    def clear_all(self) -> list[Connection]:
        """
        Drop every record and membership and return the handles for teardown.

        Sessions still running afterwards see their handle as unregistered,
        so no departure notices are sent for them.
        """
        with self._state_lock:
            handles = list(self._records.keys())
            self._records.clear()
            self._names.clear()
            self.room_manager.clear_all()
        return handles

    def get_stats(self) -> dict[str, Any]:
        with self._state_lock:
            room_stats = self.room_manager.get_stats()
            return {
                "clients": len(self._records),
                "in_lobby": sum(1 for r in self._records.values() if r.room is None),
                **room_stats,
            }

