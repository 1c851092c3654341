"""Slash command handling for roomchatd sessions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import (
    COMMAND_FAILED,
    COMMAND_PREFIX,
    ERR_ALREADY_IN_ROOM,
    ERR_INVALID_ROOM,
    ERR_NOT_IN_ROOM,
    HELP_TEXT,
    INVALID_ROOM,
    NOT_IN_ROOM,
    NOTICE_JOINED,
    NOTICE_LEFT,
    ROOM_CATALOG_HEADER,
    UNKNOWN_COMMAND,
)

if TYPE_CHECKING:
    from .broadcast import Broadcaster
    from .connection import Connection
    from .registry import Registry
    from .stats import StatsManager


def format_room_catalog(catalog: list[tuple[str, int]]) -> str:
    if not catalog:
        return "No active rooms"
    lines = [ROOM_CATALOG_HEADER]
    for room, count in catalog:
        noun = "user" if count == 1 else "users"
        lines.append(f"  - {room} ({count} {noun})")
    return "\n".join(lines)


class CommandHandler:
    """Parses ``/``-prefixed lines and runs the fixed command set."""

    def __init__(
        self,
        registry: Registry,
        broadcaster: Broadcaster,
        stats: StatsManager | None = None,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.stats = stats
        self.log = logging.getLogger("roomchatd.commands")

        self._handlers = {
            "/rooms": self._cmd_rooms,
            "/join": self._cmd_join,
            "/leave": self._cmd_leave,
            "/users": self._cmd_users,
            "/help": self._cmd_help,
        }

    def handle(self, conn: Connection, text: str) -> bool:
        """Handle a command line from ``conn``.

        Returns True if the command was recognized. Failures never escape:
        they become a notice to the caller.
        """
        cmdline = text.strip()
        if not cmdline.startswith(COMMAND_PREFIX):
            return False

        parts = cmdline.split()
        cmd = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(cmd)
        if handler is None:
            self._inc("unknown_commands")
            self.broadcaster.notice(conn, UNKNOWN_COMMAND.format(cmd=parts[0]))
            return False

        self._inc("commands")
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug("Command conn=%s cmd=%s args=%r", conn.conn_id, cmd, args)

        try:
            handler(conn, args)
        except Exception:
            self.log.exception("Command %s failed conn=%s", cmd, conn.conn_id)
            self.broadcaster.notice(conn, COMMAND_FAILED)
        return True

    def _inc(self, key: str) -> None:
        if self.stats is not None:
            self.stats.inc(key)

    def _usage(self, conn: Connection, usage: str) -> None:
        self.broadcaster.notice(conn, f"Usage: {usage}")

    def _cmd_rooms(self, conn: Connection, args: list[str]) -> None:
        if args:
            self._usage(conn, "/rooms")
            return
        self.broadcaster.notice(conn, format_room_catalog(self.registry.room_catalog()))

    def _cmd_join(self, conn: Connection, args: list[str]) -> None:
        if len(args) != 1:
            self._usage(conn, "/join <room>")
            return

        change = self.registry.join_room(conn, args[0])
        if change.error == ERR_INVALID_ROOM:
            self.broadcaster.notice(conn, INVALID_ROOM)
            return
        if change.error == ERR_ALREADY_IN_ROOM:
            self.broadcaster.notice(conn, f"You are already in room '{change.current}'.")
            return
        if not change.ok:
            return

        record = self.registry.get_record(conn)
        name = record.name if record is not None else "?"

        if change.previous is not None:
            self._inc("parts")
            self.broadcaster.broadcast_notice(
                change.previous, NOTICE_LEFT.format(name=name), exclude=conn
            )
        self._inc("joins")
        self.broadcaster.broadcast_notice(
            change.current, NOTICE_JOINED.format(name=name), exclude=conn
        )
        self.broadcaster.notice(conn, f"You joined room '{change.current}'.")
        self.log.info(
            "JOIN name=%r room=%s previous=%s conn=%s",
            name,
            change.current,
            change.previous,
            conn.conn_id,
        )

    def _cmd_leave(self, conn: Connection, args: list[str]) -> None:
        if args:
            self._usage(conn, "/leave")
            return

        change = self.registry.leave_room(conn)
        if change.error == ERR_NOT_IN_ROOM:
            self.broadcaster.notice(conn, "You are not in any room.")
            return
        if change.error == ERR_ALREADY_IN_ROOM:
            self.broadcaster.notice(
                conn, f"You are already in the default room '{change.current}'."
            )
            return
        if not change.ok:
            return

        record = self.registry.get_record(conn)
        name = record.name if record is not None else "?"

        self._inc("parts")
        self.broadcaster.broadcast_notice(
            change.previous, NOTICE_LEFT.format(name=name), exclude=conn
        )
        if change.current is not None:
            self._inc("joins")
            self.broadcaster.broadcast_notice(
                change.current, NOTICE_JOINED.format(name=name), exclude=conn
            )
            self.broadcaster.notice(
                conn, f"You left '{change.previous}' and returned to '{change.current}'."
            )
        else:
            self.broadcaster.notice(conn, f"You left '{change.previous}'.")
        self.log.info(
            "LEAVE name=%r room=%s now=%s conn=%s",
            name,
            change.previous,
            change.current,
            conn.conn_id,
        )

    def _cmd_users(self, conn: Connection, args: list[str]) -> None:
        if args:
            self._usage(conn, "/users")
            return

        record = self.registry.get_record(conn)
        if record is None or record.room is None:
            self.broadcaster.notice(conn, NOT_IN_ROOM)
            return

        members = self.registry.room_members(record.room)
        lines = [f"Users in room '{record.room}':"]
        lines.extend(f"  - {m}" for m in members)
        self.broadcaster.notice(conn, "\n".join(lines))

    def _cmd_help(self, conn: Connection, args: list[str]) -> None:
        if args:
            self._usage(conn, "/help")
            return
        self.broadcaster.notice(conn, HELP_TEXT)
