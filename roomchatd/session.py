from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .broadcast import format_chat_line, format_notice
from .commands import format_room_catalog
from .connection import ProtocolViolation
from .constants import (
    COMMAND_PREFIX,
    HELP_HINT,
    NAME_EMPTY,
    NAME_INVALID,
    NAME_PROMPT,
    NAME_TAKEN,
    NOT_IN_ROOM,
    NOTICE_CONNECTED,
    NOTICE_DISCONNECTED,
    NOTICE_JOINED,
    REJECT_EMPTY,
    REJECT_TAKEN,
    ROOM_CHOOSE,
    ROOM_SELECT_INVALID,
    WELCOME,
    WELCOME_LOBBY,
)

if TYPE_CHECKING:
    from .broadcast import Broadcaster
    from .commands import CommandHandler
    from .config import RelayRuntimeConfig
    from .connection import Connection
    from .registry import Registry
    from .stats import StatsManager

_NAME_REJECTIONS = {
    REJECT_EMPTY: NAME_EMPTY,
    REJECT_TAKEN: NAME_TAKEN,
}


class Session:
    """
    Drives one connection through its lifecycle:

    name negotiation -> room selection (optional) -> message loop -> teardown

    Runs on the connection's own thread. Cross-connection effects go through
    the Registry and the Broadcaster only.
    """

    def __init__(
        self,
        conn: Connection,
        *,
        config: RelayRuntimeConfig,
        registry: Registry,
        broadcaster: Broadcaster,
        commands: CommandHandler,
        stats: StatsManager | None = None,
    ) -> None:
        self.conn = conn
        self.config = config
        self.registry = registry
        self.broadcaster = broadcaster
        self.commands = commands
        self.stats = stats
        self.log = logging.getLogger("roomchatd.session")
        self.name: str | None = None

    def run(self) -> None:
        try:
            if not self._negotiate_name():
                return
            if self.config.room_selection:
                if not self._select_room():
                    return
            else:
                self._welcome_default_room()
            self._message_loop()
        except ProtocolViolation as e:
            self._inc("protocol_violations")
            self.log.warning(
                "Protocol violation conn=%s peer=%s name=%r err=%s",
                self.conn.conn_id,
                self.conn.peer,
                self.name,
                e,
            )
        finally:
            self._teardown()

    def _inc(self, key: str) -> None:
        if self.stats is not None:
            self.stats.inc(key)

    # Name negotiation

    def _negotiate_name(self) -> bool:
        """Returns False if the connection ended before a name was registered."""
        self.broadcaster.send(self.conn, NAME_PROMPT)
        while True:
            line = self.conn.read_line()
            if line is None:
                self.log.debug(
                    "Disconnected during name negotiation conn=%s", self.conn.conn_id
                )
                return False

            name, rejection = self.registry.register(self.conn, line)
            if name is not None:
                break

            self._inc("names_rejected")
            self.log.debug(
                "Name rejected conn=%s reason=%s candidate=%r",
                self.conn.conn_id,
                rejection,
                line.strip(),
            )
            self.broadcaster.notice(self.conn, _NAME_REJECTIONS.get(rejection, NAME_INVALID))

        self.name = name
        self._inc("registrations")
        self.log.info(
            "Connected name=%r conn=%s peer=%s", name, self.conn.conn_id, self.conn.peer
        )
        if self.config.announce_global:
            self.broadcaster.broadcast_to_all(
                format_notice(NOTICE_CONNECTED.format(name=name)), exclude=self.conn
            )
        return True

    # Room selection

    def _select_room(self) -> bool:
        """Returns False if the connection ended before a room was chosen."""
        while True:
            catalog = format_room_catalog(self.registry.room_catalog())
            self.broadcaster.notice(self.conn, f"{catalog}\n{ROOM_CHOOSE}")

            line = self.conn.read_line()
            if line is None:
                return False

            change = self.registry.join_room(self.conn, line.strip())
            if change.ok:
                break
            self.broadcaster.notice(self.conn, ROOM_SELECT_INVALID)

        self._inc("joins")
        self.broadcaster.notice(
            self.conn, f"{WELCOME.format(name=self.name, room=change.current)}\n{HELP_HINT}"
        )
        self.broadcaster.broadcast_notice(
            change.current, NOTICE_JOINED.format(name=self.name), exclude=self.conn
        )
        self.log.info(
            "JOIN name=%r room=%s conn=%s", self.name, change.current, self.conn.conn_id
        )
        return True

    def _welcome_default_room(self) -> None:
        record = self.registry.get_record(self.conn)
        room = record.room if record is not None else None
        if room is None:
            self.broadcaster.notice(
                self.conn, f"{WELCOME_LOBBY.format(name=self.name)}\n{HELP_HINT}"
            )
            return

        self._inc("joins")
        self.broadcaster.notice(
            self.conn, f"{WELCOME.format(name=self.name, room=room)}\n{HELP_HINT}"
        )
        self.broadcaster.broadcast_notice(
            room, NOTICE_JOINED.format(name=self.name), exclude=self.conn
        )

    # Message loop

    def _message_loop(self) -> None:
        while True:
            line = self.conn.read_line()
            if line is None:
                return

            text = line.strip()
            if not text:
                continue

            if text.startswith(COMMAND_PREFIX):
                self.commands.handle(self.conn, text)
                continue

            record = self.registry.get_record(self.conn)
            if record is None:
                # Removed by relay shutdown.
                return
            if record.room is None:
                self.broadcaster.notice(self.conn, NOT_IN_ROOM)
                continue

            self._inc("msgs_relayed")
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug(
                    "MSG name=%r room=%s chars=%s", record.name, record.room, len(text)
                )
            self.broadcaster.broadcast(
                record.room,
                format_chat_line(record.room, record.name, text),
                exclude=self.conn,
            )

    # Teardown

    def _teardown(self) -> None:
        record = self.registry.unregister(self.conn)
        if record is not None:
            notice = NOTICE_DISCONNECTED.format(name=record.name)
            if record.room is not None:
                self._inc("parts")
            if self.config.announce_global:
                self.broadcaster.broadcast_to_all(format_notice(notice), exclude=self.conn)
            elif record.room is not None:
                self.broadcaster.broadcast_notice(record.room, notice, exclude=self.conn)
            self.log.info(
                "Disconnected name=%r room=%s conn=%s",
                record.name,
                record.room,
                self.conn.conn_id,
            )
        self.conn.close()
