"""Line formatting and fan-out delivery for the roomchatd relay."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from .constants import CHAT_TEMPLATE, SERVER_TAG

if TYPE_CHECKING:
    from .connection import Connection
    from .registry import Registry
    from .stats import StatsManager


def format_chat_line(room: str, sender: str, message: str) -> str:
    return CHAT_TEMPLATE.format(room=room, sender=sender, message=message)


def format_notice(text: str) -> str:
    """Prefix every line of ``text`` with the server tag."""
    lines = text.splitlines() or [text]
    return "\n".join(f"{SERVER_TAG} {line}" if line else SERVER_TAG for line in lines)


class Broadcaster:
    """
    Delivers formatted lines to single connections, rooms, or everyone.

    Handles:
    - Direct replies and [SERVER] notices to one connection
    - Room fan-out with an optional excluded sender
    - Relay-wide fan-out for global announcements

    Recipients are copied out of the Registry under its lock; the writes
    happen afterwards. A failed write is logged and counted, and the
    recipient's own session notices the dead transport and unregisters.
    """

    def __init__(self, registry: Registry, stats: StatsManager | None = None) -> None:
        self.registry = registry
        self.stats = stats
        self.log = logging.getLogger("roomchatd.broadcast")

    def send(self, conn: Connection, text: str) -> bool:
        return conn.send_line(text)

    def notice(self, conn: Connection, text: str) -> bool:
        return conn.send_line(format_notice(text))

    def broadcast(
        self, room: str | None, line: str, exclude: Connection | None = None
    ) -> int:
        """Send ``line`` to every member of ``room`` except ``exclude``.

        Returns the number of successful deliveries. A room that does not
        exist (or was pruned) has no recipients.
        """
        if room is None:
            return 0
        recipients = self.registry.recipients(room, exclude=exclude)
        delivered = self._deliver(recipients, line)
        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "Broadcast room=%s recipients=%s delivered=%s",
                room,
                len(recipients),
                delivered,
            )
        return delivered

    def broadcast_notice(
        self, room: str | None, text: str, exclude: Connection | None = None
    ) -> int:
        return self.broadcast(room, format_notice(text), exclude=exclude)

    def broadcast_to_all(self, line: str, exclude: Connection | None = None) -> int:
        """Send ``line`` to every registered connection except ``exclude``."""
        recipients = self.registry.all_connections(exclude=exclude)
        return self._deliver(recipients, line)

    def _deliver(self, recipients: Iterable[Connection], line: str) -> int:
        delivered = 0
        failed = 0
        for conn in recipients:
            try:
                ok = conn.send_line(line)
            except Exception:
                # One bad recipient must not stop delivery to the rest.
                self.log.debug("Delivery raised conn=%s", conn.conn_id, exc_info=True)
                ok = False
            if ok:
                delivered += 1
            else:
                failed += 1

        if self.stats is not None:
            if delivered:
                self.stats.inc("deliveries", delivered)
            if failed:
                self.stats.inc("send_failures", failed)
        return delivered
