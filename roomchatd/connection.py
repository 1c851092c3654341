from __future__ import annotations

import itertools
import logging
import socket
import threading
from typing import Any

_conn_ids = itertools.count(1)


class ProtocolViolation(ValueError):
    """Raised when a peer sends input the line protocol cannot accept."""


class Connection:
    """
    One accepted stream transport.

    Instances are used as Registry keys and compare by identity only. Reads
    happen on the owning session thread; writes may come from any thread and
    are serialized per connection so concurrent broadcasts never interleave
    bytes within a line.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Any = None,
        *,
        max_line_bytes: int = 4096,
    ) -> None:
        self.sock = sock
        self.address = address
        self.conn_id = next(_conn_ids)
        self.max_line_bytes = int(max_line_bytes)
        self.log = logging.getLogger("roomchatd.connection")
        self._reader = sock.makefile("rb")
        self._write_lock = threading.Lock()
        self._closed = threading.Event()

    def __repr__(self) -> str:
        return f"<Connection id={self.conn_id} peer={self.peer}>"

    @property
    def peer(self) -> str:
        addr = self.address
        if isinstance(addr, tuple) and len(addr) >= 2:
            return f"{addr[0]}:{addr[1]}"
        return str(addr) if addr else "-"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def read_line(self) -> str | None:
        """Read one line without its terminator; None on EOF or read error."""
        if self.closed:
            return None
        try:
            # Room for a full line plus a CRLF terminator.
            raw = self._reader.readline(self.max_line_bytes + 2)
        except (OSError, ValueError) as e:
            # ValueError: the reader was closed under us by stop().
            self.log.debug("Read failed conn=%s err=%s", self.conn_id, e)
            return None

        if not raw:
            return None

        if raw.endswith(b"\r\n"):
            raw = raw[:-2]
        elif raw.endswith(b"\n"):
            raw = raw[:-1]
        if len(raw) > self.max_line_bytes:
            raise ProtocolViolation(f"line exceeds {self.max_line_bytes} bytes")

        return raw.decode("utf-8", errors="replace")

    def send_line(self, text: str) -> bool:
        """Write ``text`` followed by a newline. Returns False if the write failed."""
        data = text if text.endswith("\n") else text + "\n"
        payload = data.encode("utf-8")
        with self._write_lock:
            if self.closed:
                return False
            try:
                self.sock.sendall(payload)
            except OSError as e:
                self.log.warning(
                    "Send failed conn=%s peer=%s bytes=%s err=%s",
                    self.conn_id,
                    self.peer,
                    len(payload),
                    e,
                )
                return False
        return True

    def close(self) -> None:
        """Close the transport. Safe to call repeatedly and from any thread."""
        if self._closed.is_set():
            return
        self._closed.set()

        # shutdown() wakes a reader blocked in readline() on another thread.
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._reader.close()
        except (OSError, ValueError):
            pass
        try:
            self.sock.close()
        except OSError:
            pass
