from __future__ import annotations

import socket
import time

import pytest

from roomchatd.config import RelayRuntimeConfig
from roomchatd.connection import Connection
from roomchatd.service import RelayService


class Peer:
    """Client end of a test transport, with its own line buffer."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._buf = b""

    @classmethod
    def connect(cls, address) -> "Peer":
        return cls(socket.create_connection(address, timeout=2.0))

    def send(self, line: str) -> None:
        self.sock.sendall((line + "\n").encode("utf-8"))

    def _fill(self, timeout: float) -> bool:
        self.sock.settimeout(max(timeout, 0.001))
        try:
            data = self.sock.recv(4096)
        except TimeoutError:
            return False
        if not data:
            raise EOFError("peer closed")
        self._buf += data
        return True

    def readline(self, timeout: float = 2.0) -> str:
        deadline = time.monotonic() + timeout
        while b"\n" not in self._buf:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not self._fill(remaining):
                raise AssertionError(f"timed out waiting for a line; buffered={self._buf!r}")
        line, self._buf = self._buf.split(b"\n", 1)
        return line.decode("utf-8")

    def read_until(self, needle: str, timeout: float = 2.0) -> list[str]:
        """Read lines until one contains ``needle``; return every line read."""
        deadline = time.monotonic() + timeout
        lines: list[str] = []
        while True:
            line = self.readline(max(deadline - time.monotonic(), 0.001))
            lines.append(line)
            if needle in line:
                return lines

    def pending(self, wait: float = 0.2) -> list[str]:
        """Complete lines that arrive within ``wait`` seconds."""
        deadline = time.monotonic() + wait
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                if not self._fill(remaining):
                    break
            except EOFError:
                break
        lines = []
        while b"\n" in self._buf:
            line, self._buf = self._buf.split(b"\n", 1)
            lines.append(line.decode("utf-8"))
        return lines

    def is_closed(self, timeout: float = 2.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                if not self._fill(deadline - time.monotonic()):
                    return False
            except EOFError:
                return True
            except ConnectionResetError:
                return True
        return False

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass


def wait_for(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())


@pytest.fixture
def conn_factory():
    """Make (Connection, Peer) pairs backed by socketpair()."""
    created: list[tuple[Connection, Peer]] = []

    def make(max_line_bytes: int = 4096) -> tuple[Connection, Peer]:
        server_sock, client_sock = socket.socketpair()
        conn = Connection(server_sock, "socketpair", max_line_bytes=max_line_bytes)
        peer = Peer(client_sock)
        created.append((conn, peer))
        return conn, peer

    yield make

    for conn, peer in created:
        conn.close()
        peer.close()


class RelayHarness:
    """Starts RelayService instances on an ephemeral localhost port."""

    def __init__(self) -> None:
        self.services: list[RelayService] = []
        self.peers: list[Peer] = []

    def start(self, **overrides) -> RelayService:
        cfg = RelayRuntimeConfig(host="127.0.0.1", port=0, **overrides)
        svc = RelayService(cfg)
        svc.start()
        self.services.append(svc)
        return svc

    def connect(self, svc: RelayService) -> Peer:
        peer = Peer.connect(svc.address)
        self.peers.append(peer)
        return peer

    def close(self) -> None:
        for peer in self.peers:
            peer.close()
        for svc in self.services:
            svc.stop()


@pytest.fixture
def relay():
    harness = RelayHarness()
    yield harness
    harness.close()


def assert_registry_consistent(registry) -> None:
    """Records, the name index and room member sets must describe the same state."""
    from roomchatd.util import name_key

    with registry._state_lock:
        seen = {}
        for room, members in registry.room_manager.rooms.items():
            for h in members:
                assert h not in seen, f"{h!r} in rooms {seen[h]} and {room}"
                seen[h] = room
        for h, record in registry._records.items():
            assert seen.get(h) == record.room, f"{h!r} room mismatch"
        assert set(seen) <= set(registry._records), "room member without record"
        assert len(registry._names) == len(registry._records), "name index out of step"
        for key, h in registry._names.items():
            assert name_key(registry._records[h].name) == key, "name index mismatch"
