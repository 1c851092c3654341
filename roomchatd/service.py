from __future__ import annotations

import logging
import signal
import socket
import threading
import time

from .broadcast import Broadcaster
from .commands import CommandHandler
from .config import RelayRuntimeConfig
from .connection import Connection
from .registry import Registry
from .session import Session
from .stats import StatsManager


class RelayService:
    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("roomchatd.relay")

        # Shared membership state lives in the Registry behind its own lock;
        # everything else here is per-service bookkeeping.
        self.registry = Registry(config)
        self.stats_manager = StatsManager(self.registry)
        self.broadcaster = Broadcaster(self.registry, self.stats_manager)
        self.command_handler = CommandHandler(
            self.registry, self.broadcaster, self.stats_manager
        )

        self._shutdown = threading.Event()
        self._listener: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._stats_thread: threading.Thread | None = None

        # Every accepted connection, registered or not, so stop() can close them.
        self._live_lock = threading.Lock()
        self._live: set[Connection] = set()

    @property
    def address(self) -> tuple[str, int] | None:
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return host, port

    def start(self) -> None:
        """Bind the listener and start accepting. Raises OSError if binding fails."""
        if self.stats_manager.started_monotonic is None:
            self.stats_manager.set_start_time()

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            listener.bind((self.config.host, int(self.config.port)))
            listener.listen(socket.SOMAXCONN)
        except OSError:
            listener.close()
            raise
        self._listener = listener

        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="roomchatd-accept", daemon=True
        )
        self._accept_thread.start()

        host, port = self.address or ("-", 0)
        self.log.info("Relay listening host=%s port=%s", host, port)
        self.log.info(
            "Policy room_catalog=%s rooms=%s default_room=%s room_selection=%s "
            "leave_to=%s announce_global=%s",
            self.config.room_catalog,
            ",".join(name for name, _ in self.registry.room_catalog()) or "-",
            self.registry.room_manager.default_room,
            self.config.room_selection,
            self.config.leave_to,
            self.config.announce_global,
        )

        if self.config.stats_interval_s and self.config.stats_interval_s > 0:
            self._stats_thread = threading.Thread(
                target=self._stats_loop, name="roomchatd-stats", daemon=True
            )
            self._stats_thread.start()

    def _accept_loop(self) -> None:
        listener = self._listener
        if listener is None:
            return

        while not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except OSError as e:
                if self._shutdown.is_set():
                    break
                self.log.warning("Accept failed err=%s", e)
                time.sleep(0.1)
                continue

            conn = Connection(sock, addr, max_line_bytes=self.config.max_line_bytes)
            with self._live_lock:
                if self._shutdown.is_set():
                    conn.close()
                    break
                self._live.add(conn)

            self.stats_manager.inc("connections_accepted")
            self.log.info("Connection accepted conn=%s peer=%s", conn.conn_id, conn.peer)

            t = threading.Thread(
                target=self._serve,
                args=(conn,),
                name=f"roomchatd-conn-{conn.conn_id}",
                daemon=True,
            )
            t.start()

    def _serve(self, conn: Connection) -> None:
        session = Session(
            conn,
            config=self.config,
            registry=self.registry,
            broadcaster=self.broadcaster,
            commands=self.command_handler,
            stats=self.stats_manager,
        )
        try:
            session.run()
        except Exception:
            self.log.exception("Session crashed conn=%s", conn.conn_id)
            self.registry.unregister(conn)
            conn.close()
        finally:
            with self._live_lock:
                self._live.discard(conn)

    def _stats_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = float(self.config.stats_interval_s)
            if self._shutdown.wait(interval):
                break
            self.log.info("%s", self.stats_manager.format_stats())

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        listener = self._listener
        if listener is not None:
            # shutdown() wakes the accept() blocked on the accept thread.
            try:
                listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                listener.close()
            except OSError:
                pass

        registered = self.registry.clear_all()
        with self._live_lock:
            conns = set(self._live)
            self._live.clear()
        # A registered session may already have left _live on its way out.
        conns.update(registered)

        for conn in conns:
            conn.close()

        self.log.info(
            "Relay stopped connections_closed=%s registered=%s", len(conns), len(registered)
        )
        self.log.info("%s", self.stats_manager.format_stats())
