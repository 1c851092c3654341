"""Interactive terminal client for roomchatd.

Speaks the relay's line protocol: answers the name prompt, picks a room,
then sends one line per chat message or command. ``/quit`` and ``/exit``
close the connection locally and are never sent.
"""

from __future__ import annotations

import argparse
import socket
import sys
import threading

from .constants import LOCAL_QUIT_COMMANDS, NAME_PROMPT, WELCOME_MARKER

# Erase the current terminal line before printing a server line over it.
_CLEAR_LINE = "\r\x1b[K"


def is_local_quit(line: str) -> bool:
    return line.strip().lower() in LOCAL_QUIT_COMMANDS


class ClientState:
    """Tracks setup vs. chat mode and the prompt shown to the user.

    The first user line, and the first line after each further name prompt,
    is taken as the username. The server repeats the prompt text in every
    name rejection.
    """

    def __init__(self, name: str | None = None) -> None:
        self.name = name
        self.chatting = False
        self._prompts = 0
        self._answers = 0
        self._lock = threading.Lock()

    def on_server_line(self, line: str) -> None:
        with self._lock:
            if WELCOME_MARKER in line:
                self.chatting = True
            elif NAME_PROMPT in line:
                self._prompts += 1

    def on_user_line(self, line: str) -> None:
        with self._lock:
            if self.chatting:
                return
            if self._answers < max(self._prompts, 1):
                self.name = line.strip()
                self._answers += 1

    @property
    def prompt(self) -> str:
        with self._lock:
            if self.chatting and self.name:
                return f"({self.name}) You > "
            return ""


class ChatClient:
    def __init__(self, host: str, port: int, *, name: str | None = None, out=None) -> None:
        self.host = host
        self.port = int(port)
        self.state = ClientState()
        self.initial_name = name
        self.out = out if out is not None else sys.stdout
        self.sock: socket.socket | None = None
        self._closed = threading.Event()
        self._out_lock = threading.Lock()

    def connect(self) -> None:
        self.sock = socket.create_connection((self.host, self.port))

    def _write_out(self, text: str) -> None:
        with self._out_lock:
            self.out.write(text)
            self.out.flush()

    def _reader_loop(self) -> None:
        sock = self.sock
        if sock is None:
            return
        try:
            with sock.makefile("r", encoding="utf-8", errors="replace", newline="\n") as f:
                for raw in f:
                    line = raw.rstrip("\r\n")
                    self.state.on_server_line(line)
                    self._write_out(f"{_CLEAR_LINE}{line}\n{self.state.prompt}")
        except (OSError, ValueError):
            pass

        if not self._closed.is_set():
            self._write_out(f"{_CLEAR_LINE}Disconnected from server. Press Enter to exit.\n")
        self.close()

    def send(self, line: str) -> bool:
        if self.sock is None or self._closed.is_set():
            return False
        try:
            self.sock.sendall((line.rstrip("\r\n") + "\n").encode("utf-8"))
        except OSError:
            self.close()
            return False
        return True

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        sock = self.sock
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            sock.close()
        except OSError:
            pass

    def run(self, stdin=None) -> None:
        stdin = stdin if stdin is not None else sys.stdin
        if self.sock is None:
            self.connect()

        reader = threading.Thread(target=self._reader_loop, name="roomchat-reader", daemon=True)
        reader.start()

        if self.initial_name:
            self.state.on_user_line(self.initial_name)
            self.send(self.initial_name)

        for raw in stdin:
            if self._closed.is_set():
                break
            line = raw.rstrip("\r\n")
            if is_local_quit(line):
                break
            self.state.on_user_line(line)
            if not self.send(line):
                break

        self.close()
        reader.join(timeout=1.0)


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="roomchat", description="Connect to a roomchatd relay")
    p.add_argument("--host", default="localhost", help="Relay host (default: localhost)")
    p.add_argument("--port", type=int, default=9090, help="Relay port (default: 9090)")
    p.add_argument("--name", default=None, help="Username to send on connect")
    args = p.parse_args(sys.argv[1:] if argv is None else argv)

    client = ChatClient(args.host, args.port, name=args.name)
    try:
        client.connect()
    except OSError as e:
        print(f"Cannot connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        raise SystemExit(1)

    print(f"Connected to {args.host}:{args.port}. Type /quit to exit.")
    try:
        client.run()
    except KeyboardInterrupt:
        client.close()


if __name__ == "__main__":
    main()
