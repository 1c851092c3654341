"""Statistics tracking and reporting for the roomchatd relay."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .registry import Registry


class StatsManager:
    """
    Manages relay statistics collection and reporting.

    Tracks counters for:
    - Connections accepted and names registered/rejected
    - Room joins/parts
    - Chat lines relayed and per-recipient deliveries
    - Send failures and protocol violations
    - Commands handled
    """

    def __init__(self, registry: Registry | None = None) -> None:
        self.registry = registry
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connections_accepted": 0,
            "registrations": 0,
            "names_rejected": 0,
            "joins": 0,
            "parts": 0,
            "msgs_relayed": 0,
            "deliveries": 0,
            "send_failures": 0,
            "commands": 0,
            "unknown_commands": 0,
            "protocol_violations": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"roomchatd {__version__} stats")
        if self.started_wall_time is not None:
            started = time.strftime("%Y-%m-%dT%H:%M:%S", time.localtime(self.started_wall_time))
            lines.append(f"started={started} uptime_s={uptime_s:.1f}")
        else:
            lines.append(f"uptime_s={uptime_s:.1f}")

        if self.registry is not None:
            reg = self.registry.get_stats()
            lines.append(f"clients={reg['clients']} in_lobby={reg['in_lobby']}")
            lines.append(
                f"rooms={reg['rooms_total']} occupied={reg['rooms_occupied']} "
                f"memberships={reg['memberships']}"
            )
            if reg["top_rooms"]:
                lines.append(
                    "top_rooms=" + ", ".join(f"{r}:{n}" for r, n in reg["top_rooms"])
                )

        lines.append(
            "sessions: accepted={} registered={} names_rejected={} protocol_violations={}".format(
                c.get("connections_accepted", 0),
                c.get("registrations", 0),
                c.get("names_rejected", 0),
                c.get("protocol_violations", 0),
            )
        )
        lines.append(
            "events: joins={} parts={} msgs_relayed={} deliveries={} send_failures={}".format(
                c.get("joins", 0),
                c.get("parts", 0),
                c.get("msgs_relayed", 0),
                c.get("deliveries", 0),
                c.get("send_failures", 0),
            )
        )
        lines.append(
            "commands: handled={} unknown={}".format(
                c.get("commands", 0),
                c.get("unknown_commands", 0),
            )
        )

        return "\n".join(lines)
