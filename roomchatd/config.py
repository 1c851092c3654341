from __future__ import annotations

import tomllib
from dataclasses import asdict, dataclass, replace
from typing import Any

from .constants import (
    CATALOG_DYNAMIC,
    CATALOG_FIXED,
    DEFAULT_ROOMS,
    LEAVE_TO_DEFAULT,
    LEAVE_TO_LOBBY,
)


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = 9090
    room_catalog: str = CATALOG_FIXED
    rooms: tuple[str, ...] = DEFAULT_ROOMS
    default_room: str | None = "general"
    room_selection: bool = True
    leave_to: str = LEAVE_TO_LOBBY
    announce_global: bool = False
    name_max_chars: int = 32
    max_room_name_len: int = 64
    max_line_bytes: int = 4096
    stats_interval_s: float = 0.0
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None


def load_toml(path: str) -> dict:
    with open(path, "rb") as f:
        return tomllib.load(f)


def apply_config_data(cfg: RelayRuntimeConfig, data: Any) -> RelayRuntimeConfig:
    """Merge a parsed TOML document into ``cfg``.

    Keys may live at the top level or under ``[relay]``; the ``[logging]``
    table maps onto the ``log_*`` fields. Unknown keys are ignored.
    """
    if not isinstance(data, dict):
        return cfg

    relay = data.get("relay")
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging")
    if isinstance(log_table, dict):
        mapped: dict[str, object] = {}
        for key in ("level", "console", "file", "format", "datefmt"):
            if key in log_table:
                mapped[f"log_{key}"] = log_table.get(key)
        data = {**data, **mapped}

    allowed = set(asdict(cfg).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    if "rooms" in updates and isinstance(updates["rooms"], list):
        updates["rooms"] = tuple(str(x) for x in updates["rooms"])

    for opt_key in ("default_room", "log_file", "log_datefmt"):
        if opt_key in updates and updates[opt_key] == "":
            updates[opt_key] = None

    for int_key in ("port", "name_max_chars", "max_room_name_len", "max_line_bytes"):
        if int_key in updates:
            updates[int_key] = int(updates[int_key])
    if "stats_interval_s" in updates:
        updates["stats_interval_s"] = float(updates["stats_interval_s"])

    return replace(cfg, **updates) if updates else cfg


def validate_config(cfg: RelayRuntimeConfig) -> None:
    """Raise ValueError if the room catalog settings do not fit together."""
    if cfg.room_catalog not in (CATALOG_FIXED, CATALOG_DYNAMIC):
        raise ValueError(
            f"room_catalog must be {CATALOG_FIXED!r} or {CATALOG_DYNAMIC!r}, "
            f"got {cfg.room_catalog!r}"
        )
    if cfg.leave_to not in (LEAVE_TO_LOBBY, LEAVE_TO_DEFAULT):
        raise ValueError(
            f"leave_to must be {LEAVE_TO_LOBBY!r} or {LEAVE_TO_DEFAULT!r}, "
            f"got {cfg.leave_to!r}"
        )
    if not (0 <= int(cfg.port) < 65536):
        raise ValueError(f"port out of range: {cfg.port}")
    if int(cfg.max_line_bytes) <= 0:
        raise ValueError("max_line_bytes must be positive")

    if cfg.room_catalog == CATALOG_FIXED:
        names = [str(r).strip().lower() for r in cfg.rooms if str(r).strip()]
        if not names:
            raise ValueError("fixed room catalog must list at least one room")
        if len(set(names)) != len(names):
            raise ValueError("fixed room catalog contains duplicate rooms")
        if cfg.default_room and cfg.default_room.strip().lower() not in names:
            raise ValueError(
                f"default_room {cfg.default_room!r} is not in the room catalog"
            )

    if not cfg.default_room:
        if not cfg.room_selection:
            raise ValueError("room_selection = false requires a default_room")
        if cfg.leave_to == LEAVE_TO_DEFAULT:
            raise ValueError("leave_to = 'default' requires a default_room")
