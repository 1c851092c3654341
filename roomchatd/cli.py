from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

import tomlkit

from .config import RelayRuntimeConfig, apply_config_data, load_toml, validate_config
from .constants import CATALOG_DYNAMIC, CATALOG_FIXED, LEAVE_TO_DEFAULT, LEAVE_TO_LOBBY
from .logging_config import configure_logging
from .paths import default_config_path, ensure_private_dir
from .service import RelayService
from .util import expand_path


def render_default_config(cfg: RelayRuntimeConfig) -> str:
    doc = tomlkit.document()
    doc.add(tomlkit.comment("roomchatd configuration (TOML)"))
    doc.add(tomlkit.comment(""))
    doc.add(tomlkit.comment("This file was created on first run. Edit it and restart roomchatd."))
    doc.add(tomlkit.nl())

    relay = tomlkit.table()
    relay.add(tomlkit.comment("Listening endpoint."))
    relay.add("host", cfg.host)
    relay.add("port", int(cfg.port))
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment('Room catalog: "fixed" (only the rooms listed below) or'))
    relay.add(tomlkit.comment('"dynamic" (any room name; rooms are created on first join).'))
    relay.add("room_catalog", cfg.room_catalog)
    relay.add("rooms", list(cfg.rooms))
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Protected room that is never pruned. Empty disables it, which"))
    relay.add(tomlkit.comment('requires room_selection = true and leave_to = "lobby".'))
    relay.add("default_room", cfg.default_room or "")
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Ask for a room after the username. When false, new users are"))
    relay.add(tomlkit.comment("placed in default_room right away."))
    relay.add("room_selection", bool(cfg.room_selection))
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment('/leave destination: "lobby" (no room) or "default" (default_room).'))
    relay.add("leave_to", cfg.leave_to)
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Announce connects/disconnects to everyone instead of only the"))
    relay.add(tomlkit.comment("room the user was in."))
    relay.add("announce_global", bool(cfg.announce_global))
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Limits. name_max_chars = 0 disables the username length limit."))
    relay.add("name_max_chars", int(cfg.name_max_chars))
    relay.add("max_room_name_len", int(cfg.max_room_name_len))
    relay.add("max_line_bytes", int(cfg.max_line_bytes))
    relay.add(tomlkit.nl())

    relay.add(tomlkit.comment("Log a stats summary every N seconds (0 disables)."))
    relay.add("stats_interval_s", float(cfg.stats_interval_s))
    doc.add("relay", relay)

    log_tbl = tomlkit.table()
    log_tbl.add("level", cfg.log_level)
    log_tbl.add("console", bool(cfg.log_console))
    log_tbl.add(tomlkit.comment("Optional file path for logs (leave empty to disable)."))
    log_tbl.add("file", cfg.log_file or "")
    log_tbl.add("format", cfg.log_format)
    log_tbl.add("datefmt", cfg.log_datefmt or "")
    doc.add("logging", log_tbl)

    return tomlkit.dumps(doc)


def _write_default_config(config_path: str) -> None:
    cfg_dir = os.path.dirname(config_path)
    if cfg_dir:
        ensure_private_dir(Path(cfg_dir))

    with open(config_path, "w", encoding="utf-8") as f:
        f.write(render_default_config(RelayRuntimeConfig()))
    try:
        os.chmod(config_path, 0o600)
    except OSError:
        pass


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="roomchatd", description="Run a multi-room chat relay")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (created on first run)",
    )
    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 9090)")

    p.add_argument(
        "--room-catalog",
        choices=(CATALOG_FIXED, CATALOG_DYNAMIC),
        default=None,
        help="Fixed room list or rooms created on first join",
    )
    p.add_argument(
        "--rooms",
        default=None,
        help="Comma-separated fixed room catalog",
    )
    p.add_argument(
        "--default-room",
        default=None,
        help="Protected default room (empty disables)",
    )
    p.add_argument(
        "--no-room-selection",
        action="store_true",
        help="Place new users in the default room instead of asking",
    )
    p.add_argument(
        "--leave-to",
        choices=(LEAVE_TO_LOBBY, LEAVE_TO_DEFAULT),
        default=None,
        help="Where /leave takes a user",
    )
    p.add_argument(
        "--announce-global",
        action="store_true",
        help="Announce connects/disconnects to every user",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    """Defaults, then the config file (if present), then command-line overrides."""
    config_path = expand_path(str(args.config)) if args.config else None
    cfg = RelayRuntimeConfig(config_path=config_path)

    if config_path and os.path.exists(config_path):
        cfg = apply_config_data(cfg, load_toml(config_path))

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))

    if args.room_catalog is not None:
        cfg = replace(cfg, room_catalog=args.room_catalog)
    if args.rooms is not None:
        rooms = tuple(r.strip() for r in str(args.rooms).split(",") if r.strip())
        cfg = replace(cfg, rooms=rooms)
    if args.default_room is not None:
        cfg = replace(cfg, default_room=str(args.default_room) or None)
    if args.no_room_selection:
        cfg = replace(cfg, room_selection=False)
    if args.leave_to is not None:
        cfg = replace(cfg, leave_to=args.leave_to)
    if args.announce_global:
        cfg = replace(cfg, announce_global=True)

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    config_path = expand_path(str(args.config))
    created = False
    if config_path and not os.path.exists(config_path):
        _write_default_config(config_path)
        created = True

    try:
        cfg = build_config(args)
        validate_config(cfg)
    except (OSError, ValueError) as e:
        print(f"roomchatd: invalid configuration: {e}", file=sys.stderr)
        raise SystemExit(2)

    configure_logging(cfg)
    log = logging.getLogger("roomchatd.relay")
    if created:
        log.info("Created default config at %s", config_path)

    svc = RelayService(cfg)
    try:
        svc.start()
    except OSError as e:
        log.error("Failed to listen on %s:%s: %s", cfg.host, cfg.port, e)
        raise SystemExit(1)
    svc.run_forever()


if __name__ == "__main__":
    main()
