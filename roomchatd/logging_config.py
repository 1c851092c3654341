"""Logging setup for the relay process.

Handlers hang off the ``roomchatd`` package logger, so every component
logger below it (``roomchatd.relay``, ``roomchatd.session`` and so on) shares
one format and destination. The root logger is left to the embedding
process.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import RelayRuntimeConfig

PACKAGE_LOGGER = "roomchatd"

COMPONENT_LOGGERS = (
    "roomchatd.relay",
    "roomchatd.registry",
    "roomchatd.rooms",
    "roomchatd.session",
    "roomchatd.commands",
    "roomchatd.broadcast",
    "roomchatd.connection",
)

_FALLBACK_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Set on handlers we install so a repeated call only replaces our own.
_OWNED = "_roomchatd_owned"


def level_from_name(name: str | None) -> int:
    """Map ``DEBUG``/``warn``/``15`` style names to a level; INFO if unknown."""
    text = (name or "").strip().upper()
    if text == "WARN":
        text = "WARNING"
    levels = logging.getLevelNamesMapping()
    if text in levels:
        return levels[text]
    if text.isdigit():
        return int(text)
    return logging.INFO


def _file_handler(log_file: str) -> logging.Handler:
    path = Path(os.path.expanduser(log_file))
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError:
        pass
    return handler


def configure_logging(cfg: RelayRuntimeConfig) -> logging.Logger:
    """Install the relay's handlers and return the package logger.

    ``cfg`` already carries command-line overrides; ``log_file`` and
    ``log_datefmt`` are None when unset.
    """
    pkg = logging.getLogger(PACKAGE_LOGGER)
    for h in list(pkg.handlers):
        if getattr(h, _OWNED, False):
            pkg.removeHandler(h)
            h.close()

    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if cfg.log_file:
        handlers.append(_file_handler(cfg.log_file))

    formatter = logging.Formatter(
        fmt=cfg.log_format.strip() or _FALLBACK_FORMAT, datefmt=cfg.log_datefmt
    )
    for h in handlers:
        h.setFormatter(formatter)
        setattr(h, _OWNED, True)
        pkg.addHandler(h)

    pkg.setLevel(level_from_name(cfg.log_level))
    pkg.propagate = not handlers

    # Components inherit the package level; clear anything set earlier.
    for name in COMPONENT_LOGGERS:
        logging.getLogger(name).setLevel(logging.NOTSET)

    logging.captureWarnings(True)
    pkg.debug(
        "Logging configured level=%s console=%s file=%s",
        logging.getLevelName(pkg.level),
        cfg.log_console,
        cfg.log_file or "-",
    )
    return pkg
