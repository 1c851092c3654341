from __future__ import annotations

import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_name(value, *, max_chars: int = 32) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars and len(s) > int(max_chars):
        return None

    # Embedded newlines or NUL would break the line protocol and log output.
    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s


def name_key(name: str) -> str:
    """Key used for case-insensitive name uniqueness."""
    return name.strip().casefold()


def normalize_room(value, *, max_len: int = 64) -> str:
    if not isinstance(value, str):
        raise ValueError("room name must be a string")
    r = value.strip().lower()
    if not r:
        raise ValueError("room name must not be empty")
    if max_len and len(r) > int(max_len):
        raise ValueError("room name too long")
    if any(ch.isspace() for ch in r):
        raise ValueError("room name must not contain whitespace")
    return r
