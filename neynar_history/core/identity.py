"""Identity (fid) validation."""

from __future__ import annotations

from typing import Any

from neynar_history.core.exceptions import InvalidIdentity


def validate_fid(value: Any) -> int:
    """
    Return value as a positive int fid or raise InvalidIdentity.

    Accepts ints and integral strings ("3", " 42 "). Rejects bools, floats,
    zero and negatives.
    """
    if isinstance(value, bool):
        raise InvalidIdentity(f"Invalid fid: {value!r}")
    if isinstance(value, int):
        fid = value
    elif isinstance(value, str):
        raw = value.strip()
        if not (raw.isascii() and raw.isdecimal()):
            raise InvalidIdentity(f"Invalid fid: {value!r}")
        fid = int(raw)
    else:
        raise InvalidIdentity(f"Invalid fid: {value!r}")
    if fid <= 0:
        raise InvalidIdentity(f"Invalid fid: {value!r} (must be positive)")
    return fid
