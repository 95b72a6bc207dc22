"""
Raw score normalization.

Neynar reports the user score either as a float in [0, 1] or, on some
payloads, as a micro-unit integer (0..1_000_000). Anything above 1 is read as
micro-units; the result is clamped into [0, 1].
"""

from __future__ import annotations

import math
from typing import Any

from neynar_history.core.exceptions import ScoreUnavailable

MICRO_UNITS = 1_000_000


def normalize_score(raw: Any) -> float:
    """
    Map a raw upstream score to [0, 1].

    Numbers and numeric strings are accepted. Missing (None), boolean,
    non-numeric or non-finite values raise ScoreUnavailable rather than being
    coerced to 0.
    """
    if raw is None:
        raise ScoreUnavailable("Score missing from upstream payload")
    if isinstance(raw, bool):
        raise ScoreUnavailable(f"Score is not numeric: {raw!r}")
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            raise ScoreUnavailable(f"Score is not numeric: {raw!r}") from None
    else:
        raise ScoreUnavailable(f"Score is not numeric: {raw!r}")
    if not math.isfinite(value):
        raise ScoreUnavailable(f"Score is not finite: {raw!r}")
    if value > 1.0:
        value = value / MICRO_UNITS
    return min(1.0, max(0.0, value))


def extract_raw_score(user: dict[str, Any]) -> Any:
    """experimental.neynar_user_score, falling back to the top-level score field."""
    experimental = user.get("experimental")
    if isinstance(experimental, dict):
        value = experimental.get("neynar_user_score")
        if value is not None:
            return value
    return user.get("score")


def normalize_micro_score(raw: Any) -> float:
    """
    Map an on-chain micro-unit score to [0, 1].

    The contract stores scores as integers scaled by 1e6 and returns 0 for
    fids without a published score, so zero raises ScoreUnavailable.
    """
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ScoreUnavailable(f"On-chain score is not an integer: {raw!r}")
    if raw <= 0:
        raise ScoreUnavailable("No on-chain score published")
    return min(1.0, raw / MICRO_UNITS)
