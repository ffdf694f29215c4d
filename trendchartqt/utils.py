from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Union

import numpy as np

TimeLike = Union[datetime, str, float, int]


def clamp(value: float, vmin: float = 0.0, vmax: float = 1.0) -> float:
    """Clamp numeric values to [vmin, vmax]."""
    lo = float(vmin)
    hi = float(vmax)
    if lo > hi:
        lo, hi = hi, lo

    try:
        v = float(value)
    except (TypeError, ValueError):
        return lo

    if not np.isfinite(v):
        return lo

    return float(np.clip(v, lo, hi))


def new_id(prefix: str) -> str:
    """Return a short unique id such as ``line_3f9a1c2b``."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def parse_iso(value: str) -> datetime:
    """Parse an ISO8601 string into an aware UTC datetime.

    Naive strings are interpreted as UTC. A trailing ``Z`` is accepted.
    """
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_epoch(value: TimeLike) -> float:
    """Convert a datetime, ISO string or number to epoch seconds (UTC)."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, str):
        return parse_iso(value).timestamp()
    return float(value)


def format_iso_seconds(epoch: float) -> str:
    """Format epoch seconds as ``YYYY-MM-DDTHH:MM:SS`` (UTC, truncated)."""
    # Round away float noise below a microsecond before truncating.
    seconds = int(np.floor(round(float(epoch), 6)))
    return datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


def round_to(value: float, decimals: int) -> float:
    """Round half away from zero to ``decimals`` places."""
    factor = 10.0 ** decimals
    scaled = abs(float(value)) * factor
    rounded = float(np.floor(scaled + 0.5)) / factor
    return rounded if value >= 0 else -rounded
