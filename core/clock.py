"""
core/clock.py -- The wall clock the auth core reads.

Every component that compares against "now" takes a Clock (a zero-argument
callable returning an aware UTC datetime) instead of calling datetime.now()
itself. Production code passes utc_now; tests pass a controllable clock.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return value as an aware UTC datetime. Naive values are assumed to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
