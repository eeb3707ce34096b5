"""
core/clock.py -- Single seam for "now" and timestamp serialization.

Every expiry comparison in the auth core (refresh-token activity, access-token
exp, cache TTL) asks a Clock for the current time instead of calling
datetime.now() directly, so tests can pin or advance time.

Timestamps are persisted as fixed-width UTC strings (always with microseconds
and a trailing Z). Fixed width means lexicographic order in SQL equals
chronological order, which the refresh-token store relies on for
"expires_at > now" filters.

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Serialize an aware datetime as a fixed-width UTC string.

    Naive datetimes are rejected: silently treating them as UTC or local time
    is how expiry bugs are born.
    """
    if value.tzinfo is None:
        raise ValueError("naive datetime cannot be serialized; attach a timezone")
    return value.astimezone(timezone.utc).strftime(_ISO_FORMAT)


def from_iso(value: str | None) -> datetime | None:
    """Parse a string written by to_iso(). None passes through."""
    if value is None:
        return None
    return datetime.strptime(value, _ISO_FORMAT).replace(tzinfo=timezone.utc)
