"""
Stowcache — TTL Resolution

Converts a TTL specification into an absolute expiry instant.

A TTL specification is one of:
- int/float seconds or a timedelta (relative to "now")
- a datetime (absolute; naive values are read as UTC)
- None (no expiration)

Negative relative TTLs resolve to instants in the past. Such entries are
already expired when written, which gives callers invalidate-on-write.
"""

from datetime import UTC, datetime, timedelta
from typing import TypeAlias

TTLSpec: TypeAlias = int | float | timedelta | datetime | None


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def resolve_expiry(ttl: TTLSpec, now: datetime | None = None) -> datetime | None:
    """
    Resolve a TTL specification into an absolute expiry instant.

    Args:
        ttl: Relative seconds, timedelta, absolute datetime, or None
        now: Reference instant (defaults to the current UTC time)

    Returns:
        Aware UTC expiry instant, or None when the entry never expires

    Raises:
        TypeError: If ttl is not a supported TTL specification
    """
    if ttl is None:
        return None

    # bool is an int subclass; True seconds is never what a caller means
    if isinstance(ttl, bool):
        raise TypeError("TTL must be seconds, timedelta, datetime or None, not bool")

    if isinstance(ttl, datetime):
        return _as_utc(ttl)

    reference = _as_utc(now) if now is not None else utcnow()

    if isinstance(ttl, timedelta):
        return reference + ttl

    if isinstance(ttl, int | float):
        return reference + timedelta(seconds=ttl)

    raise TypeError(f"Unsupported TTL specification: {type(ttl).__name__}")


def seconds_until(expiry: datetime | None, now: datetime | None = None) -> float | None:
    """Remaining lifetime in seconds (negative once expired, None for never)."""
    if expiry is None:
        return None
    reference = _as_utc(now) if now is not None else utcnow()
    return (_as_utc(expiry) - reference).total_seconds()


def is_expired(expiry: datetime | None, now: datetime | None = None) -> bool:
    """True when the expiry instant is not strictly after now."""
    remaining = seconds_until(expiry, now)
    return remaining is not None and remaining <= 0
