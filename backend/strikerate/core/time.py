"""
Time helpers.

All database timestamps are timezone-aware (UTC). Use these helpers instead of
`datetime.utcnow()` to avoid mixing naive and aware datetimes.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Milliseconds since the epoch, as wallets sign them in sign-in messages."""
    return int(now_utc().timestamp() * 1000)


def lease_expiry(seconds: int | float) -> datetime:
    return now_utc() + timedelta(seconds=float(seconds))
