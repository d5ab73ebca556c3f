from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


def now_utc() -> datetime:
    """Return current time as tz-aware UTC datetime."""
    return datetime.now(timezone.utc)


def after(seconds: float, *, start: Optional[datetime] = None) -> datetime:
    """Return start (default: now) shifted by seconds, in UTC."""
    base = normalize_dt(start) if start is not None else now_utc()
    return base.astimezone(timezone.utc) + timedelta(seconds=seconds)


def to_rfc3339(dt: Optional[datetime]) -> Optional[str]:
    """Render a tz-aware datetime as RFC3339 UTC with 'Z' (None passes through)."""
    if dt is None:
        return None
    s = normalize_dt(dt).astimezone(timezone.utc).isoformat(timespec="microseconds")
    return s.replace("+00:00", "Z")


def normalize_dt(dt: datetime) -> datetime:
    """Ensure datetime is tz-aware. Raises if naive."""
    if not isinstance(dt, datetime):
        raise TypeError("dt must be a datetime")
    if dt.tzinfo is None:
        raise ValueError("naive datetime is not allowed; timezone-aware required")
    return dt
