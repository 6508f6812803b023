# src/kcal/core/timeutil.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

UTC = timezone.utc

# Fixed civil offset. Asia/Seoul is deliberately not used: its tz history
# contains +08:30 and DST periods that the tables do not follow.
KST = timezone(timedelta(hours=9), "KST")

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def require_aware(dt: datetime, name: str = "dt") -> datetime:
    """
    Ensure a datetime is timezone-aware and return it converted to UTC.

    Raises
    ------
    ValueError
        If dt is naive.
    """
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware (got naive datetime)")
    return dt.astimezone(UTC)


def to_epoch_ms(dt: datetime) -> int:
    dt = require_aware(dt)
    delta = dt - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=int(ms))


def kst_year(dt: datetime) -> int:
    """Civil (KST) year of an instant."""
    return require_aware(dt).astimezone(KST).year


def parse_iso_date(s: str) -> date:
    try:
        return date.fromisoformat(s)
    except ValueError as e:
        raise ValueError(f"Invalid date format: {s} (expected YYYY-MM-DD)") from e
