# src/kcal/core/julian.py
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from .timeutil import UTC, require_aware

# First day of the Gregorian calendar (1582-10-15) as an integer day number.
GREGORIAN_CUTOVER_JDN = 2299161

JD_UNIX_EPOCH = 2440587.5


@dataclass(frozen=True)
class JulianDateTime:
    """
    Calendar fields produced by from_julian_day (UTC, minute resolution).

    minute may be 60 after rounding; to_datetime() carries it into the hour.
    """
    year: int
    month: int
    day: int
    hour: int
    minute: int

    def to_datetime(self) -> datetime:
        base = datetime(self.year, self.month, self.day, self.hour, tzinfo=UTC)
        return base + timedelta(minutes=self.minute)


def to_julian_day(year: int, month: int, day: int, hour: float = 12) -> float:
    """
    Julian Day for a proleptic Gregorian date (Meeus, Astronomical Algorithms 7.1).

    January and February count as months 13 and 14 of the previous year.
    Months above 12 are taken as-is, so (y, 13, 1) is January 1st of y + 1.
    """
    y = int(year)
    m = int(month)
    if m <= 2:
        y -= 1
        m += 12

    a = math.floor(y / 100)
    b = 2 - a + math.floor(a / 4)

    return (
        math.floor(365.25 * (y + 4716))
        + math.floor(30.6001 * (m + 1))
        + day
        + b
        - 1524.5
        + hour / 24
    )


def from_julian_day(jd: float) -> JulianDateTime:
    """
    Inverse of to_julian_day (Meeus 7.3), rounded to the nearest minute.

    The Julian-calendar branch below the cutover is kept for fidelity with the
    published algorithm; the supported tables never reach it.
    """
    jd = jd + 0.5
    z = math.floor(jd)
    f = jd - z

    if z >= GREGORIAN_CUTOVER_JDN:
        alpha = math.floor((z - 1867216.25) / 36524.25)
        a = z + 1 + alpha - math.floor(alpha / 4)
    else:
        a = z

    b = a + 1524
    c = math.floor((b - 122.1) / 365.25)
    d = math.floor(365.25 * c)
    e = math.floor((b - d) / 30.6001)

    day = b - d - math.floor(30.6001 * e)
    month = e - 1 if e < 14 else e - 13
    year = c - 4716 if month > 2 else c - 4715

    hour = math.floor(f * 24)
    minute = math.floor((f * 24 - hour) * 60 + 0.5)

    return JulianDateTime(year=int(year), month=int(month), day=int(day), hour=int(hour), minute=int(minute))


def datetime_to_julian_day(dt: datetime) -> float:
    """Julian Day of an aware datetime."""
    u = require_aware(dt)
    hour = u.hour + u.minute / 60 + (u.second + u.microsecond / 1e6) / 3600
    return to_julian_day(u.year, u.month, u.day, hour)
