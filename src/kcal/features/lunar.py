# src/kcal/features/lunar.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta

from kcal.core.errors import DataNotFoundError
from kcal.data.store import LocalFallbackStore


@dataclass(frozen=True)
class LunarYMD:
    year: int
    month: int
    day: int
    is_leap: bool = False


def solar_to_lunar(store: LocalFallbackStore, d: date) -> LunarYMD:
    """
    Convert a Gregorian date to a Korean lunar date using the tabulated
    month lengths.

    A date before the solar new year of its Gregorian year belongs to the
    previous lunar year. Dates before the first tabulated new year
    (1900-01-31) have no lunar year to belong to.
    """
    rec = store.get_lunar_year(d.year)
    if d < rec.solar_new_year:
        if d.year - 1 < store.min_year:
            raise DataNotFoundError(
                f"{d.isoformat()} precedes the first lunar new year ({rec.solar_new_year.isoformat()})"
            )
        rec = store.get_lunar_year(d.year - 1)

    offset = (d - rec.solar_new_year).days
    for month, is_leap, length in rec.months():
        if offset < length:
            return LunarYMD(year=rec.year, month=month, day=offset + 1, is_leap=is_leap)
        offset -= length

    raise DataNotFoundError(f"{d.isoformat()} falls past the end of lunar year {rec.year}")


def lunar_to_solar(
    store: LocalFallbackStore,
    year: int,
    month: int,
    day: int,
    is_leap: bool = False,
) -> date:
    """
    Convert a Korean lunar date to a Gregorian date.

    Raises
    ------
    ValueError
        month outside 1..12 or day outside 1..30.
    DataNotFoundError
        the year has no such month (e.g. a leap flag that does not match the
        year's leap month) or the month is shorter than `day`.
    """
    if not (1 <= int(month) <= 12):
        raise ValueError(f"lunar month must be 1..12 (got {month})")
    if not (1 <= int(day) <= 30):
        raise ValueError(f"lunar day must be 1..30 (got {day})")

    rec = store.get_lunar_year(year)
    if is_leap and rec.leap_month != month:
        raise DataNotFoundError(
            f"lunar year {rec.year} has no leap month {month} (leap_month={rec.leap_month})"
        )

    offset = 0
    for m, leap, length in rec.months():
        if m == month and leap == bool(is_leap):
            if day > length:
                raise DataNotFoundError(
                    f"lunar {rec.year}-{month}{' (leap)' if is_leap else ''} has {length} days (got day {day})"
                )
            return rec.solar_new_year + timedelta(days=offset + day - 1)
        offset += length

    raise DataNotFoundError(f"lunar month {month} not found in {rec.year}")
