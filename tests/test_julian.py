from __future__ import annotations

from datetime import datetime, timezone

import pytest

from kcal.core.julian import (
    JulianDateTime,
    datetime_to_julian_day,
    from_julian_day,
    to_julian_day,
)


def test_j2000_epoch():
    assert to_julian_day(2000, 1, 1, 12) == 2451545.0
    assert to_julian_day(2000, 1, 1) == 2451545.0


def test_unix_epoch_midnight():
    assert to_julian_day(1970, 1, 1, 0) == 2440587.5


def test_month_above_twelve_rolls_into_next_year():
    assert to_julian_day(1999, 13, 1) == to_julian_day(2000, 1, 1)
    assert to_julian_day(2023, 14, 1) == to_julian_day(2024, 2, 1)


def test_from_julian_day_j2000():
    assert from_julian_day(2451545.0) == JulianDateTime(2000, 1, 1, 12, 0)


def test_gregorian_cutover():
    assert to_julian_day(1582, 10, 15, 0) == 2299160.5
    assert from_julian_day(2299160.5) == JulianDateTime(1582, 10, 15, 0, 0)
    # the day before the cutover is 4 October in the Julian calendar
    assert from_julian_day(2299159.5) == JulianDateTime(1582, 10, 4, 0, 0)


@pytest.mark.parametrize(
    "y,m,d,hour,minute",
    [
        (1900, 1, 31, 0, 0),
        (1955, 3, 30, 6, 45),
        (2024, 2, 29, 23, 59),
        (2099, 12, 31, 13, 7),
        (2200, 6, 15, 4, 30),
    ],
)
def test_round_trip_minute_resolution(y, m, d, hour, minute):
    jd = to_julian_day(y, m, d, hour + minute / 60)
    assert from_julian_day(jd).to_datetime() == datetime(y, m, d, hour, minute, tzinfo=timezone.utc)


def test_rounded_minute_sixty_carries_into_next_hour():
    jd = to_julian_day(2024, 1, 1, 12 + 59.7 / 60)
    jdt = from_julian_day(jd)
    assert (jdt.hour, jdt.minute) == (12, 60)
    assert jdt.to_datetime() == datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)


def test_datetime_to_julian_day_requires_aware():
    with pytest.raises(ValueError):
        datetime_to_julian_day(datetime(2024, 1, 1))
    aware = datetime(2000, 1, 1, 21, 0, tzinfo=timezone.utc)
    assert datetime_to_julian_day(aware) == pytest.approx(2451545.375)
