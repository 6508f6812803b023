from __future__ import annotations

from datetime import date, timedelta

import pytest

from kcal.core.errors import DataNotFoundError, YearOutOfRangeError
from kcal.features.lunar import LunarYMD, lunar_to_solar, solar_to_lunar


@pytest.mark.parametrize(
    "solar,lunar",
    [
        (date(2024, 1, 1), LunarYMD(2023, 11, 20, False)),
        (date(2024, 2, 10), LunarYMD(2024, 1, 1, False)),
        (date(2025, 7, 25), LunarYMD(2025, 6, 1, True)),
        (date(2023, 4, 20), LunarYMD(2023, 3, 1, False)),
        (date(1900, 1, 31), LunarYMD(1900, 1, 1, False)),
        (date(1900, 12, 31), LunarYMD(1900, 11, 10, False)),
        (date(2200, 12, 31), LunarYMD(2200, 11, 25, False)),
        (date(2033, 12, 22), LunarYMD(2033, 11, 1, True)),
        (date(2034, 1, 1), LunarYMD(2033, 11, 11, True)),
    ],
)
def test_solar_to_lunar(store, solar, lunar):
    assert solar_to_lunar(store, solar) == lunar


@pytest.mark.parametrize(
    "lunar,solar",
    [
        ((2023, 11, 20, False), date(2024, 1, 1)),
        ((2025, 6, 1, True), date(2025, 7, 25)),
        ((2025, 6, 1, False), date(2025, 6, 25)),
        ((2023, 2, 1, True), date(2023, 3, 22)),
        ((2024, 1, 1, False), date(2024, 2, 10)),
        ((2200, 1, 1, False), date(2200, 2, 15)),
        ((1900, 1, 1, False), date(1900, 1, 31)),
        ((2033, 11, 1, True), date(2033, 12, 22)),
    ],
)
def test_lunar_to_solar(store, lunar, solar):
    assert lunar_to_solar(store, *lunar) == solar


def test_every_day_of_a_leap_year_round_trips(store):
    start = store.get_lunar_year(2023).solar_new_year
    for i in range(store.get_lunar_year(2023).total_days):
        d = start + timedelta(days=i)
        l = solar_to_lunar(store, d)
        assert l.year == 2023
        assert lunar_to_solar(store, l.year, l.month, l.day, l.is_leap) == d


def test_dates_before_first_new_year_are_not_found(store):
    with pytest.raises(DataNotFoundError):
        solar_to_lunar(store, date(1900, 1, 1))
    with pytest.raises(DataNotFoundError):
        solar_to_lunar(store, date(1900, 1, 30))


def test_out_of_range_solar_year(store):
    with pytest.raises(YearOutOfRangeError):
        solar_to_lunar(store, date(2201, 3, 1))


def test_leap_flag_must_match_leap_month(store):
    with pytest.raises(DataNotFoundError):
        lunar_to_solar(store, 2024, 5, 1, True)
    with pytest.raises(DataNotFoundError):
        lunar_to_solar(store, 2023, 3, 1, True)


def test_day_beyond_month_length(store):
    # 2023 month 1 has 29 days
    with pytest.raises(DataNotFoundError):
        lunar_to_solar(store, 2023, 1, 30)


@pytest.mark.parametrize("month,day", [(0, 1), (13, 1), (1, 0), (1, 31)])
def test_structurally_invalid_lunar_dates(store, month, day):
    with pytest.raises(ValueError):
        lunar_to_solar(store, 2024, month, day)


def test_out_of_range_lunar_year(store):
    with pytest.raises(YearOutOfRangeError):
        lunar_to_solar(store, 1899, 1, 1)
